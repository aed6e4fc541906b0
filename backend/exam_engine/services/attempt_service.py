"""
Attempt state machine: not_started -> in_progress -> {completed, submitted}.

Every transition is a conditional UPDATE guarded by the expected source
status, so concurrent callers cannot move an attempt backwards or terminate
it twice. Events are published only after the transaction commits.
"""
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, Tuple, Union
from datetime import datetime
import logging

from ..core.constants import ALLOWED_TRANSITIONS, AttemptStatus, TerminationReason
from ..core.database import dialect_insert
from ..core.events import AttemptStarted, AttemptTerminated, EventBus, ResultFinalized, event_bus
from ..models.answer import StudentAnswer
from ..models.attempt import Attempt
from ..models.exam import Question
from ..models.exam_session import ExamSession
from ..models.result import ExamResult
from ..models.student import Student
from ..schemas.attempt import AttemptState, ProgressResult, SubmitAnswerResult, SubmitExamResult
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..schemas.result import ResultRead
from ..utils.identifiers import normalize_student_id
from ..utils.timezone import Clock, utc_now
from .access import caller_owns_student, check_attempt_access
from .timer_service import attempt_duration, compute_remaining

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    pass


class AttemptService:
    def __init__(self, db: Session, clock: Clock = utc_now, events: EventBus = event_bus):
        self.db = db
        self.clock = clock
        self.events = events

    def get_attempt(self, attempt_id: int, for_update: bool = False) -> Optional[Attempt]:
        query = self.db.query(Attempt).filter(Attempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_attempt(self, session_id: int, student_pk: int, exam_id: int) -> Optional[Attempt]:
        return self.db.query(Attempt).filter(
            Attempt.session_id == session_id,
            Attempt.student_id == student_pk,
            Attempt.exam_id == exam_id
        ).first()

    def ensure_attempt(self, session: ExamSession, student: Student) -> Tuple[Attempt, bool]:
        """Insert the (session, student, exam) attempt, or return the existing one."""
        now = self.clock()
        stmt = (
            dialect_insert(self.db, Attempt)
            .values(
                session_id=session.id,
                student_id=student.id,
                exam_id=session.exam_id,
                status=AttemptStatus.NOT_STARTED.value,
                current_question_index=0,
                warning_count=0,
                is_flagged=False,
                camera_enabled=bool(session.camera_monitoring_enabled),
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["session_id", "student_id", "exam_id"])
            .returning(Attempt.id)
        )
        new_id = self.db.execute(stmt).scalar()
        attempt = self.find_attempt(session.id, student.id, session.exam_id)
        return attempt, new_id is not None

    def _transition(self, attempt: Attempt, source: AttemptStatus, target: AttemptStatus, **values) -> bool:
        if target not in ALLOWED_TRANSITIONS[source]:
            raise InvalidTransition(f"{source.value} -> {target.value} is not a permitted transition")
        stmt = (
            update(Attempt)
            .where(Attempt.id == attempt.id, Attempt.status == source.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        changed = self.db.execute(stmt).rowcount == 1
        self.db.refresh(attempt)
        return changed

    def _finalize(
        self,
        attempt: Attempt,
        target: AttemptStatus,
        reason: TerminationReason,
        time_remaining: int,
    ) -> Tuple[ExamResult, bool]:
        """Terminate (if still in progress) and score, in one transaction."""
        now = self.clock()
        transitioned = False
        if attempt.status == AttemptStatus.IN_PROGRESS.value:
            transitioned = self._transition(
                attempt,
                AttemptStatus.IN_PROGRESS,
                target,
                submitted_at=now,
                completed_at=now,
                time_remaining=time_remaining,
                last_activity_at=now,
            )

        from .scoring_service import ScoringService
        result, created = ScoringService(self.db, clock=self.clock, events=self.events).ensure_result(attempt)
        self.db.commit()

        if transitioned:
            logger.info(f"Attempt {attempt.id} terminated as {attempt.status} ({reason.value})")
            self.events.publish(AttemptTerminated(
                attempt_id=attempt.id,
                session_id=attempt.session_id,
                student_id=attempt.student_id,
                status=attempt.status,
                reason=reason.value,
                terminated_at=now,
            ))
        if created:
            self.events.publish(ResultFinalized(
                attempt_id=attempt.id,
                session_id=attempt.session_id,
                student_id=attempt.student_id,
                result_id=result.id,
                percentage_score=result.percentage_score,
                passed=result.passed,
            ))
        return result, transitioned

    def expire(self, attempt: Attempt) -> Tuple[ExamResult, bool]:
        return self._finalize(attempt, AttemptStatus.SUBMITTED, TerminationReason.TIME_EXPIRED, 0)

    def refresh_expiry(self, attempt: Attempt, now: Optional[datetime] = None) -> bool:
        """Force-submit an in-progress attempt whose server time has run out."""
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            return False
        remaining = compute_remaining(attempt.started_at, attempt_duration(attempt), now or self.clock())
        if remaining > 0:
            return False
        _, transitioned = self.expire(attempt)
        return transitioned

    def start_or_resume(
        self,
        session_id: int,
        student_id: str,
        caller: Optional[Caller] = None,
    ) -> Union[AttemptState, OperationFailure]:
        canonical = normalize_student_id(student_id)
        if caller is not None and not caller.is_staff and not caller_owns_student(caller, canonical):
            return failure(ErrorKind.FORBIDDEN, "Students may only start their own attempts")

        session = self.db.get(ExamSession, session_id)
        if session is None:
            return failure(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found")
        student = self.db.query(Student).filter(Student.student_id == canonical).first()
        if student is None:
            return failure(ErrorKind.STUDENT_NOT_FOUND, f"Student {student_id!r} not found")

        attempt = self.find_attempt(session.id, student.id, session.exam_id)
        now = self.clock()
        resumed = attempt is not None and attempt.status == AttemptStatus.IN_PROGRESS.value

        if attempt is None or attempt.status == AttemptStatus.NOT_STARTED.value:
            from .join_service import SessionJoinService
            validation_failure = SessionJoinService(self.db, clock=self.clock, events=self.events).validate(session, student, now)
            if validation_failure:
                return validation_failure

            duration = session.exam.duration_minutes * 60
            try:
                if attempt is None:
                    attempt, _ = self.ensure_attempt(session, student)
                started = self._transition(
                    attempt,
                    AttemptStatus.NOT_STARTED,
                    AttemptStatus.IN_PROGRESS,
                    started_at=now,
                    duration_seconds=duration,
                    time_remaining=duration,
                    current_question_index=0,
                    last_activity_at=now,
                )
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.error(f"Integrity error starting attempt for student {student.id} in session {session.id}: {e}")
                return failure(ErrorKind.INTEGRITY_ERROR, "Session or student record is inconsistent")

            if started:
                logger.info(f"Attempt {attempt.id} started by {student.student_id}")
                self.events.publish(AttemptStarted(
                    attempt_id=attempt.id,
                    session_id=attempt.session_id,
                    student_id=attempt.student_id,
                    started_at=now,
                    duration_seconds=duration,
                ))
            else:
                # A concurrent start won; fall through and resume its attempt
                resumed = True

        self.refresh_expiry(attempt, now)
        remaining = 0
        if attempt.status == AttemptStatus.IN_PROGRESS.value:
            remaining = compute_remaining(attempt.started_at, attempt_duration(attempt), now)

        return AttemptState(
            attempt_id=attempt.id,
            status=attempt.status,
            time_remaining=remaining,
            current_question_index=attempt.current_question_index or 0,
            can_resume=resumed and attempt.status == AttemptStatus.IN_PROGRESS.value,
            started_at=attempt.started_at.isoformat() if attempt.started_at else None,
        )

    def _load_for_mutation(self, attempt_id: int, caller: Optional[Caller]) -> Union[Attempt, OperationFailure]:
        attempt = self.get_attempt(attempt_id, for_update=True)
        if attempt is None:
            return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            self.db.rollback()
            return access_failure
        return attempt

    def submit_answer(
        self,
        attempt_id: int,
        question_id: int,
        answer_text: str,
        caller: Optional[Caller] = None,
    ) -> Union[SubmitAnswerResult, OperationFailure]:
        attempt = self._load_for_mutation(attempt_id, caller)
        if isinstance(attempt, OperationFailure):
            return attempt

        status = AttemptStatus(attempt.status)
        if status == AttemptStatus.NOT_STARTED:
            self.db.rollback()
            return SubmitAnswerResult(accepted=False, reason="not_started")
        if status.is_terminal:
            self.db.rollback()
            return SubmitAnswerResult(accepted=False, reason="attempt_terminal")

        now = self.clock()
        remaining = compute_remaining(attempt.started_at, attempt_duration(attempt), now)
        if remaining == 0:
            self.expire(attempt)
            return SubmitAnswerResult(accepted=False, reason="time_expired")

        question = self.db.get(Question, question_id)
        if question is None or question.exam_id != attempt.exam_id:
            self.db.rollback()
            return failure(ErrorKind.QUESTION_NOT_FOUND, f"Question {question_id} is not part of this exam")

        stmt = (
            dialect_insert(self.db, StudentAnswer)
            .values(
                attempt_id=attempt.id,
                question_id=question.id,
                answer_text=answer_text,
                points_earned=0.0,
                answered_at=now,
            )
            .on_conflict_do_update(
                index_elements=["attempt_id", "question_id"],
                set_={"answer_text": answer_text, "answered_at": now},
                where=StudentAnswer.scored_at.is_(None),
            )
        )
        try:
            self.db.execute(stmt)
            self.db.execute(
                update(Attempt)
                .where(Attempt.id == attempt.id)
                .values(last_activity_at=now, time_remaining=remaining)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error saving answer for attempt {attempt.id}: {e}")
            return failure(ErrorKind.INTEGRITY_ERROR, "Answer references missing records")

        return SubmitAnswerResult(accepted=True, time_remaining=remaining)

    def update_progress(
        self,
        attempt_id: int,
        current_question_index: int,
        caller: Optional[Caller] = None,
    ) -> Union[ProgressResult, OperationFailure]:
        if current_question_index < 0:
            return failure(ErrorKind.VALIDATION_ERROR, "current_question_index must be non-negative")
        attempt = self._load_for_mutation(attempt_id, caller)
        if isinstance(attempt, OperationFailure):
            return attempt

        now = self.clock()
        self.refresh_expiry(attempt, now)
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            self.db.rollback()
            return ProgressResult(
                accepted=False,
                current_question_index=attempt.current_question_index or 0,
                time_remaining=0,
            )

        remaining = compute_remaining(attempt.started_at, attempt_duration(attempt), now)
        self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt.id, Attempt.status == AttemptStatus.IN_PROGRESS.value)
            .values(current_question_index=current_question_index, time_remaining=remaining, last_activity_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return ProgressResult(accepted=True, current_question_index=current_question_index, time_remaining=remaining)

    def submit_exam(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[SubmitExamResult, OperationFailure]:
        attempt = self._load_for_mutation(attempt_id, caller)
        if isinstance(attempt, OperationFailure):
            return attempt

        status = AttemptStatus(attempt.status)
        if status == AttemptStatus.NOT_STARTED:
            self.db.rollback()
            return failure(ErrorKind.INVALID_STATE, "Attempt has not been started")

        if status == AttemptStatus.IN_PROGRESS:
            remaining = compute_remaining(attempt.started_at, attempt_duration(attempt), self.clock())
            if remaining == 0:
                result, transitioned = self.expire(attempt)
            else:
                result, transitioned = self._finalize(
                    attempt, AttemptStatus.COMPLETED, TerminationReason.STUDENT_SUBMIT, remaining
                )
        else:
            # Already terminal: idempotent, hand back the stored result
            result, transitioned = self._finalize(attempt, status, TerminationReason.STUDENT_SUBMIT, 0)

        return SubmitExamResult(
            attempt_id=attempt.id,
            status=attempt.status,
            already_submitted=not transitioned,
            result=ResultRead.model_validate(result),
        )
