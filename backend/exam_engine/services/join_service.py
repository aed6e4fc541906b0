from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, Tuple, Union
from datetime import datetime
import logging

from ..core.config import settings
from ..core.database import dialect_insert
from ..core.events import EventBus, event_bus
from ..models.exam_session import ExamSession, SessionParticipant
from ..models.student import Student
from ..schemas.common import ErrorKind, OperationFailure, failure
from ..schemas.exam_session import JoinSessionResult
from ..utils.identifiers import normalize_student_id
from ..utils.timezone import Clock, utc_now

logger = logging.getLogger(__name__)


def _same_class_level(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "").strip().upper() == (right or "").strip().upper()


class SessionJoinService:
    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        events: EventBus = event_bus,
        require_class_level_match: Optional[bool] = None,
    ):
        self.db = db
        self.clock = clock
        self.events = events
        if require_class_level_match is None:
            require_class_level_match = settings.require_class_level_match
        self.require_class_level_match = require_class_level_match

    def get_session_by_code(self, session_code: str) -> Optional[ExamSession]:
        code = (session_code or "").strip().upper()
        return self.db.query(ExamSession).filter(ExamSession.session_code == code).first()

    def get_student(self, student_id: str) -> Optional[Student]:
        canonical = normalize_student_id(student_id)
        if not canonical:
            return None
        return self.db.query(Student).filter(Student.student_id == canonical).first()

    def check_session_open(self, session: ExamSession, now: datetime) -> Optional[OperationFailure]:
        if now > session.ends_at:
            return failure(ErrorKind.SESSION_EXPIRED, "Session has ended")
        if not session.is_active:
            return failure(ErrorKind.SESSION_NOT_FOUND, "Session is not active")
        if now < session.starts_at:
            return failure(ErrorKind.SESSION_NOT_FOUND, "Session has not started yet")
        return None

    def validate(self, session: ExamSession, student: Optional[Student], now: datetime) -> Optional[OperationFailure]:
        """Join-time checks shared with attempt start. Never mutates state."""
        session_failure = self.check_session_open(session, now)
        if session_failure:
            return session_failure
        if student is None or not student.is_active:
            return failure(ErrorKind.STUDENT_NOT_FOUND, "Student not found or inactive")
        if (
            self.require_class_level_match
            and session.class_level
            and not _same_class_level(session.class_level, student.class_level)
        ):
            return failure(
                ErrorKind.CLASS_MISMATCH,
                f"Session is for class {session.class_level}, student is in {student.class_level}"
            )
        return None

    def _insert_participant(self, session: ExamSession, student: Student, now: datetime) -> Tuple[int, bool]:
        stmt = (
            dialect_insert(self.db, SessionParticipant)
            .values(session_id=session.id, student_id=student.id, joined_at=now)
            .on_conflict_do_nothing(index_elements=["session_id", "student_id"])
            .returning(SessionParticipant.id)
        )
        participant_id = self.db.execute(stmt).scalar()
        if participant_id is not None:
            return participant_id, False

        existing_id = self.db.query(SessionParticipant.id).filter(
            SessionParticipant.session_id == session.id,
            SessionParticipant.student_id == student.id
        ).scalar()
        return existing_id, True

    def join_session(self, session_code: str, student_id: str) -> Union[JoinSessionResult, OperationFailure]:
        session = self.get_session_by_code(session_code)
        if session is None:
            return failure(ErrorKind.SESSION_NOT_FOUND, f"No session with code {session_code!r}")

        student = self.get_student(student_id)
        now = self.clock()
        validation_failure = self.validate(session, student, now)
        if validation_failure:
            logger.info(f"Join rejected for {student_id!r} on {session.session_code}: {validation_failure.kind.value}")
            return validation_failure

        from .attempt_service import AttemptService
        attempt_service = AttemptService(self.db, clock=self.clock, events=self.events)

        try:
            participant_id, already_joined = self._insert_participant(session, student, now)
            attempt, _ = attempt_service.ensure_attempt(session, student)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error joining session {session.id} for student {student.id}: {e}")
            return failure(ErrorKind.INTEGRITY_ERROR, "Session or student record is inconsistent")

        if not already_joined:
            logger.info(f"Student {student.student_id} joined session {session.session_code}")

        exam = session.exam
        return JoinSessionResult(
            already_joined=already_joined,
            participant_id=participant_id,
            attempt_id=attempt.id,
            attempt_status=attempt.status,
            session_id=session.id,
            session_code=session.session_code,
            exam_id=exam.id,
            exam_title=exam.title,
            duration_minutes=exam.duration_minutes,
            instructions=session.instructions,
            camera_monitoring_enabled=bool(session.camera_monitoring_enabled),
            show_results_after_submit=bool(session.show_results_after_submit),
            student_id=student.student_id,
            student_name=student.full_name,
            student_class_level=student.class_level,
        )
