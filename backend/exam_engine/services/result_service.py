from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload
from typing import Optional, Union
import logging

from ..core.events import EventBus, event_bus
from ..models.attempt import Attempt
from ..models.exam_session import ExamSession
from ..models.result import ExamResult
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..schemas.result import ResultEnvelope, ResultRead, SessionResultRow, SessionResults, VisibilityResult
from ..utils.timezone import Clock, utc_now
from .access import check_attempt_access, check_staff

logger = logging.getLogger(__name__)


class ResultService:
    def __init__(self, db: Session, clock: Clock = utc_now, events: EventBus = event_bus):
        self.db = db
        self.clock = clock
        self.events = events

    def get_result(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[ResultEnvelope, OperationFailure]:
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        # An unread expiry is settled here, so a student polling for the
        # result after the deadline gets it without calling submit
        from .attempt_service import AttemptService
        AttemptService(self.db, clock=self.clock, events=self.events).refresh_expiry(attempt)

        result = self.db.query(ExamResult).filter(ExamResult.attempt_id == attempt.id).first()
        if result is None:
            return failure(ErrorKind.NOT_SCORED, "Result is not available yet")
        if caller is not None and not caller.is_staff and not result.is_visible:
            return failure(ErrorKind.RESULT_HIDDEN, "Results have not been released by the teacher")
        return ResultEnvelope(result=ResultRead.model_validate(result))

    def set_result_visibility(self, attempt_id: int, visible: bool, caller: Optional[Caller] = None) -> Union[VisibilityResult, OperationFailure]:
        staff_failure = check_staff(caller)
        if staff_failure:
            return staff_failure
        result = self.db.query(ExamResult).filter(ExamResult.attempt_id == attempt_id).first()
        if result is None:
            if self.db.get(Attempt, attempt_id) is None:
                return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
            return failure(ErrorKind.NOT_SCORED, "Attempt has no result yet")

        result.is_visible = visible
        self.db.commit()
        logger.info(f"Result of attempt {attempt_id} {'released' if visible else 'hidden'} by {caller.caller_id}")
        return VisibilityResult(updated=1, visible=visible)

    def set_session_results_visibility(self, session_id: int, visible: bool, caller: Optional[Caller] = None) -> Union[VisibilityResult, OperationFailure]:
        staff_failure = check_staff(caller)
        if staff_failure:
            return staff_failure
        if self.db.get(ExamSession, session_id) is None:
            return failure(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found")

        updated = self.db.execute(
            update(ExamResult)
            .where(ExamResult.session_id == session_id)
            .values(is_visible=visible)
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.commit()
        logger.info(f"{updated} results of session {session_id} {'released' if visible else 'hidden'} by {caller.caller_id}")
        return VisibilityResult(updated=updated, visible=visible)

    def get_session_results(self, session_id: int, caller: Optional[Caller] = None) -> Union[SessionResults, OperationFailure]:
        staff_failure = check_staff(caller)
        if staff_failure:
            return staff_failure
        session = self.db.get(ExamSession, session_id)
        if session is None:
            return failure(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found")

        attempts = (
            self.db.query(Attempt)
            .options(joinedload(Attempt.student), joinedload(Attempt.result))
            .filter(Attempt.session_id == session.id)
            .order_by(Attempt.id)
            .all()
        )
        rows = [
            SessionResultRow(
                attempt_id=attempt.id,
                student_id=attempt.student.student_id,
                student_name=attempt.student.full_name,
                status=attempt.status,
                warning_count=attempt.warning_count,
                is_flagged=attempt.is_flagged,
                result=ResultRead.model_validate(attempt.result) if attempt.result else None,
            )
            for attempt in attempts
        ]
        return SessionResults(
            session_id=session.id,
            session_code=session.session_code,
            exam_title=session.exam.title,
            attempts=rows,
        )
