"""
Proctoring violation log and escalation.

Appending the violation and bumping the attempt's warning counter happen in
one transaction; the counter and flag are updated by a single conditional
UPDATE ... RETURNING so concurrent reports never lose an increment. Flags
are monotonic and only ever advisory: nothing here disqualifies a student.
"""
from sqlalchemy import case, literal, or_, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from collections import Counter
from typing import Any, Dict, Optional, Tuple, Union
import logging

from ..core.config import settings
from ..core.constants import Severity, SuggestedAction, TEACHER_WARNING_TYPE
from ..core.database import dialect_insert
from ..core.events import EventBus, ViolationRecorded, event_bus
from ..models.attempt import Attempt
from ..models.violation import Violation, WarningAcknowledgement
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..schemas.violation import (
    EscalationResult, ViolationList, ViolationRead, ViolationStatistics,
    WarningAcknowledged, WarningHistory, WarningRead
)
from ..utils.timezone import Clock, utc_now
from .access import check_attempt_access, check_staff

logger = logging.getLogger(__name__)


def should_flag(warning_count: int, severity: Severity) -> bool:
    """Flag rule evaluated against the post-increment warning count."""
    if severity == Severity.CRITICAL and settings.flag_on_critical:
        return True
    if severity == Severity.HIGH and warning_count >= settings.high_severity_flag_count:
        return True
    return warning_count >= settings.any_severity_flag_count


def suggested_action(warning_count: int, severity: Severity, is_flagged: bool) -> SuggestedAction:
    if is_flagged:
        return SuggestedAction.FLAG_STUDENT
    if warning_count >= settings.warn_student_count or severity in (Severity.HIGH, Severity.CRITICAL):
        return SuggestedAction.WARN_STUDENT
    return SuggestedAction.MONITOR


def evaluate_escalation(warning_count: int, severity: Severity, already_flagged: bool = False) -> Tuple[bool, SuggestedAction]:
    flagged = already_flagged or should_flag(warning_count, severity)
    return flagged, suggested_action(warning_count, severity, flagged)


def _flag_condition(severity: Severity):
    """SQL form of should_flag over the incremented column value."""
    new_count = Attempt.warning_count + 1
    conditions = [new_count >= settings.any_severity_flag_count]
    if severity == Severity.CRITICAL and settings.flag_on_critical:
        conditions.append(literal(True))
    if severity == Severity.HIGH:
        conditions.append(new_count >= settings.high_severity_flag_count)
    return or_(*conditions)


class ViolationService:
    def __init__(self, db: Session, clock: Clock = utc_now, events: EventBus = event_bus):
        self.db = db
        self.clock = clock
        self.events = events

    def _record(
        self,
        attempt: Attempt,
        violation_type: str,
        severity: Severity,
        evidence: Optional[Dict[str, Any]],
    ) -> Union[EscalationResult, OperationFailure]:
        now = self.clock()
        flag_now = _flag_condition(severity)
        try:
            violation = Violation(
                attempt_id=attempt.id,
                violation_type=violation_type,
                severity=severity.value,
                evidence=evidence,
                detected_at=now,
            )
            self.db.add(violation)
            self.db.flush()

            stmt = (
                update(Attempt)
                .where(Attempt.id == attempt.id)
                .values(
                    warning_count=Attempt.warning_count + 1,
                    is_flagged=or_(Attempt.is_flagged, flag_now),
                    flagged_at=case(
                        (Attempt.flagged_at.is_(None) & flag_now, now),
                        else_=Attempt.flagged_at,
                    ),
                )
                .returning(Attempt.warning_count, Attempt.is_flagged)
                .execution_options(synchronize_session=False)
            )
            warning_count, is_flagged = self.db.execute(stmt).one()
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error logging violation for attempt {attempt.id}: {e}")
            return failure(ErrorKind.INTEGRITY_ERROR, "Violation references missing records")

        is_flagged = bool(is_flagged)
        action = suggested_action(warning_count, severity, is_flagged)
        if is_flagged:
            logger.info(f"Attempt {attempt.id} flagged after {violation_type} ({severity.value}), warnings={warning_count}")

        self.events.publish(ViolationRecorded(
            attempt_id=attempt.id,
            session_id=attempt.session_id,
            student_id=attempt.student_id,
            violation_type=violation_type,
            severity=severity.value,
            warning_count=warning_count,
            is_flagged=is_flagged,
            suggested_action=action.value,
        ))
        return EscalationResult(
            violation_id=violation.id,
            warning_count=warning_count,
            is_flagged=is_flagged,
            suggested_action=action,
        )

    def _load(self, attempt_id: int) -> Union[Attempt, OperationFailure]:
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
        return attempt

    def log_violation(
        self,
        attempt_id: int,
        violation_type: str,
        severity: str,
        evidence: Optional[Dict[str, Any]] = None,
        caller: Optional[Caller] = None,
    ) -> Union[EscalationResult, OperationFailure]:
        try:
            level = Severity((severity or "").strip().lower())
        except ValueError:
            return failure(ErrorKind.VALIDATION_ERROR, f"Unknown severity {severity!r}")
        violation_type = (violation_type or "").strip()
        if not violation_type:
            return failure(ErrorKind.VALIDATION_ERROR, "violation_type is required")

        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure
        return self._record(attempt, violation_type, level, evidence)

    def send_warning(
        self,
        attempt_id: int,
        message: str,
        severity: str = "medium",
        caller: Optional[Caller] = None,
    ) -> Union[EscalationResult, OperationFailure]:
        staff_failure = check_staff(caller)
        if staff_failure:
            return staff_failure
        try:
            level = Severity((severity or "").strip().lower())
        except ValueError:
            return failure(ErrorKind.VALIDATION_ERROR, f"Unknown severity {severity!r}")
        if not (message or "").strip():
            return failure(ErrorKind.VALIDATION_ERROR, "Warning message is required")

        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        evidence = {"message": message.strip(), "issued_by": caller.caller_id}
        return self._record(attempt, TEACHER_WARNING_TYPE, level, evidence)

    def get_warning_history(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[WarningHistory, OperationFailure]:
        """Teacher warnings on an attempt, newest first, with acknowledgement state."""
        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        rows = self.db.query(Violation, WarningAcknowledgement).outerjoin(
            WarningAcknowledgement, WarningAcknowledgement.violation_id == Violation.id
        ).filter(
            Violation.attempt_id == attempt.id,
            Violation.violation_type == TEACHER_WARNING_TYPE
        ).order_by(Violation.detected_at.desc(), Violation.id.desc()).all()

        warnings = []
        for violation, ack in rows:
            evidence = violation.evidence or {}
            warnings.append(WarningRead(
                warning_id=violation.id,
                message=evidence.get("message"),
                severity=violation.severity,
                sent_at=violation.detected_at,
                issued_by=evidence.get("issued_by"),
                acknowledged=ack is not None,
                acknowledged_at=ack.acknowledged_at if ack else None,
            ))
        return WarningHistory(attempt_id=attempt.id, warnings=warnings)

    def acknowledge_warning(
        self,
        attempt_id: int,
        warning_id: int,
        caller: Optional[Caller] = None,
    ) -> Union[WarningAcknowledged, OperationFailure]:
        if caller is None or caller.is_staff:
            return failure(ErrorKind.FORBIDDEN, "Only the student who received a warning can acknowledge it")
        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        warning = self.db.query(Violation).filter(
            Violation.id == warning_id,
            Violation.attempt_id == attempt.id,
            Violation.violation_type == TEACHER_WARNING_TYPE
        ).first()
        if warning is None:
            return failure(ErrorKind.WARNING_NOT_FOUND, f"Warning {warning_id} not found on attempt {attempt.id}")

        now = self.clock()
        stmt = (
            dialect_insert(self.db, WarningAcknowledgement)
            .values(violation_id=warning.id, acknowledged_at=now)
            .on_conflict_do_nothing(index_elements=["violation_id"])
            .returning(WarningAcknowledgement.id)
        )
        try:
            ack_id = self.db.execute(stmt).scalar()
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error acknowledging warning {warning.id}: {e}")
            return failure(ErrorKind.INTEGRITY_ERROR, "Acknowledgement references missing records")

        if ack_id is None:
            return failure(ErrorKind.INVALID_STATE, "Warning already acknowledged")
        logger.info(f"Warning {warning.id} acknowledged on attempt {attempt.id}")
        return WarningAcknowledged(warning_id=warning.id, acknowledged_at=now)

    def list_violations(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[ViolationList, OperationFailure]:
        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        violations = self.db.query(Violation).filter(
            Violation.attempt_id == attempt.id
        ).order_by(Violation.detected_at, Violation.id).all()
        return ViolationList(
            attempt_id=attempt.id,
            violations=[ViolationRead.model_validate(v) for v in violations],
        )

    def get_statistics(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[ViolationStatistics, OperationFailure]:
        attempt = self._load(attempt_id)
        if isinstance(attempt, OperationFailure):
            return attempt
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        violations = self.db.query(Violation).filter(
            Violation.attempt_id == attempt.id
        ).order_by(Violation.detected_at, Violation.id).all()

        return ViolationStatistics(
            attempt_id=attempt.id,
            total_violations=len(violations),
            warning_count=attempt.warning_count,
            is_flagged=attempt.is_flagged,
            by_type=dict(Counter(v.violation_type for v in violations)),
            by_severity=dict(Counter(v.severity for v in violations)),
            timeline=[
                {
                    "id": v.id,
                    "violation_type": v.violation_type,
                    "severity": v.severity,
                    "detected_at": v.detected_at.isoformat() if v.detected_at else None,
                }
                for v in violations
            ],
        )
