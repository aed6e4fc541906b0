from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import deps
from ....core.events import EventBus
from ....schemas.common import Caller
from ....schemas.violation import (
    EscalationResult, ViolationCreate, ViolationList, ViolationStatistics,
    WarningAcknowledged, WarningCreate, WarningHistory
)
from ....services.violation_service import ViolationService
from ....utils.timezone import Clock

router = APIRouter()


@router.post("/attempts/{attempt_id}/violations", response_model=EscalationResult)
def log_violation(
    attempt_id: int,
    violation: ViolationCreate,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    """Log a proctoring violation"""
    service = ViolationService(db, clock=clock, events=events)
    return deps.as_response(service.log_violation(
        attempt_id,
        violation.violation_type,
        violation.severity,
        evidence=violation.evidence,
        caller=caller,
    ))


@router.get("/attempts/{attempt_id}/violations", response_model=ViolationList)
def list_violations(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    service = ViolationService(db)
    return deps.as_response(service.list_violations(attempt_id, caller=caller))


@router.post("/attempts/{attempt_id}/warnings", response_model=EscalationResult)
def send_warning(
    attempt_id: int,
    warning: WarningCreate,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    """Teacher warning; counts towards escalation like any other violation"""
    service = ViolationService(db, clock=clock, events=events)
    return deps.as_response(service.send_warning(attempt_id, warning.message, warning.severity, caller=caller))


@router.get("/attempts/{attempt_id}/warnings", response_model=WarningHistory)
def get_warning_history(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    service = ViolationService(db)
    return deps.as_response(service.get_warning_history(attempt_id, caller=caller))


@router.post("/attempts/{attempt_id}/warnings/{warning_id}/acknowledge", response_model=WarningAcknowledged)
def acknowledge_warning(
    attempt_id: int,
    warning_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
):
    """Student acknowledges a teacher warning; only once per warning"""
    service = ViolationService(db, clock=clock)
    return deps.as_response(service.acknowledge_warning(attempt_id, warning_id, caller=caller))


@router.get("/attempts/{attempt_id}/statistics", response_model=ViolationStatistics)
def get_violation_statistics(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    service = ViolationService(db)
    return deps.as_response(service.get_statistics(attempt_id, caller=caller))
