from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import deps
from ....core.events import EventBus
from ....schemas.common import Caller
from ....schemas.result import ResultEnvelope, SessionResults, VisibilityRequest, VisibilityResult
from ....services.result_service import ResultService
from ....utils.timezone import Clock

router = APIRouter()


@router.get("/attempts/{attempt_id}", response_model=ResultEnvelope)
def get_result(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    service = ResultService(db, clock=clock, events=events)
    return deps.as_response(service.get_result(attempt_id, caller=caller))


@router.patch("/attempts/{attempt_id}/visibility", response_model=VisibilityResult)
def set_result_visibility(
    attempt_id: int,
    request: VisibilityRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    service = ResultService(db)
    return deps.as_response(service.set_result_visibility(attempt_id, request.visible, caller=caller))


@router.get("/sessions/{session_id}", response_model=SessionResults)
def get_session_results(
    session_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    """
    Every attempt of a session with its status, flags and score.
    """
    service = ResultService(db)
    return deps.as_response(service.get_session_results(session_id, caller=caller))


@router.patch("/sessions/{session_id}/visibility", response_model=VisibilityResult)
def set_session_results_visibility(
    session_id: int,
    request: VisibilityRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
):
    service = ResultService(db)
    return deps.as_response(service.set_session_results_visibility(session_id, request.visible, caller=caller))
