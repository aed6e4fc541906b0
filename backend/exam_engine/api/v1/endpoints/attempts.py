from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import deps
from ....core.events import EventBus
from ....schemas.attempt import (
    AttemptState, ProgressResult, ProgressUpdateRequest, StartAttemptRequest,
    SubmitAnswerRequest, SubmitAnswerResult, SubmitExamResult, TimerStatus
)
from ....schemas.common import Caller
from ....services.attempt_service import AttemptService
from ....services.timer_service import TimerService
from ....utils.timezone import Clock

router = APIRouter()


@router.post("/start", response_model=AttemptState)
def start_attempt(
    request: StartAttemptRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    """
    Start the attempt, or resume it with the server-computed remaining time.
    """
    service = AttemptService(db, clock=clock, events=events)
    return deps.as_response(service.start_or_resume(request.session_id, request.student_id, caller=caller))


@router.put("/{attempt_id}/answers", response_model=SubmitAnswerResult)
def submit_answer(
    attempt_id: int,
    request: SubmitAnswerRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    service = AttemptService(db, clock=clock, events=events)
    return deps.as_response(
        service.submit_answer(attempt_id, request.question_id, request.answer_text, caller=caller)
    )


@router.put("/{attempt_id}/progress", response_model=ProgressResult)
def update_progress(
    attempt_id: int,
    request: ProgressUpdateRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    service = AttemptService(db, clock=clock, events=events)
    return deps.as_response(service.update_progress(attempt_id, request.current_question_index, caller=caller))


@router.get("/{attempt_id}/timer", response_model=TimerStatus)
def get_timer_status(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    """
    Authoritative remaining time. Reading an expired attempt submits it.
    """
    service = TimerService(db, clock=clock, events=events)
    return deps.as_response(service.get_timer_status(attempt_id, caller=caller))


@router.post("/{attempt_id}/submit", response_model=SubmitExamResult)
def submit_exam(
    attempt_id: int,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    service = AttemptService(db, clock=clock, events=events)
    return deps.as_response(service.submit_exam(attempt_id, caller=caller))
