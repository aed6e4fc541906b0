from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import deps
from ....core.events import EventBus
from ....schemas.common import Caller, ErrorKind, failure
from ....schemas.exam_session import JoinSessionRequest, JoinSessionResult
from ....services.access import caller_owns_student
from ....services.join_service import SessionJoinService
from ....utils.identifiers import normalize_student_id
from ....utils.timezone import Clock

router = APIRouter()


@router.post("/join", response_model=JoinSessionResult)
def join_session(
    request: JoinSessionRequest,
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    clock: Clock = Depends(deps.get_clock),
    events: EventBus = Depends(deps.get_events),
):
    """
    Join a session by its code. Joining again returns the same participant.
    """
    if not caller.is_staff and not caller_owns_student(caller, normalize_student_id(request.student_id)):
        return deps.as_response(failure(ErrorKind.FORBIDDEN, "Students may only join as themselves"))

    service = SessionJoinService(db, clock=clock, events=events)
    return deps.as_response(service.join_session(request.session_code, request.student_id))
