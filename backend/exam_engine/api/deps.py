from fastapi import Header, HTTPException, status
from fastapi.responses import JSONResponse
from typing import Optional

from ..core.cache import CacheManager, cache
from ..core.constants import CallerRole
from ..core.database import get_db  # noqa: F401
from ..core.events import EventBus, event_bus
from ..schemas.common import Caller, ErrorKind, OperationFailure
from ..utils.timezone import Clock, utc_now

FAILURE_STATUS = {
    ErrorKind.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.STUDENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EXAM_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ATTEMPT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.QUESTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.WARNING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_SCORED: status.HTTP_404_NOT_FOUND,
    ErrorKind.SESSION_EXPIRED: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.RESULT_HIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CLASS_MISMATCH: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INTEGRITY_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_clock() -> Clock:
    return utc_now


def get_events() -> EventBus:
    return event_bus


def get_cache() -> CacheManager:
    return cache


def get_caller(
    x_caller_id: Optional[str] = Header(default=None),
    x_caller_role: Optional[str] = Header(default=None),
) -> Caller:
    """Identity asserted by the authentication gateway in front of the API."""
    if not x_caller_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        role = CallerRole((x_caller_role or CallerRole.STUDENT.value).strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown caller role {x_caller_role!r}",
        )
    return Caller(caller_id=x_caller_id.strip(), role=role)


def as_response(outcome):
    """Pass successes through; turn a failure into a JSON error response."""
    if isinstance(outcome, OperationFailure):
        return JSONResponse(
            status_code=FAILURE_STATUS.get(outcome.kind, status.HTTP_400_BAD_REQUEST),
            content=outcome.model_dump(mode="json"),
        )
    return outcome
