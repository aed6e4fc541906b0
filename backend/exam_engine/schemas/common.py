from enum import Enum
from typing import Literal
from pydantic import BaseModel

from ..core.constants import CallerRole


class ErrorKind(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    STUDENT_NOT_FOUND = "student_not_found"
    CLASS_MISMATCH = "class_mismatch"
    EXAM_NOT_FOUND = "exam_not_found"
    ATTEMPT_NOT_FOUND = "attempt_not_found"
    QUESTION_NOT_FOUND = "question_not_found"
    INVALID_STATE = "invalid_state"
    VALIDATION_ERROR = "validation_error"
    FORBIDDEN = "forbidden"
    NOT_SCORED = "not_scored"
    RESULT_HIDDEN = "result_hidden"
    INTEGRITY_ERROR = "integrity_error"
    WARNING_NOT_FOUND = "warning_not_found"


class OperationFailure(BaseModel):
    success: Literal[False] = False
    kind: ErrorKind
    message: str


def failure(kind: ErrorKind, message: str) -> OperationFailure:
    return OperationFailure(kind=kind, message=message)


class Caller(BaseModel):
    """Identity of whoever invokes an operation, passed explicitly."""
    caller_id: str
    role: CallerRole = CallerRole.STUDENT

    @property
    def is_staff(self) -> bool:
        return self.role in (CallerRole.TEACHER, CallerRole.ADMIN)
