from typing import Optional

from ..models.attempt import Attempt
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..utils.identifiers import normalize_student_id


def caller_owns_student(caller: Caller, student_code: str) -> bool:
    return normalize_student_id(caller.caller_id) == student_code


def check_attempt_access(caller: Optional[Caller], attempt: Attempt) -> Optional[OperationFailure]:
    """Students may only touch their own attempts; staff may touch any."""
    if caller is None or caller.is_staff:
        return None
    if attempt.student is not None and caller_owns_student(caller, attempt.student.student_id):
        return None
    return failure(ErrorKind.FORBIDDEN, "Not authorized to access this attempt")


def check_staff(caller: Optional[Caller]) -> Optional[OperationFailure]:
    if caller is not None and caller.is_staff:
        return None
    return failure(ErrorKind.FORBIDDEN, "Teacher or admin privileges required")
