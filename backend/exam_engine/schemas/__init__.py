from .common import ErrorKind, OperationFailure, Caller, failure
from .exam_session import JoinSessionRequest, JoinSessionResult
from .result import ResultRead, ResultEnvelope, VisibilityRequest, VisibilityResult, SessionResultRow, SessionResults
from .attempt import (
    StartAttemptRequest, AttemptState, SubmitAnswerRequest, SubmitAnswerResult,
    ProgressUpdateRequest, ProgressResult, TimerStatus, SubmitExamResult
)
from .question import ShuffledQuestion, ShuffledQuestionSet
from .violation import (
    ViolationCreate, WarningCreate, EscalationResult, ViolationRead, ViolationList, ViolationStatistics
)

__all__ = [
    "ErrorKind",
    "OperationFailure",
    "Caller",
    "failure",
    "JoinSessionRequest",
    "JoinSessionResult",
    "ResultRead",
    "ResultEnvelope",
    "VisibilityRequest",
    "VisibilityResult",
    "SessionResultRow",
    "SessionResults",
    "StartAttemptRequest",
    "AttemptState",
    "SubmitAnswerRequest",
    "SubmitAnswerResult",
    "ProgressUpdateRequest",
    "ProgressResult",
    "TimerStatus",
    "SubmitExamResult",
    "ShuffledQuestion",
    "ShuffledQuestionSet",
    "ViolationCreate",
    "WarningCreate",
    "EscalationResult",
    "ViolationRead",
    "ViolationList",
    "ViolationStatistics"
]
