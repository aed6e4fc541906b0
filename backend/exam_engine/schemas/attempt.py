from pydantic import BaseModel, Field
from typing import Literal, Optional

from ..core.constants import TimerBand
from .result import ResultRead


class StartAttemptRequest(BaseModel):
    session_id: int
    student_id: str


class AttemptState(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    status: str
    time_remaining: int
    current_question_index: int
    can_resume: bool = False
    started_at: Optional[str] = None


class SubmitAnswerRequest(BaseModel):
    question_id: int
    answer_text: str = ""


class SubmitAnswerResult(BaseModel):
    success: Literal[True] = True
    accepted: bool
    reason: Optional[str] = None
    time_remaining: int = 0


class ProgressUpdateRequest(BaseModel):
    current_question_index: int = Field(ge=0)


class ProgressResult(BaseModel):
    success: Literal[True] = True
    accepted: bool
    current_question_index: int
    time_remaining: int


class TimerStatus(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    status: str
    time_remaining_seconds: int
    duration_seconds: int
    band: TimerBand
    is_expired: bool
    server_time: str


class SubmitExamResult(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    status: str
    already_submitted: bool
    result: ResultRead
