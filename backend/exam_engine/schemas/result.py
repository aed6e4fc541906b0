from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import List, Literal, Optional

from ..utils.timezone import format_local_time


class ResultRead(BaseModel):
    id: int
    attempt_id: int
    exam_id: int
    session_id: int
    total_questions: int
    correct_answers: int
    total_points: float
    points_earned: float
    percentage_score: float
    passed: bool
    needs_review: bool
    is_visible: bool
    created_at: datetime

    created_at_local: Optional[str] = None

    @field_serializer('created_at_local')
    def serialize_created_at_local(self, value):
        if self.created_at:
            return format_local_time(self.created_at)
        return None

    class Config:
        from_attributes = True


class ResultEnvelope(BaseModel):
    success: Literal[True] = True
    result: ResultRead


class VisibilityRequest(BaseModel):
    visible: bool


class VisibilityResult(BaseModel):
    success: Literal[True] = True
    updated: int
    visible: bool


class SessionResultRow(BaseModel):
    attempt_id: int
    student_id: str
    student_name: str
    status: str
    warning_count: int
    is_flagged: bool
    result: Optional[ResultRead] = None


class SessionResults(BaseModel):
    success: Literal[True] = True
    session_id: int
    session_code: str
    exam_title: str
    attempts: List[SessionResultRow]
