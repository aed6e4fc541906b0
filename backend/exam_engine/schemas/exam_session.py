from pydantic import BaseModel
from typing import Literal, Optional


class JoinSessionRequest(BaseModel):
    session_code: str
    student_id: str


class JoinSessionResult(BaseModel):
    success: Literal[True] = True
    already_joined: bool
    participant_id: int
    attempt_id: int
    attempt_status: Optional[str] = None

    session_id: int
    session_code: str
    exam_id: int
    exam_title: str
    duration_minutes: int
    instructions: Optional[str] = None
    camera_monitoring_enabled: bool = False
    show_results_after_submit: bool = False

    student_id: str
    student_name: str
    student_class_level: Optional[str] = None
