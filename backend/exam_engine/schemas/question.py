from pydantic import BaseModel
from typing import Dict, List, Literal, Optional


class ShuffledQuestion(BaseModel):
    question_id: int
    position: int
    question_text: str
    question_type: str
    points: int
    options: Optional[Dict[str, str]] = None
    image_url: Optional[str] = None


class ShuffledQuestionSet(BaseModel):
    success: Literal[True] = True
    student_id: str
    exam_id: int
    seed: int
    questions: List[ShuffledQuestion]
