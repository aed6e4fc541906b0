from .student import Student
from .exam import Exam, Question
from .exam_session import ExamSession, SessionParticipant
from .attempt import Attempt
from .question_order import QuestionOrder
from .answer import StudentAnswer
from .result import ExamResult
from .violation import Violation, WarningAcknowledgement

__all__ = [
    "Student",
    "Exam",
    "Question",
    "ExamSession",
    "SessionParticipant",
    "Attempt",
    "QuestionOrder",
    "StudentAnswer",
    "ExamResult",
    "Violation",
    "WarningAcknowledgement"
]
