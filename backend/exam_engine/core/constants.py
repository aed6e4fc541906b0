from enum import Enum


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"      # student-initiated submit
    SUBMITTED = "submitted"      # time expired

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.SUBMITTED})

# Allowed forward moves of the attempt state machine
ALLOWED_TRANSITIONS = {
    AttemptStatus.NOT_STARTED: frozenset({AttemptStatus.IN_PROGRESS}),
    AttemptStatus.IN_PROGRESS: TERMINAL_STATUSES,
    AttemptStatus.COMPLETED: frozenset(),
    AttemptStatus.SUBMITTED: frozenset(),
}


class TerminationReason(str, Enum):
    STUDENT_SUBMIT = "student_submit"
    TIME_EXPIRED = "time_expired"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    FILL_IN_GAP = "fill_in_gap"
    SUBJECTIVE = "subjective"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SuggestedAction(str, Enum):
    MONITOR = "monitor"
    WARN_STUDENT = "warn_student"
    FLAG_STUDENT = "flag_student"


class TimerBand(str, Enum):
    NORMAL = "NORMAL"
    CAUTION = "CAUTION"
    WARNING = "WARNING"
    EXPIRED = "EXPIRED"


class CallerRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


OPTION_LETTERS = "ABCDEFGH"

TEACHER_WARNING_TYPE = "teacher_warning"
