"""
Deterministic per-student question and option shuffling.

The same (student, exam) pair always produces the same order and lettering;
different students get different orders with overwhelming probability.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from ..core.constants import OPTION_LETTERS, QuestionType

T = TypeVar("T")

_MODULUS = 2147483647  # 2**31 - 1
_MULTIPLIER = 16807


def student_seed(student_id: str, exam_id) -> int:
    """32-bit string hash of ``"<student>-<exam>"`` (h = h * 31 + c)."""
    value = 0
    for ch in f"{student_id}-{exam_id}":
        value = (value * 31 + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


class SeededRandom:
    """Park-Miller minimal standard linear congruential generator."""

    def __init__(self, seed: int):
        self.state = seed % _MODULUS
        if self.state <= 0:
            self.state += _MODULUS - 1

    def next(self) -> float:
        self.state = (self.state * _MULTIPLIER) % _MODULUS
        return (self.state - 1) / (_MODULUS - 1)

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Fisher-Yates over a copy of ``items``."""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = int(self.next() * (i + 1))
            result[i], result[j] = result[j], result[i]
        return result


@dataclass
class QuestionInput:
    question_id: int
    question_type: str
    options: Optional[Dict[str, str]] = None
    correct_answer: Optional[str] = None


@dataclass
class ShuffleOutcome:
    seed: int
    question_order: List[int]
    option_mappings: Dict[str, Dict[str, str]] = field(default_factory=dict)
    shuffled_options: Dict[str, Dict[str, str]] = field(default_factory=dict)
    answer_key: Dict[str, str] = field(default_factory=dict)


def _shuffle_options(rng: SeededRandom, question: QuestionInput):
    entries = sorted(question.options.items())
    if len(entries) < 2:
        mapping = {key: key for key, _ in entries}
        return mapping, dict(entries)

    mapping: Dict[str, str] = {}
    new_options: Dict[str, str] = {}
    for index, (original_key, text) in enumerate(rng.shuffle(entries)):
        new_key = OPTION_LETTERS[index]
        new_options[new_key] = text
        mapping[original_key] = new_key
    return mapping, new_options


def shuffle_questions(questions: Sequence[QuestionInput], student_id: str, exam_id: Any) -> ShuffleOutcome:
    seed = student_seed(student_id, exam_id)
    rng = SeededRandom(seed)

    ordered = rng.shuffle(questions)
    outcome = ShuffleOutcome(seed=seed, question_order=[q.question_id for q in ordered])

    for question in ordered:
        key = str(question.question_id)
        if not question.options:
            continue

        if question.question_type == QuestionType.MULTIPLE_CHOICE.value:
            if len(question.options) > len(OPTION_LETTERS):
                raise ValueError(f"Question {question.question_id} has more than {len(OPTION_LETTERS)} options")
            mapping, new_options = _shuffle_options(rng, question)
        else:
            # Lettered non-MC questions (true/false) keep their letters
            mapping = {letter: letter for letter in sorted(question.options)}
            new_options = dict(sorted(question.options.items()))

        outcome.option_mappings[key] = mapping
        outcome.shuffled_options[key] = new_options
        original = (question.correct_answer or "").strip().upper()
        if original in mapping:
            outcome.answer_key[key] = mapping[original]

    return outcome
