"""
Scoring of terminal attempts.

Lettered questions are graded against the per-student answer key written by
the shuffler, never against the author's original letter. A result is
created at most once per attempt; later calls hand back the stored row.
"""
from sqlalchemy import update
from sqlalchemy.orm import Session
from typing import Dict, List, Optional, Tuple, Union
import logging

from ..core.config import settings
from ..core.constants import AttemptStatus, QuestionType
from ..core.database import dialect_insert
from ..core.events import EventBus, ResultFinalized, event_bus
from ..models.answer import StudentAnswer
from ..models.attempt import Attempt
from ..models.exam import Question
from ..models.question_order import QuestionOrder
from ..models.result import ExamResult
from ..schemas.common import ErrorKind, OperationFailure, failure
from ..utils.timezone import Clock, utc_now

logger = logging.getLogger(__name__)

_LETTERED_TYPES = (QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value)
_TEXT_TYPES = (QuestionType.SHORT_ANSWER.value, QuestionType.FILL_IN_GAP.value, QuestionType.TRUE_FALSE.value)


def _normalize_text(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def grade_answer(
    question: Question,
    answer_text: Optional[str],
    answer_key: Optional[Dict[str, str]] = None,
) -> Tuple[Optional[bool], float]:
    """Return ``(is_correct, points_earned)`` for one answer.

    ``is_correct`` is ``None`` for subjective questions, which only receive
    partial heuristic credit and are left for a teacher to review.
    """
    points = float(question.points or 0)
    if answer_text is None or not answer_text.strip():
        if question.question_type == QuestionType.SUBJECTIVE.value:
            return None, 0.0
        return False, 0.0

    if question.question_type == QuestionType.SUBJECTIVE.value:
        if len(answer_text.strip()) > settings.subjective_min_length:
            return None, round(points * settings.subjective_credit_fraction, 2)
        return None, 0.0

    if question.question_type in _LETTERED_TYPES and question.options:
        expected = None
        if answer_key:
            expected = answer_key.get(str(question.id))
        if expected is None:
            expected = question.correct_answer
        correct = answer_text.strip().upper() == (expected or "").strip().upper()
        return correct, points if correct else 0.0

    if question.question_type in _TEXT_TYPES:
        correct = _normalize_text(answer_text) == _normalize_text(question.correct_answer)
        return correct, points if correct else 0.0

    logger.warning(f"Unknown question type {question.question_type!r} on question {question.id}")
    return False, 0.0


class ScoringService:
    def __init__(self, db: Session, clock: Clock = utc_now, events: EventBus = event_bus):
        self.db = db
        self.clock = clock
        self.events = events

    def get_result(self, attempt_id: int) -> Optional[ExamResult]:
        return self.db.query(ExamResult).filter(ExamResult.attempt_id == attempt_id).first()

    def _frozen_order(self, attempt: Attempt) -> Optional[QuestionOrder]:
        return self.db.query(QuestionOrder).filter(
            QuestionOrder.student_id == attempt.student_id,
            QuestionOrder.exam_id == attempt.exam_id
        ).first()

    def _scored_questions(self, attempt: Attempt, order: Optional[QuestionOrder]) -> List[Question]:
        """Questions the student was shown, in the frozen order when there is one."""
        if order is None:
            return self.db.query(Question).filter(Question.exam_id == attempt.exam_id).order_by(Question.position, Question.id).all()
        ids = list(order.question_order or [])
        by_id = {
            q.id: q
            for q in self.db.query(Question).filter(Question.exam_id == attempt.exam_id, Question.id.in_(ids))
        }
        return [by_id[qid] for qid in ids if qid in by_id]

    def ensure_result(self, attempt: Attempt) -> Tuple[ExamResult, bool]:
        """Score a terminal attempt once. Does not commit.

        Returns the result and whether this call created it.
        """
        if not AttemptStatus(attempt.status).is_terminal:
            raise ValueError(f"Attempt {attempt.id} is {attempt.status}; only terminal attempts are scored")

        existing = self.get_result(attempt.id)
        if existing is not None:
            return existing, False

        now = self.clock()
        order = self._frozen_order(attempt)
        answer_key = dict(order.answer_key or {}) if order else {}
        questions = self._scored_questions(attempt, order)
        answers = {
            answer.question_id: answer
            for answer in self.db.query(StudentAnswer).filter(StudentAnswer.attempt_id == attempt.id)
        }

        total_points = 0.0
        points_earned = 0.0
        correct_answers = 0
        needs_review = False

        for question in questions:
            total_points += float(question.points or 0)
            answer = answers.get(question.id)
            if answer is None:
                continue

            if answer.scored_at is not None:
                is_correct, earned = answer.is_correct, answer.points_earned
            else:
                is_correct, earned = grade_answer(question, answer.answer_text, answer_key)
                self.db.execute(
                    update(StudentAnswer)
                    .where(StudentAnswer.id == answer.id, StudentAnswer.scored_at.is_(None))
                    .values(is_correct=is_correct, points_earned=earned, scored_at=now)
                    .execution_options(synchronize_session=False)
                )

            points_earned += earned or 0.0
            if is_correct:
                correct_answers += 1
            if question.question_type == QuestionType.SUBJECTIVE.value and (answer.answer_text or "").strip():
                needs_review = True

        percentage = round(points_earned / total_points * 100, 2) if total_points > 0 else 0.0
        passed = percentage >= attempt.exam.passing_score

        stmt = (
            dialect_insert(self.db, ExamResult)
            .values(
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                session_id=attempt.session_id,
                exam_id=attempt.exam_id,
                total_questions=len(questions),
                correct_answers=correct_answers,
                total_points=total_points,
                points_earned=round(points_earned, 2),
                percentage_score=percentage,
                passed=passed,
                needs_review=needs_review,
                is_visible=bool(attempt.session.show_results_after_submit),
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["attempt_id"])
            .returning(ExamResult.id)
        )
        result_id = self.db.execute(stmt).scalar()
        result = self.get_result(attempt.id)
        if result_id is not None:
            logger.info(
                f"Scored attempt {attempt.id}: {points_earned}/{total_points} ({percentage}%), "
                f"{'passed' if passed else 'failed'}"
            )
        return result, result_id is not None

    def score_attempt(self, attempt_id: int) -> Union[ExamResult, OperationFailure]:
        """Score on demand, e.g. from admin tooling after a crash between commit and scoring."""
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
        if not AttemptStatus(attempt.status).is_terminal:
            return failure(ErrorKind.INVALID_STATE, "Only submitted attempts can be scored")
        result, created = self.ensure_result(attempt)
        self.db.commit()
        if created:
            self.events.publish(ResultFinalized(
                attempt_id=attempt.id,
                session_id=attempt.session_id,
                student_id=attempt.student_id,
                result_id=result.id,
                percentage_score=result.percentage_score,
                passed=result.passed,
            ))
        return result
