from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, Union
import logging

from ..core.cache import CacheManager, cache
from ..core.config import settings
from ..core.constants import AttemptStatus
from ..core.database import dialect_insert
from ..models.attempt import Attempt
from ..models.exam import Exam, Question
from ..models.question_order import QuestionOrder
from ..models.student import Student
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..schemas.question import ShuffledQuestion, ShuffledQuestionSet
from ..utils.identifiers import normalize_student_id
from ..utils.shuffling import QuestionInput, shuffle_questions
from .access import caller_owns_student

logger = logging.getLogger(__name__)


def order_cache_key(student_pk: int, exam_id: int) -> str:
    return f"question_order:{student_pk}:{exam_id}"


def _order_payload(order: QuestionOrder) -> dict:
    return {
        "seed": order.seed,
        "question_order": list(order.question_order or []),
        "shuffled_options": dict(order.shuffled_options or {}),
    }


class QuestionOrderService:
    def __init__(self, db: Session, cache_manager: CacheManager = cache):
        self.db = db
        self.cache = cache_manager

    def find_order(self, student_pk: int, exam_id: int) -> Optional[QuestionOrder]:
        return self.db.query(QuestionOrder).filter(
            QuestionOrder.student_id == student_pk,
            QuestionOrder.exam_id == exam_id
        ).first()

    def get_or_create_order(self, student: Student, exam: Exam) -> QuestionOrder:
        """First writer wins: an existing order is returned, never recomputed."""
        existing = self.find_order(student.id, exam.id)
        if existing is not None:
            return existing

        questions = self.db.query(Question).filter(Question.exam_id == exam.id).order_by(Question.position, Question.id).all()
        outcome = shuffle_questions(
            [
                QuestionInput(
                    question_id=q.id,
                    question_type=q.question_type,
                    options=q.options,
                    correct_answer=q.correct_answer,
                )
                for q in questions
            ],
            student.student_id,
            exam.id,
        )

        stmt = (
            dialect_insert(self.db, QuestionOrder)
            .values(
                student_id=student.id,
                exam_id=exam.id,
                seed=outcome.seed,
                question_order=outcome.question_order,
                option_mappings=outcome.option_mappings,
                shuffled_options=outcome.shuffled_options,
                answer_key=outcome.answer_key,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "exam_id"])
            .returning(QuestionOrder.id)
        )
        inserted_id = self.db.execute(stmt).scalar()
        self.db.commit()
        if inserted_id is not None:
            logger.info(f"Stored question order for student {student.student_id} on exam {exam.id} (seed {outcome.seed})")
        else:
            logger.info(f"Concurrent question order already stored for student {student.student_id} on exam {exam.id}")
        return self.find_order(student.id, exam.id)

    def _load_payload(self, student: Student, exam: Exam) -> dict:
        key = order_cache_key(student.id, exam.id)
        payload = self.cache.get(key)
        if payload:
            return payload
        order = self.get_or_create_order(student, exam)
        payload = _order_payload(order)
        self.cache.set(key, payload, ttl=settings.question_order_cache_ttl)
        return payload

    def get_shuffled_questions(
        self,
        student_id: str,
        exam_id: int,
        caller: Optional[Caller] = None,
    ) -> Union[ShuffledQuestionSet, OperationFailure]:
        canonical = normalize_student_id(student_id)
        student = self.db.query(Student).filter(Student.student_id == canonical).first()
        if student is None:
            return failure(ErrorKind.STUDENT_NOT_FOUND, f"Student {student_id!r} not found")
        exam = self.db.get(Exam, exam_id)
        if exam is None:
            return failure(ErrorKind.EXAM_NOT_FOUND, f"Exam {exam_id} not found")

        if caller is not None and not caller.is_staff:
            if not caller_owns_student(caller, student.student_id):
                return failure(ErrorKind.FORBIDDEN, "Students may only fetch their own questions")
            started = self.db.query(Attempt.id).filter(
                Attempt.student_id == student.id,
                Attempt.exam_id == exam.id,
                Attempt.status != AttemptStatus.NOT_STARTED.value
            ).first()
            if started is None:
                return failure(ErrorKind.INVALID_STATE, "Start the exam before requesting its questions")

        try:
            payload = self._load_payload(student, exam)
        except ValueError as e:
            return failure(ErrorKind.VALIDATION_ERROR, str(e))
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error storing question order for student {student.id}: {e}")
            return failure(ErrorKind.INTEGRITY_ERROR, "Question order references missing records")

        by_id = {q.id: q for q in self.db.query(Question).filter(Question.exam_id == exam.id)}
        shuffled_options = payload.get("shuffled_options") or {}
        questions = []
        for question_id in payload["question_order"]:
            question = by_id.get(question_id)
            if question is None:
                # Removed from the exam after the order was frozen
                continue
            questions.append(ShuffledQuestion(
                question_id=question.id,
                position=len(questions),
                question_text=question.question_text,
                question_type=question.question_type,
                points=question.points,
                options=shuffled_options.get(str(question.id)),
                image_url=question.image_url,
            ))

        return ShuffledQuestionSet(
            student_id=student.student_id,
            exam_id=exam.id,
            seed=payload["seed"],
            questions=questions,
        )
