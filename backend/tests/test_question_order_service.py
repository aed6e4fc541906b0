import pytest

from exam_engine.core.cache import CacheManager
from exam_engine.models import Question, QuestionOrder
from exam_engine.schemas.common import Caller, ErrorKind, OperationFailure
from exam_engine.services.attempt_service import AttemptService
from exam_engine.services.question_order_service import QuestionOrderService, order_cache_key


class MemoryCache(CacheManager):
    def __init__(self):
        super().__init__()
        self.enabled = True
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ttl=None):
        self.store[key] = value
        return True


def mc(i, options=4):
    return {
        "question_text": f"Question {i}",
        "question_type": "multiple_choice",
        "options": {letter: f"{i}-{letter}" for letter in "ABCDEFGH"[:options]},
        "correct_answer": "B",
    }


@pytest.fixture
def exam(factory):
    factory.student()
    factory.student(student_id="JSS1A-002", full_name="Bola Ade")
    return factory.exam(questions=[mc(i) for i in range(6)])


def fingerprint(question_set):
    return [(q.question_id, q.options) for q in question_set.questions]


def test_repeated_fetches_are_identical(db, exam):
    service = QuestionOrderService(db)
    first = service.get_shuffled_questions("JSS1A-001", exam.id)
    second = service.get_shuffled_questions("jss1a_1", exam.id)

    assert fingerprint(first) == fingerprint(second)
    assert first.seed == second.seed
    assert db.query(QuestionOrder).count() == 1


def test_positions_follow_frozen_order(db, exam):
    result = QuestionOrderService(db).get_shuffled_questions("JSS1A-001", exam.id)
    assert [q.position for q in result.questions] == list(range(6))
    assert sorted(q.question_id for q in result.questions) == sorted(q.id for q in exam.questions)


def test_students_get_different_shuffles(db, exam):
    service = QuestionOrderService(db)
    first = service.get_shuffled_questions("JSS1A-001", exam.id)
    second = service.get_shuffled_questions("JSS1A-002", exam.id)
    assert fingerprint(first) != fingerprint(second)


def test_stored_order_wins_over_exam_changes(db, exam):
    service = QuestionOrderService(db)
    before = service.get_shuffled_questions("JSS1A-001", exam.id)

    db.add(Question(exam_id=exam.id, position=99, **mc(99)))
    db.commit()
    after = service.get_shuffled_questions("JSS1A-001", exam.id)

    assert fingerprint(after) == fingerprint(before)


def test_questions_added_after_freeze_are_not_scored(db, clock, bus, exam, factory):
    session = factory.session(exam)
    attempts = AttemptService(db, clock=clock, events=bus)
    attempt_id = attempts.start_or_resume(session.id, "JSS1A-001").attempt_id
    shown = QuestionOrderService(db).get_shuffled_questions("JSS1A-001", exam.id)

    db.add(Question(exam_id=exam.id, position=99, **mc(99)))
    db.commit()

    order = db.query(QuestionOrder).one()
    for q in shown.questions:
        attempts.submit_answer(attempt_id, q.question_id, order.answer_key[str(q.question_id)])
    result = attempts.submit_exam(attempt_id).result

    assert result.total_questions == len(shown.questions)
    assert result.correct_answers == len(shown.questions)
    assert result.percentage_score == 100.0


def test_first_writer_wins(db, exam):
    from exam_engine.models import Student
    student = db.query(Student).filter(Student.student_id == "JSS1A-001").one()
    db.add(QuestionOrder(
        student_id=student.id,
        exam_id=exam.id,
        seed=7,
        question_order=[q.id for q in reversed(exam.questions)],
        option_mappings={},
        shuffled_options={},
        answer_key={},
    ))
    db.commit()

    order = QuestionOrderService(db).get_or_create_order(student, exam)

    assert order.seed == 7
    assert order.question_order == [q.id for q in reversed(exam.questions)]


def test_answer_key_is_not_exposed(db, exam):
    result = QuestionOrderService(db).get_shuffled_questions("JSS1A-001", exam.id)
    dumped = result.model_dump()
    assert "answer_key" not in dumped
    assert all("correct_answer" not in q for q in dumped["questions"])


def test_cache_is_populated_and_reused(db, exam):
    cache = MemoryCache()
    service = QuestionOrderService(db, cache_manager=cache)
    first = service.get_shuffled_questions("JSS1A-001", exam.id)

    student_pk = db.query(QuestionOrder.student_id).scalar()
    assert order_cache_key(student_pk, exam.id) in cache.store

    db.query(QuestionOrder).delete()
    db.commit()
    second = service.get_shuffled_questions("JSS1A-001", exam.id)
    assert fingerprint(second) == fingerprint(first)


def test_unknown_student_or_exam(db, exam):
    service = QuestionOrderService(db)
    assert service.get_shuffled_questions("JSS9Z-001", exam.id).kind == ErrorKind.STUDENT_NOT_FOUND
    assert service.get_shuffled_questions("JSS1A-001", 999).kind == ErrorKind.EXAM_NOT_FOUND


def test_students_must_start_before_fetching(db, clock, bus, exam, factory):
    session = factory.session(exam)
    service = QuestionOrderService(db)
    caller = Caller(caller_id="JSS1A-001")

    assert service.get_shuffled_questions("JSS1A-001", exam.id, caller=caller).kind == ErrorKind.INVALID_STATE

    AttemptService(db, clock=clock, events=bus).start_or_resume(session.id, "JSS1A-001")
    result = service.get_shuffled_questions("JSS1A-001", exam.id, caller=caller)
    assert not isinstance(result, OperationFailure)

    other = service.get_shuffled_questions("JSS1A-002", exam.id, caller=caller)
    assert other.kind == ErrorKind.FORBIDDEN


def test_too_many_options_is_a_validation_error(db, factory):
    factory.student()
    exam = factory.exam(questions=[mc(0, options=8), {
        "question_text": "Too many",
        "question_type": "multiple_choice",
        "options": {f"K{i}": str(i) for i in range(9)},
        "correct_answer": "K0",
    }])
    result = QuestionOrderService(db).get_shuffled_questions("JSS1A-001", exam.id)
    assert result.kind == ErrorKind.VALIDATION_ERROR
    assert db.query(QuestionOrder).count() == 0
