import pytest

from exam_engine.core.config import settings
from exam_engine.models import Attempt, ExamResult, Question, QuestionOrder, StudentAnswer
from exam_engine.schemas.common import ErrorKind
from exam_engine.services.attempt_service import AttemptService
from exam_engine.services.join_service import SessionJoinService
from exam_engine.services.scoring_service import ScoringService, grade_answer


def question(**kwargs):
    defaults = {"id": 1, "question_text": "?", "question_type": "multiple_choice", "points": 2}
    defaults.update(kwargs)
    return Question(**defaults)


def test_lettered_question_uses_shuffled_key():
    q = question(options={"A": "4", "B": "3", "C": "5"}, correct_answer="A")
    key = {"1": "C"}
    assert grade_answer(q, "C", key) == (True, 2.0)
    assert grade_answer(q, "A", key) == (False, 0.0)
    assert grade_answer(q, " c ", key) == (True, 2.0)


def test_lettered_question_without_key_falls_back_to_author_letter():
    q = question(options={"A": "4", "B": "3"}, correct_answer="A")
    assert grade_answer(q, "A", {}) == (True, 2.0)


def test_text_answers_compare_trimmed_and_caseless():
    q = question(question_type="short_answer", correct_answer="Paris")
    assert grade_answer(q, "  pARIS ", None) == (True, 2.0)
    assert grade_answer(q, "Lyon", None) == (False, 0.0)
    gap = question(question_type="fill_in_gap", correct_answer="photosynthesis")
    assert grade_answer(gap, "Photosynthesis", None)[0] is True


def test_unlettered_true_false_compares_text():
    q = question(question_type="true_false", correct_answer="True")
    assert grade_answer(q, "true", None) == (True, 2.0)
    assert grade_answer(q, "False", None) == (False, 0.0)


def test_blank_answer_is_wrong():
    q = question(question_type="short_answer", correct_answer="x")
    assert grade_answer(q, "   ", None) == (False, 0.0)
    assert grade_answer(q, None, None) == (False, 0.0)


def test_subjective_gets_capped_heuristic_credit():
    q = question(question_type="subjective", points=4)
    long_answer = "x" * (settings.subjective_min_length + 1)
    assert grade_answer(q, long_answer, None) == (None, round(4 * settings.subjective_credit_fraction, 2))
    assert grade_answer(q, "short", None) == (None, 0.0)


@pytest.fixture
def in_progress(db, clock, bus, factory):
    student = factory.student()
    exam = factory.exam(passing_score=60.0)
    session = factory.session(exam)
    joined = SessionJoinService(db, clock=clock, events=bus).join_session("MATH01", "JSS1A-001")
    AttemptService(db, clock=clock, events=bus).start_or_resume(session.id, "JSS1A-001")
    questions = db.query(Question).filter(Question.exam_id == exam.id).order_by(Question.position).all()
    return joined.attempt_id, student, exam, questions


def freeze_order(db, student, exam, questions, mc_key):
    db.add(QuestionOrder(
        student_id=student.id,
        exam_id=exam.id,
        seed=1,
        question_order=[q.id for q in questions],
        option_mappings={str(questions[0].id): {"A": mc_key}},
        shuffled_options={},
        answer_key={str(questions[0].id): mc_key},
    ))
    db.commit()


def test_shuffled_letter_scores_and_original_letter_does_not(db, clock, bus, in_progress):
    attempt_id, student, exam, questions = in_progress
    freeze_order(db, student, exam, questions, "C")
    service = AttemptService(db, clock=clock, events=bus)
    service.submit_answer(attempt_id, questions[0].id, "C")
    service.submit_answer(attempt_id, questions[1].id, " paris ")
    service.submit_answer(attempt_id, questions[2].id, "false")

    outcome = service.submit_exam(attempt_id)

    result = outcome.result
    assert result.total_questions == 3
    assert result.correct_answers == 2
    assert result.points_earned == 2.0
    assert result.total_points == 3.0
    assert result.percentage_score == 66.67
    assert result.passed is True
    assert result.needs_review is False


def test_original_letter_is_marked_wrong(db, clock, bus, in_progress):
    attempt_id, student, exam, questions = in_progress
    freeze_order(db, student, exam, questions, "C")
    service = AttemptService(db, clock=clock, events=bus)
    service.submit_answer(attempt_id, questions[0].id, "A")

    outcome = service.submit_exam(attempt_id)

    answer = db.query(StudentAnswer).filter(StudentAnswer.question_id == questions[0].id).one()
    assert answer.is_correct is False
    assert answer.scored_at is not None
    assert outcome.result.correct_answers == 0
    assert outcome.result.passed is False


def test_unanswered_exam_scores_zero(db, clock, bus, in_progress):
    attempt_id, *_ = in_progress
    outcome = AttemptService(db, clock=clock, events=bus).submit_exam(attempt_id)
    assert outcome.result.percentage_score == 0.0
    assert outcome.result.passed is False


def test_exam_without_questions_scores_zero_percent(db, clock, bus, factory):
    factory.student()
    session = factory.session(factory.exam(questions=[]))
    service = AttemptService(db, clock=clock, events=bus)
    state = service.start_or_resume(session.id, "JSS1A-001")

    outcome = service.submit_exam(state.attempt_id)

    assert outcome.result.total_points == 0.0
    assert outcome.result.percentage_score == 0.0


def test_subjective_answer_needs_review(db, clock, bus, factory):
    factory.student()
    exam = factory.exam(questions=[
        {"question_text": "Describe the water cycle.", "question_type": "subjective", "points": 4},
    ])
    session = factory.session(exam)
    service = AttemptService(db, clock=clock, events=bus)
    state = service.start_or_resume(session.id, "JSS1A-001")
    service.submit_answer(state.attempt_id, exam.questions[0].id, "Water evaporates, condenses and falls as rain.")

    result = service.submit_exam(state.attempt_id).result

    assert result.needs_review is True
    assert result.points_earned == 2.0
    assert result.correct_answers == 0


def test_result_is_written_once(db, clock, bus, in_progress):
    attempt_id, *_ = in_progress
    AttemptService(db, clock=clock, events=bus).submit_exam(attempt_id)
    scoring = ScoringService(db, clock=clock, events=bus)
    attempt = db.get(Attempt, attempt_id)

    result, created = scoring.ensure_result(attempt)

    assert created is False
    assert db.query(ExamResult).count() == 1
    assert scoring.score_attempt(attempt_id).id == result.id


def test_in_progress_attempt_is_not_scored(db, clock, bus, in_progress):
    attempt_id, *_ = in_progress
    scoring = ScoringService(db, clock=clock, events=bus)
    assert scoring.score_attempt(attempt_id).kind == ErrorKind.INVALID_STATE
    with pytest.raises(ValueError):
        scoring.ensure_result(db.get(Attempt, attempt_id))


def test_initial_visibility_follows_session(db, clock, bus, factory):
    factory.student()
    session = factory.session(factory.exam(), show_results_after_submit=True)
    service = AttemptService(db, clock=clock, events=bus)
    state = service.start_or_resume(session.id, "JSS1A-001")
    assert service.submit_exam(state.attempt_id).result.is_visible is True
