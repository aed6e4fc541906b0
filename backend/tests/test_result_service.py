import pytest

from exam_engine.models import ExamResult
from exam_engine.schemas.common import Caller, ErrorKind
from exam_engine.services.attempt_service import AttemptService
from exam_engine.services.result_service import ResultService

STUDENT = Caller(caller_id="JSS1A-001")
TEACHER = Caller(caller_id="teacher-1", role="teacher")


@pytest.fixture
def session(factory):
    factory.student()
    factory.student(student_id="JSS1A-002", full_name="Bola Ade")
    return factory.session(factory.exam())


@pytest.fixture
def attempts(db, clock, bus):
    return AttemptService(db, clock=clock, events=bus)


@pytest.fixture
def results(db, clock, bus):
    return ResultService(db, clock=clock, events=bus)


def test_not_scored_while_in_progress(attempts, results, session):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    assert results.get_result(state.attempt_id, caller=STUDENT).kind == ErrorKind.NOT_SCORED


def test_hidden_result_is_withheld_from_students_only(attempts, results, session):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    attempts.submit_exam(state.attempt_id)

    assert results.get_result(state.attempt_id, caller=STUDENT).kind == ErrorKind.RESULT_HIDDEN
    assert results.get_result(state.attempt_id, caller=TEACHER).result.attempt_id == state.attempt_id


def test_releasing_a_result_does_not_rescore(attempts, results, session, db):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    scored = attempts.submit_exam(state.attempt_id).result

    outcome = results.set_result_visibility(state.attempt_id, True, caller=TEACHER)

    assert outcome.updated == 1
    visible = results.get_result(state.attempt_id, caller=STUDENT).result
    assert visible.is_visible is True
    assert visible.created_at == scored.created_at
    assert visible.percentage_score == scored.percentage_score
    assert db.query(ExamResult).count() == 1


def test_students_cannot_change_visibility(attempts, results, session):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    attempts.submit_exam(state.attempt_id)
    assert results.set_result_visibility(state.attempt_id, True, caller=STUDENT).kind == ErrorKind.FORBIDDEN


def test_visibility_of_unscored_attempt(attempts, results, session):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    assert results.set_result_visibility(state.attempt_id, True, caller=TEACHER).kind == ErrorKind.NOT_SCORED
    assert results.set_result_visibility(999, True, caller=TEACHER).kind == ErrorKind.ATTEMPT_NOT_FOUND


def test_reading_result_after_deadline_settles_expiry(attempts, results, session, clock):
    state = attempts.start_or_resume(session.id, "JSS1A-001")
    clock.advance(minutes=30)

    outcome = results.get_result(state.attempt_id, caller=TEACHER)

    assert outcome.result.attempt_id == state.attempt_id


def test_session_visibility_and_listing(attempts, results, session):
    first = attempts.start_or_resume(session.id, "JSS1A-001")
    second = attempts.start_or_resume(session.id, "JSS1A-002")
    attempts.submit_exam(first.attempt_id)

    released = results.set_session_results_visibility(session.id, True, caller=TEACHER)
    listing = results.get_session_results(session.id, caller=TEACHER)

    assert released.updated == 1
    rows = {row.attempt_id: row for row in listing.attempts}
    assert rows[first.attempt_id].result.is_visible is True
    assert rows[second.attempt_id].result is None
    assert rows[second.attempt_id].status == "in_progress"
    assert listing.session_code == "MATH01"


def test_session_admin_requires_staff(results, session):
    assert results.get_session_results(session.id, caller=STUDENT).kind == ErrorKind.FORBIDDEN
    assert results.get_session_results(999, caller=TEACHER).kind == ErrorKind.SESSION_NOT_FOUND
    assert results.set_session_results_visibility(999, True, caller=TEACHER).kind == ErrorKind.SESSION_NOT_FOUND
