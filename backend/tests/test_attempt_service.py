import pytest

from exam_engine.core.constants import AttemptStatus
from exam_engine.core.events import AttemptStarted, AttemptTerminated, ResultFinalized
from exam_engine.models import Attempt, ExamResult, StudentAnswer
from exam_engine.schemas.common import Caller, ErrorKind, OperationFailure
from exam_engine.services.attempt_service import AttemptService, InvalidTransition
from exam_engine.services.join_service import SessionJoinService


@pytest.fixture
def joined(db, clock, bus, factory):
    student = factory.student()
    exam = factory.exam()
    session = factory.session(exam)
    joined = SessionJoinService(db, clock=clock, events=bus).join_session("MATH01", "JSS1A-001")
    return session, student, exam, joined.attempt_id


@pytest.fixture
def service(db, clock, bus):
    return AttemptService(db, clock=clock, events=bus)


def test_start_stamps_clock_and_duration(service, joined, clock, bus):
    session, _, _, attempt_id = joined

    state = service.start_or_resume(session.id, "JSS1A-001")

    assert state.attempt_id == attempt_id
    assert state.status == AttemptStatus.IN_PROGRESS.value
    assert state.time_remaining == 15 * 60
    assert state.can_resume is False
    assert state.started_at == clock().isoformat()
    assert len(bus.of_type(AttemptStarted)) == 1


def test_resume_returns_server_time_and_position(service, joined, clock, bus, db):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    service.update_progress(attempt_id, 2)
    clock.advance(minutes=4)

    state = service.start_or_resume(session.id, "jss1a_1")

    assert state.can_resume is True
    assert state.time_remaining == 11 * 60
    assert state.current_question_index == 2
    assert len(bus.of_type(AttemptStarted)) == 1


def test_start_without_join_creates_the_attempt(db, clock, bus, factory):
    factory.student()
    session = factory.session(factory.exam())

    state = AttemptService(db, clock=clock, events=bus).start_or_resume(session.id, "JSS1A-001")

    assert state.status == AttemptStatus.IN_PROGRESS.value
    assert db.query(Attempt).count() == 1


def test_start_validates_session_window(service, joined, clock):
    session, _, _, _ = joined
    clock.advance(hours=3)
    result = service.start_or_resume(session.id, "JSS1A-001")
    assert result.kind == ErrorKind.SESSION_EXPIRED


def test_start_rejects_other_students(service, joined):
    session, _, _, _ = joined
    result = service.start_or_resume(session.id, "JSS1A-001", caller=Caller(caller_id="JSS1A-002"))
    assert result.kind == ErrorKind.FORBIDDEN


def test_resuming_terminal_attempt_reports_it_read_only(service, joined):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    service.submit_exam(attempt_id)

    state = service.start_or_resume(session.id, "JSS1A-001")

    assert state.status == AttemptStatus.COMPLETED.value
    assert state.can_resume is False
    assert state.time_remaining == 0


def test_backward_transition_is_refused(service, joined, db):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    attempt = db.get(Attempt, attempt_id)
    with pytest.raises(InvalidTransition):
        service._transition(attempt, AttemptStatus.IN_PROGRESS, AttemptStatus.NOT_STARTED)


def test_answers_are_upserted(service, joined, db, exam_question_ids):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    first_question = exam_question_ids[0]

    assert service.submit_answer(attempt_id, first_question, "B").accepted is True
    assert service.submit_answer(attempt_id, first_question, "A").accepted is True

    answers = db.query(StudentAnswer).filter(StudentAnswer.attempt_id == attempt_id).all()
    assert len(answers) == 1
    assert answers[0].answer_text == "A"


def test_answer_before_start_is_rejected(service, joined, exam_question_ids):
    _, _, _, attempt_id = joined
    result = service.submit_answer(attempt_id, exam_question_ids[0], "A")
    assert result.accepted is False
    assert result.reason == "not_started"


def test_answer_for_foreign_question_is_rejected(service, joined, factory):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    other_exam = factory.exam(title="Physics")
    foreign_question = other_exam.questions[0].id

    result = service.submit_answer(attempt_id, foreign_question, "A")

    assert result.kind == ErrorKind.QUESTION_NOT_FOUND


def test_answer_after_expiry_is_rejected_and_submits(service, joined, clock, bus, db, exam_question_ids):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    clock.advance(minutes=16)

    result = service.submit_answer(attempt_id, exam_question_ids[0], "A")

    assert result.accepted is False
    assert result.reason == "time_expired"
    attempt = db.get(Attempt, attempt_id)
    assert attempt.status == AttemptStatus.SUBMITTED.value
    assert [e.reason for e in bus.of_type(AttemptTerminated)] == ["time_expired"]


def test_answer_after_submit_is_rejected(service, joined, exam_question_ids):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    service.submit_exam(attempt_id)

    result = service.submit_answer(attempt_id, exam_question_ids[0], "A")

    assert result.accepted is False
    assert result.reason == "attempt_terminal"


def test_submit_is_idempotent(service, joined, db, bus):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")

    first = service.submit_exam(attempt_id)
    second = service.submit_exam(attempt_id)

    assert first.status == AttemptStatus.COMPLETED.value
    assert first.already_submitted is False
    assert second.already_submitted is True
    assert second.result.id == first.result.id
    assert db.query(ExamResult).count() == 1
    assert len(bus.of_type(AttemptTerminated)) == 1
    assert len(bus.of_type(ResultFinalized)) == 1


def test_submit_before_start_is_invalid(service, joined):
    _, _, _, attempt_id = joined
    assert service.submit_exam(attempt_id).kind == ErrorKind.INVALID_STATE


def test_submit_after_deadline_records_expiry(service, joined, clock):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    clock.advance(minutes=20)

    result = service.submit_exam(attempt_id)

    assert result.status == AttemptStatus.SUBMITTED.value
    assert result.result is not None


def test_progress_rejected_once_terminal(service, joined):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    service.submit_exam(attempt_id)

    result = service.update_progress(attempt_id, 1)

    assert result.accepted is False


def test_progress_refreshes_snapshot_from_server_clock(service, joined, clock, db):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    clock.advance(seconds=90)

    result = service.update_progress(attempt_id, 3)

    assert result.accepted is True
    assert result.time_remaining == 15 * 60 - 90
    attempt = db.get(Attempt, attempt_id)
    assert attempt.current_question_index == 3
    assert attempt.time_remaining == 15 * 60 - 90


def test_students_cannot_touch_other_attempts(service, joined):
    session, _, _, attempt_id = joined
    service.start_or_resume(session.id, "JSS1A-001")
    intruder = Caller(caller_id="JSS1A-002")

    assert service.submit_exam(attempt_id, caller=intruder).kind == ErrorKind.FORBIDDEN
    assert isinstance(service.update_progress(attempt_id, 1, caller=intruder), OperationFailure)


def test_unknown_attempt(service):
    assert service.submit_exam(999).kind == ErrorKind.ATTEMPT_NOT_FOUND
