from datetime import timedelta

import pytest

from exam_engine.models import Attempt, ExamSession, SessionParticipant
from exam_engine.schemas.common import ErrorKind
from exam_engine.services.join_service import SessionJoinService


@pytest.fixture
def orphan_session(db, clock, factory, foreign_keys):
    """A session whose exam row is missing, written before keys are enforced."""
    factory.student()
    session = ExamSession(
        session_code="GHOST1",
        exam_id=999,
        class_level="JSS1A",
        starts_at=clock() - timedelta(minutes=5),
        ends_at=clock() + timedelta(hours=2),
        is_active=True,
    )
    db.add(session)
    db.commit()
    foreign_keys()
    return session


def test_join_with_missing_exam_is_an_integrity_error(db, clock, bus, orphan_session):
    result = SessionJoinService(db, clock=clock, events=bus).join_session("GHOST1", "JSS1A-001")

    assert result.success is False
    assert result.kind == ErrorKind.INTEGRITY_ERROR
    assert db.query(SessionParticipant).count() == 0
    assert db.query(Attempt).count() == 0
    assert bus.published == []


def test_integrity_error_maps_to_server_error(client, headers, db, orphan_session):
    response = client.post(
        "/api/v1/sessions/join",
        json={"session_code": "GHOST1", "student_id": "JSS1A-001"},
        headers=headers("JSS1A-001"),
    )

    assert response.status_code == 500
    assert response.json()["kind"] == "integrity_error"
    assert db.query(SessionParticipant).count() == 0
