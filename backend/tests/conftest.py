import os

# Configure before anything from exam_engine reads settings
os.environ["CACHE_ENABLED"] = "false"
os.environ["DATABASE_URI"] = "sqlite://"
os.environ["REQUIRE_CLASS_LEVEL_MATCH"] = "true"

from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_engine.core.database import Base
from exam_engine.core.events import DomainEvent, EventBus
from exam_engine import models  # noqa: F401
from exam_engine.models import Exam, ExamSession, Question, Student

START = datetime(2026, 3, 2, 9, 0, 0)


class FrozenClock:
    """Manually advanced stand-in for utc_now."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingBus(EventBus):
    def __init__(self):
        super().__init__()
        self.published: List[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        super().publish(event)

    def of_type(self, event_type):
        return [e for e in self.published if isinstance(e, event_type)]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def foreign_keys(engine):
    """Call to make SQLite enforce foreign keys on the shared connection."""
    def enable():
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
    yield enable
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def bus():
    return RecordingBus()


class Factory:
    def __init__(self, db, clock):
        self.db = db
        self.clock = clock

    def student(self, student_id="JSS1A-001", full_name="Ada Obi", class_level="JSS1A", is_active=True):
        student = Student(
            student_id=student_id,
            full_name=full_name,
            class_level=class_level,
            school_name="Lagos Model College",
            is_active=is_active,
        )
        self.db.add(student)
        self.db.commit()
        return student

    def exam(self, questions=None, duration_minutes=15, passing_score=60.0, title="Mathematics"):
        exam = Exam(title=title, duration_minutes=duration_minutes, passing_score=passing_score)
        self.db.add(exam)
        self.db.flush()
        if questions is None:
            questions = default_questions()
        for position, fields in enumerate(questions):
            self.db.add(Question(exam_id=exam.id, position=position, **fields))
        self.db.commit()
        return exam

    def session(
        self,
        exam,
        session_code="MATH01",
        class_level="JSS1A",
        starts_in_minutes=-5,
        length_minutes=120,
        is_active=True,
        show_results_after_submit=False,
        camera_monitoring_enabled=True,
    ):
        starts_at = self.clock() + timedelta(minutes=starts_in_minutes)
        session = ExamSession(
            session_code=session_code,
            exam_id=exam.id,
            class_level=class_level,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(minutes=length_minutes),
            is_active=is_active,
            instructions="Answer every question.",
            camera_monitoring_enabled=camera_monitoring_enabled,
            show_results_after_submit=show_results_after_submit,
        )
        self.db.add(session)
        self.db.commit()
        return session


def default_questions():
    return [
        {
            "question_text": "What is 2 + 2?",
            "question_type": "multiple_choice",
            "options": {"A": "4", "B": "3", "C": "5", "D": "22"},
            "correct_answer": "A",
        },
        {
            "question_text": "Capital of France?",
            "question_type": "short_answer",
            "correct_answer": "Paris",
        },
        {
            "question_text": "The sun is a star.",
            "question_type": "true_false",
            "correct_answer": "True",
        },
    ]


@pytest.fixture
def factory(db, clock):
    return Factory(db, clock)


@pytest.fixture
def client(db, clock, bus):
    from fastapi.testclient import TestClient
    from exam_engine.api import deps
    from exam_engine.core.cache import CacheManager
    from exam_engine.core.database import get_db
    from exam_engine.main import app

    def override_get_db():
        yield db

    disabled_cache = CacheManager()
    disabled_cache.enabled = False

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_events] = lambda: bus
    app.dependency_overrides[deps.get_cache] = lambda: disabled_cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers():
    def build(caller_id, role="student"):
        return {"X-Caller-Id": caller_id, "X-Caller-Role": role}
    return build


@pytest.fixture
def exam_question_ids(db):
    from exam_engine.models import Question
    return [q.id for q in db.query(Question).order_by(Question.exam_id, Question.position).all()]
