from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base


class ExamSession(Base):
    __tablename__ = "exam_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_code = Column(String, unique=True, index=True, nullable=False)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False)
    class_level = Column(String, nullable=True)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    instructions = Column(Text, nullable=True)
    camera_monitoring_enabled = Column(Boolean, default=False, nullable=False)
    show_results_after_submit = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    exam = relationship("Exam", back_populates="sessions")
    participants = relationship("SessionParticipant", back_populates="session")

    def __repr__(self):
        return f"<ExamSession {self.session_code}>"


class SessionParticipant(Base):
    __tablename__ = "session_participants"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("exam_sessions.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("ExamSession", back_populates="participants")
    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_session_participant"),
    )
