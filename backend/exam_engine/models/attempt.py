from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base


class Attempt(Base):
    """One student's single run of one exam within one session."""
    __tablename__ = "student_exam_attempts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("exam_sessions.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False)
    status = Column(String, default="not_started", nullable=False)

    started_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    # Snapshot only; the authoritative value is derived from started_at
    time_remaining = Column(Integer, nullable=True)
    current_question_index = Column(Integer, default=0, nullable=False)

    warning_count = Column(Integer, default=0, nullable=False)
    is_flagged = Column(Boolean, default=False, nullable=False)
    flagged_at = Column(DateTime, nullable=True)
    camera_enabled = Column(Boolean, default=False, nullable=False)

    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("ExamSession")
    student = relationship("Student", back_populates="attempts")
    exam = relationship("Exam")
    answers = relationship("StudentAnswer", back_populates="attempt")
    violations = relationship("Violation", back_populates="attempt", order_by="Violation.detected_at")
    result = relationship("ExamResult", back_populates="attempt", uselist=False)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", "exam_id", name="uq_attempt_session_student_exam"),
        Index("ix_attempts_status_started_at", "status", "started_at"),
    )

    def __repr__(self):
        return f"<Attempt {self.id} {self.status}>"
