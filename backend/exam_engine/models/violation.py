from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base


class Violation(Base):
    """Append-only proctoring event log."""
    __tablename__ = "proctoring_violations"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("student_exam_attempts.id"), nullable=False, index=True)
    violation_type = Column(String, nullable=False)
    severity = Column(String, default="medium", nullable=False)
    evidence = Column(JSON, nullable=True)
    detected_at = Column(DateTime, default=datetime.utcnow)

    attempt = relationship("Attempt", back_populates="violations")
    acknowledgement = relationship("WarningAcknowledgement", back_populates="violation", uselist=False)

    def __repr__(self):
        return f"<Violation {self.violation_type} for attempt {self.attempt_id}>"


class WarningAcknowledgement(Base):
    """A student's acknowledgement of a teacher warning; at most one per warning."""
    __tablename__ = "warning_acknowledgements"

    id = Column(Integer, primary_key=True, index=True)
    violation_id = Column(Integer, ForeignKey("proctoring_violations.id"), nullable=False, unique=True)
    acknowledged_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    violation = relationship("Violation", back_populates="acknowledgement")

    def __repr__(self):
        return f"<WarningAcknowledgement for violation {self.violation_id}>"
