from sqlalchemy import Column, Integer, String, Text, Boolean, Float, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    passing_score = Column(Float, default=50.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    questions = relationship("Question", back_populates="exam", order_by="Question.position")
    sessions = relationship("ExamSession", back_populates="exam")


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String, nullable=False, default="multiple_choice")
    # {"A": "first option", "B": "second option", ...}
    options = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=True)
    points = Column(Integer, default=1, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    image_url = Column(String, nullable=True)

    exam = relationship("Exam", back_populates="questions")
