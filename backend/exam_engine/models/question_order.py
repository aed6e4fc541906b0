from sqlalchemy import Column, Integer, DateTime, ForeignKey, JSON, BigInteger, UniqueConstraint
from datetime import datetime
from ..core.database import Base


class QuestionOrder(Base):
    """Frozen per-student shuffle. Written once, never updated."""
    __tablename__ = "student_question_orders"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False)
    seed = Column(BigInteger, nullable=False)
    # [question_id, ...] in presentation order
    question_order = Column(JSON, nullable=False)
    # {question_id: {original_letter: new_letter}}
    option_mappings = Column(JSON, nullable=False, default=dict)
    # {question_id: {new_letter: option_text}}
    shuffled_options = Column(JSON, nullable=False, default=dict)
    # {question_id: new correct letter}, lettered questions only
    answer_key = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_question_order_student_exam"),
    )
