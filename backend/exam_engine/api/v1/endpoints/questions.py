from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ... import deps
from ....core.cache import CacheManager
from ....schemas.common import Caller
from ....schemas.question import ShuffledQuestionSet
from ....services.question_order_service import QuestionOrderService

router = APIRouter()


@router.get("/{exam_id}", response_model=ShuffledQuestionSet)
def get_shuffled_questions(
    exam_id: int,
    student_id: Optional[str] = Query(default=None, description="Staff only; students always get their own set"),
    db: Session = Depends(deps.get_db),
    caller: Caller = Depends(deps.get_caller),
    cache_manager: CacheManager = Depends(deps.get_cache),
):
    """
    Questions of an exam in the caller's frozen order and option lettering.
    """
    target = student_id if caller.is_staff and student_id else caller.caller_id
    service = QuestionOrderService(db, cache_manager=cache_manager)
    return deps.as_response(service.get_shuffled_questions(target, exam_id, caller=caller))
