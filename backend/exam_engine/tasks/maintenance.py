from exam_engine.core.celery_app import celery_app
from exam_engine.core.database import SessionLocal
from exam_engine.core.events import EventBus, event_bus
from exam_engine.core.constants import AttemptStatus
from exam_engine.models.attempt import Attempt
from exam_engine.models.exam_session import ExamSession
from exam_engine.services.attempt_service import AttemptService
from exam_engine.services.timer_service import attempt_duration, compute_remaining
from exam_engine.utils.timezone import Clock, utc_now
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

logger = logging.getLogger(__name__)


def expire_stale_attempts_internal(db: Session, clock: Clock = utc_now, events: EventBus = event_bus) -> dict:
    """Force-submit every in-progress attempt whose server time is up."""
    now = clock()
    attempts = db.query(Attempt).filter(
        Attempt.status == AttemptStatus.IN_PROGRESS.value,
        Attempt.started_at.isnot(None),
        Attempt.started_at <= now
    ).all()

    service = AttemptService(db, clock=clock, events=events)
    checked = 0
    expired = 0
    for attempt in attempts:
        checked += 1
        if compute_remaining(attempt.started_at, attempt_duration(attempt), now) > 0:
            continue
        if service.refresh_expiry(attempt, now):
            expired += 1

    if expired:
        logger.info(f"Expired {expired} stale attempts out of {checked} in progress")
    return {'checked': checked, 'expired': expired}


def deactivate_ended_sessions_internal(db: Session, clock: Clock = utc_now) -> dict:
    now = clock()
    deactivated = db.execute(
        update(ExamSession)
        .where(ExamSession.is_active.is_(True), ExamSession.ends_at < now)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if deactivated:
        logger.info(f"Deactivated {deactivated} ended sessions")
    return {'deactivated': deactivated}


@celery_app.task(name="expire_stale_attempts")
def expire_stale_attempts():
    """Periodic sweep; every timer read expires attempts on its own as well"""
    db = SessionLocal()
    try:
        return expire_stale_attempts_internal(db)
    except Exception as exc:
        db.rollback()
        logger.error(f"Error in expire_stale_attempts: {exc}")
        raise exc
    finally:
        db.close()


@celery_app.task(name="deactivate_ended_sessions")
def deactivate_ended_sessions():
    db = SessionLocal()
    try:
        return deactivate_ended_sessions_internal(db)
    except Exception as exc:
        db.rollback()
        logger.error(f"Error in deactivate_ended_sessions: {exc}")
        raise exc
    finally:
        db.close()
