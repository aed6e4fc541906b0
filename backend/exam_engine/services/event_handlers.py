"""Default subscribers wired onto the event bus at startup."""
from sqlalchemy import update
from typing import Callable
import logging

from ..core.cache import CacheManager
from ..core.config import settings
from ..core.events import AttemptTerminated, DomainEvent, EventBus
from ..models.attempt import Attempt

logger = logging.getLogger(__name__)


def session_channel(session_id: int) -> str:
    return f"{settings.notification_channel_prefix}:session:{session_id}"


class LiveNotifier:
    """Best-effort push of every event to the session's Redis channel."""

    def __init__(self, cache_manager: CacheManager):
        self.cache = cache_manager

    def __call__(self, event: DomainEvent) -> None:
        delivered = self.cache.publish(session_channel(event.session_id), event.to_payload())
        if not delivered:
            logger.debug(f"{event.name} for attempt {event.attempt_id} not pushed (pub/sub unavailable)")


class CameraController:
    """Turns the camera off once an attempt is over."""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def __call__(self, event: AttemptTerminated) -> None:
        db = self.session_factory()
        try:
            db.execute(
                update(Attempt)
                .where(Attempt.id == event.attempt_id, Attempt.camera_enabled.is_(True))
                .values(camera_enabled=False)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info(f"Camera disabled for attempt {event.attempt_id} ({event.reason})")
        finally:
            db.close()


def register_default_subscribers(bus: EventBus, session_factory: Callable, cache_manager: CacheManager) -> None:
    bus.subscribe(AttemptTerminated, CameraController(session_factory))
    bus.subscribe_all(LiveNotifier(cache_manager))
