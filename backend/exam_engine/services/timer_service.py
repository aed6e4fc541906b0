"""
Server-authoritative exam timer.

Remaining time is derived on every read from the persisted ``started_at``;
client-reported values are never trusted. A read that finds an in-progress
attempt out of time force-submits it, which is the only self-transition of
the attempt state machine.
"""
from sqlalchemy.orm import Session
from typing import Optional, Union
from datetime import datetime
import logging

from ..core.config import settings
from ..core.constants import AttemptStatus, TimerBand
from ..core.events import EventBus, event_bus
from ..models.attempt import Attempt
from ..schemas.attempt import TimerStatus
from ..schemas.common import Caller, ErrorKind, OperationFailure, failure
from ..utils.timezone import Clock, utc_now
from .access import check_attempt_access

logger = logging.getLogger(__name__)


def compute_remaining(started_at: Optional[datetime], duration_seconds: int, now: datetime) -> int:
    """``max(0, duration - (now - started_at))`` in whole seconds."""
    if started_at is None:
        return duration_seconds
    elapsed = int((now - started_at).total_seconds())
    if elapsed < 0:
        elapsed = 0
    return max(0, duration_seconds - elapsed)


def timer_band(remaining: int, duration_seconds: int) -> TimerBand:
    if remaining <= 0:
        return TimerBand.EXPIRED
    if duration_seconds <= 0:
        return TimerBand.NORMAL
    if remaining <= duration_seconds * settings.timer_warning_fraction:
        return TimerBand.WARNING
    if remaining <= duration_seconds * settings.timer_caution_fraction:
        return TimerBand.CAUTION
    return TimerBand.NORMAL


def attempt_duration(attempt: Attempt) -> int:
    if attempt.duration_seconds is not None:
        return attempt.duration_seconds
    return attempt.exam.duration_minutes * 60


class TimerService:
    def __init__(self, db: Session, clock: Clock = utc_now, events: EventBus = event_bus):
        self.db = db
        self.clock = clock
        self.events = events

    def remaining_for(self, attempt: Attempt, now: Optional[datetime] = None) -> int:
        status = AttemptStatus(attempt.status)
        if status.is_terminal:
            return 0
        if status == AttemptStatus.NOT_STARTED:
            return attempt_duration(attempt)
        return compute_remaining(attempt.started_at, attempt_duration(attempt), now or self.clock())

    def get_timer_status(self, attempt_id: int, caller: Optional[Caller] = None) -> Union[TimerStatus, OperationFailure]:
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            return failure(ErrorKind.ATTEMPT_NOT_FOUND, f"Attempt {attempt_id} not found")
        access_failure = check_attempt_access(caller, attempt)
        if access_failure:
            return access_failure

        from .attempt_service import AttemptService
        AttemptService(self.db, clock=self.clock, events=self.events).refresh_expiry(attempt)

        now = self.clock()
        duration = attempt_duration(attempt)
        remaining = self.remaining_for(attempt, now)
        status = AttemptStatus(attempt.status)
        if status == AttemptStatus.NOT_STARTED:
            band = TimerBand.NORMAL
        else:
            band = timer_band(remaining, duration)

        return TimerStatus(
            attempt_id=attempt.id,
            status=attempt.status,
            time_remaining_seconds=remaining,
            duration_seconds=duration,
            band=band,
            is_expired=status == AttemptStatus.SUBMITTED,
            server_time=now.isoformat(),
        )
