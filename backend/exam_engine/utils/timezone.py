"""
Server clock and display helpers.

All timestamps are stored as naive UTC; the configured display zone is only
applied when formatting for humans.
"""
from datetime import datetime
from typing import Callable
import pytz

from ..core.config import settings

Clock = Callable[[], datetime]


def get_display_tz():
    return pytz.timezone(settings.default_timezone)


def utc_now() -> datetime:
    """Current server time as naive UTC, the form stored in the database."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_display_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(get_display_tz())


def format_local_time(dt: datetime, format_str: str = None) -> str:
    return to_display_tz(dt).strftime(format_str or settings.timezone_display_format)


def get_server_time_info(clock: Clock = utc_now) -> dict:
    now = clock()
    local = to_display_tz(now)
    return {
        "timezone": settings.default_timezone,
        "offset": local.strftime("%z"),
        "server_time_utc": now.replace(tzinfo=pytz.UTC).isoformat(),
        "current_time": local.strftime(settings.timezone_display_format),
    }
