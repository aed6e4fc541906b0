"""
In-process domain events.

State-machine transitions publish events after their transaction commits.
Subscribers (camera controller, live notifier) run synchronously and are
best effort: a failing subscriber is logged and never affects the caller.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    attempt_id: int
    session_id: int
    student_id: int

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        payload["event"] = self.name
        return payload


@dataclass(frozen=True)
class AttemptStarted(DomainEvent):
    started_at: Optional[datetime] = None
    duration_seconds: int = 0


@dataclass(frozen=True)
class AttemptTerminated(DomainEvent):
    status: str = "submitted"
    reason: str = "student_submit"
    terminated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ViolationRecorded(DomainEvent):
    violation_type: str = ""
    severity: str = "low"
    warning_count: int = 0
    is_flagged: bool = False
    suggested_action: str = "monitor"


@dataclass(frozen=True)
class ResultFinalized(DomainEvent):
    result_id: int = 0
    percentage_score: float = 0.0
    passed: bool = False


Handler = Callable[[DomainEvent], None]


class EventBus:

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self.subscribe(DomainEvent, handler)

    def clear(self) -> None:
        self._handlers.clear()

    def publish(self, event: DomainEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Event handler {getattr(handler, '__name__', handler)} failed for {event.name}: {e}", exc_info=True)


event_bus = EventBus()
