"""Event sink passed to service adapters for lifecycle notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)

REQUEST_STARTED = "ai:request_started"
REQUEST_COMPLETED = "ai:request_completed"
REQUEST_FAILED = "ai:request_failed"
CONNECTION_STATUS = "ai:connection_status"

EventHandler = Callable[[str, dict[str, Any]], None]


class EventSink(Protocol):
    """Receives lifecycle events. Implementations must not block."""

    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class NullEventSink:
    """Drops every event."""

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        return None


@dataclass(slots=True)
class RecordedEvent:
    name: str
    payload: dict[str, Any]


@dataclass(slots=True)
class RecordingEventSink:
    """Keeps emitted events in memory and fans them out to subscribers.

    Subscriber exceptions are logged and never reach the emitting component.
    """

    events: list[RecordedEvent] = field(default_factory=list)
    subscribers: list[EventHandler] = field(default_factory=list)

    def subscribe(self, handler: EventHandler) -> None:
        self.subscribers.append(handler)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(name=event, payload=payload))
        for handler in list(self.subscribers):
            try:
                handler(event, payload)
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber failed", event_name=event)

    def named(self, event: str) -> list[RecordedEvent]:
        return [recorded for recorded in self.events if recorded.name == event]


__all__ = (
    "CONNECTION_STATUS",
    "REQUEST_COMPLETED",
    "REQUEST_FAILED",
    "REQUEST_STARTED",
    "EventHandler",
    "EventSink",
    "NullEventSink",
    "RecordedEvent",
    "RecordingEventSink",
)
