"""
Session lifecycle events.

An in-process pub/sub bus that lets UIs follow sessions as they are queued,
change state, ask for input and stream output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable

from .core.logging import get_logger

logger = get_logger(__name__)


class BridgeEventType(Enum):
    """Event types emitted by the session manager and sessions."""

    # Host lifecycle
    HOST_READY = "host_ready"
    HOST_INIT_FAILED = "host_init_failed"

    # Session lifecycle
    SESSION_QUEUED = "session_queued"
    SESSION_STARTED = "session_started"
    SESSION_STATE = "session_state"
    SESSION_FINISHED = "session_finished"

    # Input round-trips
    INPUT_REQUESTED = "input_requested"
    INPUT_RESOLVED = "input_resolved"

    # Output streaming
    OUTPUT = "output"


@dataclass(slots=True)
class BridgeEvent:
    """One event emitted on the bus."""

    event_type: BridgeEventType
    session_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }
        if self.session_id:
            result["session_id"] = self.session_id
        return result


EventCallback = Callable[[BridgeEvent], None]


class BridgeEventBus:
    """Thread-safe subscriber list; callbacks run on the emitting thread."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._subscribers: list[EventCallback] = []
        self._type_subscribers: dict[BridgeEventType, list[EventCallback]] = {}

    def subscribe(self, callback: EventCallback) -> None:
        """Subscribe to all events."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def subscribe_to_type(self, event_type: BridgeEventType, callback: EventCallback) -> None:
        """Subscribe to a specific event type."""
        with self._lock:
            listeners = self._type_subscribers.setdefault(event_type, [])
            if callback not in listeners:
                listeners.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        """Unsubscribe from all events."""
        with self._lock:
            self._subscribers = [item for item in self._subscribers if item != callback]
            for event_type, listeners in self._type_subscribers.items():
                self._type_subscribers[event_type] = [
                    item for item in listeners if item != callback
                ]

    def emit(
        self,
        event_type: BridgeEventType,
        session_id: str | None = None,
        **payload: Any,
    ) -> BridgeEvent:
        event = BridgeEvent(event_type=event_type, session_id=session_id, payload=payload)
        with self._lock:
            listeners = list(self._subscribers)
            listeners.extend(self._type_subscribers.get(event_type, ()))

        # Dispatch outside lock
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.debug("Event subscriber failed for %s", event_type.value, exc_info=True)
        return event
