import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

SESSION_STARTED = "session_started"
SEGMENT_RECEIVED = "segment_received"
ANALYSIS_UPDATED = "analysis_updated"
SESSION_CLOSED = "session_closed"

EVENT_TYPES = (SESSION_STARTED, SEGMENT_RECEIVED, ANALYSIS_UPDATED, SESSION_CLOSED)


@dataclass
class SessionEvent:
    type: str
    session_id: str
    payload: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "session_id": self.session_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[SessionEvent], Any]


class EventBus:
    """Fan-out of session events to subscribers.

    Subscribers may be plain functions or coroutines. A subscriber that raises
    is logged and skipped; it never affects the session or other subscribers.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that removes it."""
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def emit(self, event: SessionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.type}: {e}", exc_info=True)
