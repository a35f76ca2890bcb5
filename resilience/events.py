"""Module events: append-only MarginEvent log with subscribers."""
#
# PURPOSE:
# Every component records what it did as a MarginEvent. The log is the
# structured observability surface of the engine; subscribers (metrics,
# loggers, UIs) receive each event synchronously after it is appended.
#
# A failing subscriber never fails the operation that produced the event.
#

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Iterable, List, Optional

from resilience.contracts.margin import MarginEvent, MarginEventType

logger = logging.getLogger(__name__)

EventCallback = Callable[[MarginEvent], None]


class EventLog:
    """
    Bounded, thread-safe, append-only event log.

    The oldest events are dropped once `capacity` is reached.
    """

    def __init__(self, capacity: int = 10000):
        self._events: Deque[MarginEvent] = deque(maxlen=capacity)
        self._subscribers: List[EventCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: EventCallback):
        self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: MarginEvent) -> MarginEvent:
        """Append an event and broadcast it to all subscribers."""
        with self._lock:
            self._events.append(event)

        logger.debug(f"[EventLog] {event.type.value}: {event.description}")

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[EventLog] Subscriber failed: {e}")
        return event

    def events(
        self,
        event_type: Optional[MarginEventType] = None,
        since: Optional[float] = None,
    ) -> List[MarginEvent]:
        with self._lock:
            snapshot: Iterable[MarginEvent] = list(self._events)
        return [
            e for e in snapshot
            if (event_type is None or e.type == event_type)
            and (since is None or e.timestamp >= since)
        ]

    def recent(self, count: int = 10) -> List[MarginEvent]:
        with self._lock:
            if count <= 0:
                return []
            return list(self._events)[-count:]

    def clear(self):
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
