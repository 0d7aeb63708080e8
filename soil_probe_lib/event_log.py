"""Thread-safe bounded log of diagnostic events."""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, List, Optional

from soil_probe_lib import protocol
from soil_probe_lib.models import Event, Severity

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], None]

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class EventLog:
    """Fixed-size, most-recent-first record of session events.

    Once the log reaches capacity, the oldest event is discarded when a new
    one is appended. Every event is also forwarded to the Python logger.
    """

    def __init__(self, capacity: int = protocol.EVENT_LOG_CAPACITY) -> None:
        """Initialize event log.

        Args:
            capacity: Maximum number of events to keep. Defaults to 100.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        # Newest on the left
        self._events: deque[Event] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._capacity = capacity
        self._listeners: List[EventListener] = []

    def append(self, severity: Severity, message: str) -> Event:
        """Record an event stamped with the current time (thread-safe).

        Listeners are notified of the new head event after it is stored.

        Args:
            severity: Severity tag
            message: Event text

        Returns:
            The recorded Event
        """
        event = Event(ts=datetime.now(), severity=severity, message=message)

        with self._lock:
            self._events.appendleft(event)
            listeners = list(self._listeners)

        logger.log(_LOG_LEVELS[severity], f"[{severity.value}] {message}")

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed: {e}", exc_info=True)

        return event

    def snapshot(self) -> List[Event]:
        """Get a copy of all current events, newest first (thread-safe)."""
        with self._lock:
            return list(self._events)

    def latest(self) -> Optional[Event]:
        """Most recent event, or None if the log is empty."""
        with self._lock:
            return self._events[0] if self._events else None

    def clear(self) -> None:
        """Remove all events (thread-safe)."""
        with self._lock:
            count = len(self._events)
            self._events.clear()
        logger.debug(f"Cleared {count} events from log")

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a callback invoked with each new event.

        Callbacks run on the appending thread and must not block.

        Args:
            listener: Callable taking the new Event

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        """Current number of events (thread-safe)."""
        with self._lock:
            return len(self._events)

    @property
    def capacity(self) -> int:
        """Maximum number of events kept."""
        return self._capacity
