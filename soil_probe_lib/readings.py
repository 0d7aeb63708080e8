"""Latest-value store for probe readings."""

import logging
import threading
from typing import Callable, List

from soil_probe_lib.models import PartialUpdate, ReadingField, Readings

logger = logging.getLogger(__name__)

ReadingsListener = Callable[[Readings], None]


def merge_readings(prior: Readings, update: PartialUpdate) -> Readings:
    """Apply a partial update on top of a snapshot.

    Fields absent from the update keep their prior value. An empty update
    returns ``prior`` unchanged.

    Args:
        prior: Current snapshot
        update: Fields parsed from one line

    Returns:
        New snapshot
    """
    if not update:
        return prior
    return Readings(
        N=update.get(ReadingField.N, prior.N),
        P=update.get(ReadingField.P, prior.P),
        K=update.get(ReadingField.K, prior.K),
        EC=update.get(ReadingField.EC, prior.EC),
        temp=update.get(ReadingField.TEMP, prior.temp),
        moisture=update.get(ReadingField.MOISTURE, prior.moisture),
    )


class ReadingsStore:
    """Thread-safe holder of the current Readings snapshot.

    Single writer (the session's read loop), any number of readers. The
    snapshot is immutable and replaced as a whole on each merge, so readers
    never see a torn value.
    """

    def __init__(self, initial: Readings = Readings()) -> None:
        """Initialize store.

        Args:
            initial: Starting snapshot. Defaults to all fields zero.
        """
        self._snapshot = initial
        self._lock = threading.Lock()
        self._listeners: List[ReadingsListener] = []

    def merge(self, update: PartialUpdate) -> Readings:
        """Merge an update and notify listeners if anything was applied.

        Args:
            update: Fields parsed from one line

        Returns:
            Snapshot after the merge (the same object if update was empty)
        """
        if not update:
            return self.snapshot()

        with self._lock:
            self._snapshot = merge_readings(self._snapshot, update)
            snapshot = self._snapshot
            listeners = list(self._listeners)

        logger.debug(f"Merged {len(update)} field(s): {snapshot.describe()}")
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Readings listener failed: {e}", exc_info=True)

        return snapshot

    def snapshot(self) -> Readings:
        """Current readings (thread-safe)."""
        with self._lock:
            return self._snapshot

    def subscribe(self, listener: ReadingsListener) -> Callable[[], None]:
        """Register a callback invoked with each new snapshot.

        Callbacks run on the writer's thread and must not block.

        Args:
            listener: Callable taking the new Readings

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
