"""Thread-safe DataFrame history of readings snapshots.

The session's ReadingsStore only keeps the latest value. ReadingsHistory
subscribes to it and records every new snapshot as a row, so observers can
look at recent trends and download them as CSV.

History lives in memory only and is bounded by max_rows; nothing is written
to disk.
"""

import logging
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Callable, Optional

import pandas as pd

from data_store.schemas import SCHEMA, readings_to_row
from soil_probe_lib.models import Readings
from soil_probe_lib.readings import ReadingsStore

logger = logging.getLogger(__name__)


class ReadingsHistory:
    """Thread-safe in-memory DataFrame of readings snapshots.

    Columns: timestamp, N, P, K, EC, temp, moisture. Oldest rows are trimmed
    once max_rows is exceeded.
    """

    def __init__(self, max_rows: int = 10000) -> None:
        """Initialize empty history.

        Args:
            max_rows: Maximum rows to keep. Older rows are trimmed after appends.
        """
        if max_rows <= 0:
            raise ValueError(f"max_rows must be positive, got {max_rows}")

        self._lock = RLock()
        self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
        self._max_rows = max_rows
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, store: ReadingsStore) -> None:
        """Start recording every snapshot merged into store.

        Replaces any previous attachment.
        """
        self.detach()
        self._unsubscribe = store.subscribe(self.append)
        logger.debug("History attached to readings store")

    def detach(self) -> None:
        """Stop recording."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def append(self, readings: Readings, ts: Optional[datetime] = None) -> None:
        """Append one snapshot (thread-safe).

        Args:
            readings: Snapshot to record
            ts: Snapshot time. Defaults to now (UTC).
        """
        row = readings_to_row(readings, ts)

        with self._lock:
            new_df = pd.DataFrame([row], columns=list(SCHEMA.keys()))
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            # Trim to max_rows (keep most recent)
            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

    def get_dataframe(self) -> pd.DataFrame:
        """Get copy of entire DataFrame (thread-safe)."""
        with self._lock:
            return self._df.copy()

    def get_recent(self, seconds: int = 60) -> pd.DataFrame:
        """Get snapshots from the last N seconds.

        Thread-safe. Filters by timestamp column (ISO 8601 strings converted to datetime).

        Args:
            seconds: Number of seconds of recent history to retrieve

        Returns:
            DataFrame containing only rows within the time window
        """
        with self._lock:
            if self._df.empty:
                return pd.DataFrame(columns=list(SCHEMA.keys()))
            df = self._df.copy()

        timestamps = pd.to_datetime(df["timestamp"], format="ISO8601", utc=True)
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=seconds)
        return df[timestamps >= cutoff].reset_index(drop=True)

    def get_latest(self) -> Optional[dict]:
        """Most recent row as a dictionary, or None if empty."""
        with self._lock:
            if self._df.empty:
                return None
            return self._df.iloc[-1].to_dict()

    def get_stats(self) -> dict:
        """Get summary statistics about recorded snapshots.

        Returns:
            Dictionary with keys:
                - row_count: Number of snapshots
                - start_time: ISO timestamp of first snapshot (or None)
                - end_time: ISO timestamp of last snapshot (or None)
                - duration_s: Time span in seconds
                - mean: Per-field mean values (empty if no data)
        """
        with self._lock:
            df = self._df.copy()

        if df.empty:
            return {
                "row_count": 0,
                "start_time": None,
                "end_time": None,
                "duration_s": 0.0,
                "mean": {},
            }

        timestamps = pd.to_datetime(df["timestamp"], format="ISO8601", utc=True)
        start = timestamps.iloc[0]
        end = timestamps.iloc[-1]
        fields = [name for name in SCHEMA if name != "timestamp"]

        return {
            "row_count": len(df),
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "duration_s": (end - start).total_seconds(),
            "mean": {name: float(value) for name, value in df[fields].astype(float).mean().items()},
        }

    def to_csv(self) -> str:
        """Render the whole history as CSV text (thread-safe)."""
        with self._lock:
            return self._df.to_csv(index=False)

    def clear(self) -> None:
        """Remove all rows (thread-safe)."""
        with self._lock:
            count = len(self._df)
            self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
        logger.debug(f"Cleared {count} rows from history")

    def __len__(self) -> int:
        with self._lock:
            return len(self._df)

    @property
    def max_rows(self) -> int:
        """Maximum rows kept."""
        return self._max_rows
