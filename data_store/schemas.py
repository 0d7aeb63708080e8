"""Schema normalization for readings snapshots to DataFrame format.

Every row carries a timestamp plus one column per probe field, in the probe's
field order, so CSV exports line up with what the device sends.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from soil_probe_lib.models import ReadingField, Readings

# DataFrame schema: column names and their dtypes
SCHEMA = {
    "timestamp": str,  # UTC ISO 8601 format
    **{reading_field.value: float for reading_field in ReadingField},
}


def readings_to_row(readings: Readings, ts: Optional[datetime] = None) -> Dict[str, Any]:
    """Convert a Readings snapshot to a DataFrame row dictionary.

    Args:
        readings: Snapshot from the ReadingsStore
        ts: When the snapshot was taken. Defaults to now. Naive datetimes
            are assumed to be UTC.

    Returns:
        Dictionary with all SCHEMA keys, ready for DataFrame append
    """
    if ts is None:
        ts = datetime.now(timezone.utc)
    elif ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)

    row: Dict[str, Any] = {"timestamp": ts.isoformat()}
    row.update(readings.to_dict())
    return row
