"""In-memory DataFrame history of readings snapshots."""

from data_store.schemas import SCHEMA, readings_to_row
from data_store.store import ReadingsHistory

__all__ = ["SCHEMA", "readings_to_row", "ReadingsHistory"]
