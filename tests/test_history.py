"""Tests for the in-memory readings history."""

from datetime import datetime, timedelta, timezone

import pytest

from data_store import SCHEMA, ReadingsHistory, readings_to_row
from soil_probe_lib.models import ReadingField, Readings
from soil_probe_lib.readings import ReadingsStore


def test_row_has_all_schema_columns() -> None:
    row = readings_to_row(Readings(N=1.0), ts=datetime(2024, 5, 1, 12, 0, 0))

    assert list(row.keys()) == list(SCHEMA.keys())
    assert row["timestamp"] == "2024-05-01T12:00:00+00:00"
    assert row["N"] == 1.0


def test_history_records_store_updates() -> None:
    """Attached history gets one row per applied update."""
    store = ReadingsStore()
    history = ReadingsHistory()
    history.attach(store)

    store.merge({ReadingField.N: 5.0})
    store.merge({})
    store.merge({ReadingField.P: 7.0})

    df = history.get_dataframe()
    assert len(df) == 2
    assert df.iloc[-1]["N"] == 5.0
    assert df.iloc[-1]["P"] == 7.0

    history.detach()
    store.merge({ReadingField.K: 1.0})
    assert len(history) == 2


def test_max_rows_trims_oldest() -> None:
    history = ReadingsHistory(max_rows=3)

    for i in range(5):
        history.append(Readings(N=float(i)))

    df = history.get_dataframe()
    assert list(df["N"]) == [2.0, 3.0, 4.0]


def test_invalid_max_rows() -> None:
    with pytest.raises(ValueError):
        ReadingsHistory(max_rows=0)


def test_get_recent_filters_by_time() -> None:
    history = ReadingsHistory()
    now = datetime.now(timezone.utc)
    history.append(Readings(N=1.0), ts=now - timedelta(minutes=10))
    history.append(Readings(N=2.0), ts=now)

    recent = history.get_recent(seconds=60)

    assert list(recent["N"]) == [2.0]


def test_stats() -> None:
    history = ReadingsHistory()
    start = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    history.append(Readings(N=2.0, temp=20.0), ts=start)
    history.append(Readings(N=4.0, temp=22.0), ts=start + timedelta(seconds=30))

    stats = history.get_stats()

    assert stats["row_count"] == 2
    assert stats["duration_s"] == 30.0
    assert stats["mean"]["N"] == 3.0
    assert stats["mean"]["temp"] == 21.0


def test_empty_history() -> None:
    history = ReadingsHistory()

    assert history.get_latest() is None
    assert history.get_stats()["row_count"] == 0
    assert history.get_recent().empty


def test_csv_export() -> None:
    history = ReadingsHistory()
    history.append(Readings(N=1.0, moisture=55.5), ts=datetime(2024, 5, 1, tzinfo=timezone.utc))

    lines = history.to_csv().strip().splitlines()

    assert lines[0] == "timestamp,N,P,K,EC,temp,moisture"
    assert lines[1] == "2024-05-01T00:00:00+00:00,1.0,0.0,0.0,0.0,0.0,55.5"


def test_clear() -> None:
    history = ReadingsHistory()
    history.append(Readings())

    history.clear()

    assert len(history) == 0
