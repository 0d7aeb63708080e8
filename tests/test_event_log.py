"""Tests for the bounded event log."""

import pytest

from soil_probe_lib.event_log import EventLog
from soil_probe_lib.models import Severity


def test_newest_first() -> None:
    log = EventLog(capacity=10)

    log.append(Severity.INFO, "first")
    log.append(Severity.ERROR, "second")

    messages = [event.message for event in log.snapshot()]
    assert messages == ["second", "first"]
    assert log.latest().severity == Severity.ERROR


def test_capacity_bound_keeps_last_events() -> None:
    """After capacity+k appends, exactly the last `capacity` remain, newest first."""
    capacity = 5
    log = EventLog(capacity=capacity)

    for i in range(capacity + 7):
        log.append(Severity.INFO, f"event {i}")
        assert len(log) <= capacity

    messages = [event.message for event in log.snapshot()]
    assert messages == [f"event {i}" for i in range(capacity + 6, 6, -1)]


def test_default_capacity_is_100() -> None:
    log = EventLog()

    for i in range(150):
        log.append(Severity.INFO, str(i))

    assert len(log) == 100
    assert log.capacity == 100


def test_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        EventLog(capacity=0)


def test_listener_receives_new_head() -> None:
    """Push model: subscribers get each event as it is appended."""
    log = EventLog()
    seen = []
    unsubscribe = log.subscribe(seen.append)

    event = log.append(Severity.SUCCESS, "parsed")
    unsubscribe()
    log.append(Severity.INFO, "not seen")

    assert seen == [event]


def test_events_are_timestamped_and_formatted() -> None:
    log = EventLog()

    event = log.append(Severity.WARNING, "Serial reading stopped")

    assert event.ts is not None
    assert event.format().endswith("[warning] Serial reading stopped")


def test_clear() -> None:
    log = EventLog()
    log.append(Severity.INFO, "x")

    log.clear()

    assert len(log) == 0
    assert log.latest() is None


def test_events_mirrored_to_logging(caplog: pytest.LogCaptureFixture) -> None:
    """Each event is also written to the Python logger at a matching level."""
    log = EventLog()

    with caplog.at_level("INFO", logger="soil_probe_lib.event_log"):
        log.append(Severity.ERROR, "Connection error: boom")

    assert any(
        record.levelname == "ERROR" and "Connection error: boom" in record.getMessage()
        for record in caplog.records
    )
