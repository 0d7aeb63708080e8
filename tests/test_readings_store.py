"""Tests for merging partial updates into the readings snapshot."""

from soil_probe_lib.models import ReadingField, Readings
from soil_probe_lib.readings import ReadingsStore, merge_readings


def test_empty_update_is_noop() -> None:
    """Merging nothing returns the same snapshot."""
    prior = Readings(N=1.0, P=2.0)

    assert merge_readings(prior, {}) is prior


def test_updates_are_cumulative() -> None:
    """{N:5} then {P:7} leaves both set and the rest at zero."""
    snapshot = merge_readings(Readings(), {ReadingField.N: 5.0})
    snapshot = merge_readings(snapshot, {ReadingField.P: 7.0})

    assert snapshot == Readings(N=5.0, P=7.0, K=0.0, EC=0.0, temp=0.0, moisture=0.0)


def test_merge_does_not_mutate_prior() -> None:
    prior = Readings()

    merged = merge_readings(prior, {ReadingField.MOISTURE: 33.0})

    assert prior.moisture == 0.0
    assert merged.moisture == 33.0
    assert merged.get(ReadingField.MOISTURE) == 33.0


def test_merge_applies_every_field() -> None:
    update = {
        ReadingField.N: 1.0,
        ReadingField.P: 2.0,
        ReadingField.K: 3.0,
        ReadingField.EC: 4.0,
        ReadingField.TEMP: 5.0,
        ReadingField.MOISTURE: 6.0,
    }

    merged = merge_readings(Readings(), update)

    assert merged == Readings(N=1.0, P=2.0, K=3.0, EC=4.0, temp=5.0, moisture=6.0)
    for reading_field, value in update.items():
        assert merged.get(reading_field) == value


def test_store_notifies_only_on_non_empty_update() -> None:
    """Listeners see each applied update, never an empty one."""
    store = ReadingsStore()
    seen = []
    store.subscribe(seen.append)

    store.merge({})
    store.merge({ReadingField.K: 3.0})

    assert seen == [Readings(K=3.0)]
    assert store.snapshot() == Readings(K=3.0)


def test_store_unsubscribe() -> None:
    store = ReadingsStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.merge({ReadingField.N: 1.0})
    unsubscribe()
    store.merge({ReadingField.N: 2.0})

    assert len(seen) == 1
    assert store.snapshot().N == 2.0


def test_failing_listener_does_not_block_merge() -> None:
    """A broken observer is logged, the merge still happens."""
    store = ReadingsStore()

    def broken(_: Readings) -> None:
        raise RuntimeError("observer crashed")

    store.subscribe(broken)
    result = store.merge({ReadingField.EC: 1.5})

    assert result.EC == 1.5
    assert store.snapshot().EC == 1.5


def test_describe_format() -> None:
    readings = Readings(N=1.0, P=2.5, K=3.0, EC=4.0, temp=25.0, moisture=60.0)

    assert readings.describe() == "N:1, P:2.5, K:3, EC:4, temp:25, moisture:60"
