"""Unit tests for the in-memory reading store and its replication feed."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

from datastore.base import StoreWriteError
from datastore.memory import MemoryReadingStore
from models.records import Reading, RowChange

_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _reading(name: str = "raspberry-1", temperature: float = 58.5, offset: int = 0) -> Reading:
    return Reading(name=name, timestamp=_START + timedelta(seconds=offset), temperature=temperature)


def test_insert_appends_and_assigns_increasing_lsn() -> None:
    store = MemoryReadingStore(name="sensors")

    first = store.insert(_reading(offset=0))
    second = store.insert(_reading(offset=2))

    assert (first, second) == (1, 2)
    assert store.count() == 2
    assert store.lsn == 2


def test_duplicate_readings_are_kept() -> None:
    store = MemoryReadingStore(name="sensors")
    reading = _reading()

    store.insert(reading)
    store.insert(reading)

    assert store.scan() == [reading, reading]


def test_scan_returns_a_copy() -> None:
    store = MemoryReadingStore(name="sensors")
    store.insert(_reading())

    rows = store.scan()
    rows.clear()

    assert store.count() == 1


def test_readings_for_filters_by_name_and_keeps_latest() -> None:
    store = MemoryReadingStore(name="sensors")
    for offset in range(5):
        store.insert(_reading("raspberry-1", 50.0 + offset, offset=offset))
        store.insert(_reading("raspberry-2", 70.0, offset=offset))

    rows = store.readings_for(name="raspberry-1", limit=2)

    assert [row.temperature for row in rows] == [53.0, 54.0]


def test_subscribe_replays_existing_rows_then_streams_new_ones() -> None:
    store = MemoryReadingStore(name="sensors")
    store.insert(_reading(temperature=58.0))
    received: List[RowChange] = []

    subscription = store.subscribe(received.append)
    store.insert(_reading(temperature=60.0))
    subscription.cancel()
    store.insert(_reading(temperature=62.0))

    assert [change.lsn for change in received] == [1, 2]
    assert [change.reading.temperature for change in received] == [58.0, 60.0]


def test_failing_subscriber_does_not_fail_the_insert() -> None:
    store = MemoryReadingStore(name="sensors")
    received: List[RowChange] = []

    def broken(_change: RowChange) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(received.append)

    assert store.insert(_reading()) == 1
    assert store.count() == 1
    assert len(received) == 1


def test_persistence_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "sensors.jsonl"
    store = MemoryReadingStore(name="sensors", persistence_path=path)
    reading = _reading(temperature=61.25)

    store.insert(reading)

    reloaded = MemoryReadingStore(name="sensors", persistence_path=path)
    assert reloaded.scan() == [reading]
    assert reloaded.lsn == 1


def test_unwritable_persistence_path_raises_store_write_error(tmp_path: Path) -> None:
    path = tmp_path / "sensors.jsonl"
    store = MemoryReadingStore(name="sensors", persistence_path=path)
    path.mkdir()

    with pytest.raises(StoreWriteError):
        store.insert(_reading())

    assert store.count() == 0
    assert store.lsn == 0
