"""Unit tests for the from-scratch aggregation logic."""

from __future__ import annotations

from datetime import datetime, timezone

from models.records import Reading
from services.aggregator import Aggregator


def _reading(name: str, temperature: float) -> Reading:
    """Helper to build deterministic readings."""

    return Reading(name=name, timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), temperature=temperature)


def test_aggregate_empty_iterable_returns_default_summary() -> None:
    aggregator = Aggregator()

    summary = aggregator.aggregate([])

    assert summary.row_count == 0
    assert summary.min_value is None
    assert summary.max_value is None
    assert summary.mean_value is None
    assert summary.per_device_count == {}
    assert summary.per_device_average == {}


def test_aggregate_computes_statistics() -> None:
    aggregator = Aggregator()
    readings = [
        _reading("raspberry-1", 58.0),
        _reading("raspberry-2", 64.0),
        _reading("raspberry-1", 62.0),
    ]

    summary = aggregator.aggregate(readings)

    assert summary.row_count == 3
    assert summary.min_value == 58.0
    assert summary.max_value == 64.0
    assert summary.mean_value == 184.0 / 3
    assert summary.per_device_count == {"raspberry-1": 2, "raspberry-2": 1}
    assert summary.per_device_average == {"raspberry-1": 60.0, "raspberry-2": 64.0}


def test_devices_above_uses_strict_threshold() -> None:
    aggregator = Aggregator()
    summary = aggregator.aggregate(
        [
            _reading("raspberry-1", 60.0),
            _reading("raspberry-2", 60.5),
            _reading("raspberry-3", 59.0),
        ]
    )

    assert aggregator.devices_above(summary, 60.0) == ["raspberry-2"]
