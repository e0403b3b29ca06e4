"""From-scratch aggregation over the full set of stored readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from models.records import Reading


@dataclass
class AggregationSummary:
    """Statistics computed in a single pass over a batch of readings."""

    row_count: int = 0
    min_value: float | None = None
    max_value: float | None = None
    mean_value: float | None = None
    per_device_count: Dict[str, int] = field(default_factory=dict)
    per_device_total: Dict[str, float] = field(default_factory=dict)

    @property
    def per_device_average(self) -> Dict[str, float]:
        return {
            name: self.per_device_total[name] / count
            for name, count in self.per_device_count.items()
        }


class Aggregator:
    """Pure aggregation component; the reference the materialized views are reconciled against."""

    def aggregate(self, readings: Iterable[Reading]) -> AggregationSummary:
        summary = AggregationSummary()
        total = 0.0

        for reading in readings:
            summary.row_count += 1
            value = reading.temperature
            total += value

            if summary.min_value is None or value < summary.min_value:
                summary.min_value = value
            if summary.max_value is None or value > summary.max_value:
                summary.max_value = value

            summary.per_device_count[reading.name] = (
                summary.per_device_count.get(reading.name, 0) + 1
            )
            summary.per_device_total[reading.name] = (
                summary.per_device_total.get(reading.name, 0.0) + value
            )

        if summary.row_count:
            summary.mean_value = total / summary.row_count

        return summary

    def devices_above(self, summary: AggregationSummary, threshold: float) -> List[str]:
        """Devices whose full-history average is strictly above ``threshold``."""
        return sorted(
            name for name, average in summary.per_device_average.items() if average > threshold
        )
