"""Simulated Raspberry Pi devices producing CPU temperature readings."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from models.records import Reading

DEFAULT_PREFIX = "raspberry"
FLEET_MEAN = 60.0
FLEET_SPREAD = 2.5
READING_JITTER = 1.5


def fleet_names(size: int, prefix: str = DEFAULT_PREFIX) -> List[str]:
    """Names ``<prefix>-1`` through ``<prefix>-<size>``."""
    if size < 1:
        raise ValueError("Fleet size must be at least 1.")
    return [f"{prefix}-{index}" for index in range(1, size + 1)]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Device:
    name: str
    baseline: float
    jitter: float
    rng: random.Random
    clock: Callable[[], datetime] = _utc_now

    def next_reading(self) -> Reading:
        temperature = round(self.rng.gauss(self.baseline, self.jitter), 2)
        return Reading(name=self.name, timestamp=self.clock(), temperature=temperature)


def build_fleet(
    size: int,
    seed: Optional[int] = None,
    prefix: str = DEFAULT_PREFIX,
    clock: Callable[[], datetime] = _utc_now,
) -> List[Device]:
    """Create ``size`` devices, each with its own baseline and random stream."""
    master = random.Random(seed)
    devices = []
    for name in fleet_names(size, prefix):
        rng = random.Random(master.getrandbits(64))
        baseline = rng.gauss(FLEET_MEAN, FLEET_SPREAD)
        devices.append(Device(name=name, baseline=baseline, jitter=READING_JITTER, rng=rng, clock=clock))
    return devices
