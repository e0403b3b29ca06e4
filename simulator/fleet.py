"""Concurrent emission of readings for a fleet of simulated devices."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import chain
from threading import Event
from typing import Callable, Dict, List, Optional

from models.records import Reading
from simulator.devices import Device, build_fleet
from simulator.retry import RetryPolicy
from simulator.transport import DeliveryError

logger = logging.getLogger(__name__)

Sender = Callable[[Reading], None]


@dataclass
class DeviceStats:
    sent: int = 0
    retried: int = 0
    dropped: int = 0


@dataclass
class FleetStats:
    devices: Dict[str, DeviceStats] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def sent(self) -> int:
        return sum(stats.sent for stats in self.devices.values())

    @property
    def retried(self) -> int:
        return sum(stats.retried for stats in self.devices.values())

    @property
    def dropped(self) -> int:
        return sum(stats.dropped for stats in self.devices.values())

    @property
    def rate(self) -> float:
        return self.sent / self.elapsed if self.elapsed > 0 else 0.0


class FleetSimulator:
    """Runs one worker thread per device.

    Each device emits every ``fleet_size / rate`` seconds, with start times
    staggered evenly across one interval so the fleet as a whole produces
    about ``rate`` readings per second. Devices share nothing but the sender.
    """

    def __init__(
        self,
        sender: Sender,
        fleet_size: int = 50,
        rate: float = 25.0,
        retry_policy: Optional[RetryPolicy] = None,
        seed: Optional[int] = None,
        devices: Optional[List[Device]] = None,
    ) -> None:
        if rate <= 0:
            raise ValueError("Rate must be positive.")
        self.devices = devices if devices is not None else build_fleet(fleet_size, seed=seed)
        if not self.devices:
            raise ValueError("Fleet must contain at least one device.")
        self.sender = sender
        self.rate = rate
        self.interval = len(self.devices) / rate
        self.retry_policy = retry_policy or RetryPolicy()
        self.stats = FleetStats(devices={device.name: DeviceStats() for device in self.devices})
        self._stop = Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future[None]] = []
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        if self._executor is not None:
            return
        self._stop.clear()
        self._started_at = time.monotonic()
        self._executor = ThreadPoolExecutor(
            max_workers=len(self.devices), thread_name_prefix="device"
        )
        step = self.interval / len(self.devices)
        self._futures = [
            self._executor.submit(self._run_device, device, self._started_at + index * step)
            for index, device in enumerate(self.devices)
        ]
        logger.info(
            "Fleet started (%d devices, %.2f readings/s, interval %.3fs)",
            len(self.devices),
            self.rate,
            self.interval,
        )

    def stop(self) -> FleetStats:
        """Signal every device to stop and wait for in-flight deliveries."""
        executor = self._executor
        if executor is None:
            return self.stats
        self._stop.set()
        executor.shutdown(wait=True)
        self._executor = None
        if self._started_at is not None:
            self.stats.elapsed = time.monotonic() - self._started_at
        for future in self._futures:
            exc = future.exception()
            if exc is not None:
                logger.error("Device worker exited with an error: %s", exc)
        logger.info(
            "Fleet stopped",
            extra={"sent": self.stats.sent, "dropped": self.stats.dropped},
        )
        return self.stats

    def run(self, duration: Optional[float] = None) -> FleetStats:
        """Emit for ``duration`` seconds, or until interrupted when ``None``."""
        self.start()
        try:
            if duration is None:
                while not self._stop.wait(1.0):
                    pass
            else:
                self._stop.wait(duration)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping fleet")
        return self.stop()

    def _run_device(self, device: Device, first_at: float) -> None:
        stats = self.stats.devices[device.name]
        next_at = first_at
        while not self._stop.is_set():
            delay = next_at - time.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break
            try:
                self._deliver(device, device.next_reading(), stats)
            except Exception:
                stats.dropped += 1
                logger.exception("Unexpected failure emitting reading", extra={"device_name": device.name})
            next_at += self.interval
            # A device that fell behind resumes from now instead of bursting.
            now = time.monotonic()
            if next_at < now:
                next_at = now

    def _deliver(self, device: Device, reading: Reading, stats: DeviceStats) -> None:
        backoff = chain(self.retry_policy.delays(), [None])
        for attempt, delay in enumerate(backoff, start=1):
            try:
                self.sender(reading)
            except DeliveryError as exc:
                if not exc.retryable or delay is None:
                    stats.dropped += 1
                    logger.warning(
                        "Reading dropped",
                        extra={
                            "device_name": device.name,
                            "attempt": attempt,
                            "status": exc.status_code,
                            "reason": str(exc),
                        },
                    )
                    return
                stats.retried += 1
                logger.info(
                    "Delivery failed, retrying",
                    extra={"device_name": device.name, "attempt": attempt, "delay": delay},
                )
                if self._stop.wait(delay):
                    stats.dropped += 1
                    return
            else:
                stats.sent += 1
                return
