from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from simulator.fleet import DeviceStats, FleetStats


def _message(offset: int, op: str, key: str, after: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "topic": "hot-abc123",
        "offset": offset,
        "schema_id": 1,
        "change": {"view": "hot_devices", "lsn": offset + 1, "op": op, "key": key, "before": None, "after": after},
    }


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.submitted: List[tuple[str, float, datetime]] = []
        self.sinks: List[tuple[str, str]] = []
        self.view_payload: Dict[str, Any] = {
            "name": "average_per_device",
            "lsn": 3,
            "rows": [{"name": "raspberry-1", "average": 60.0, "readings": 3}],
        }
        self.topic_reads: List[tuple[str, int, int]] = []
        self.topic_messages: List[Dict[str, Any]] = [
            _message(0, "insert", "raspberry-1", {"name": "raspberry-1", "average": 61.0}),
            _message(1, "insert", "raspberry-2", {"name": "raspberry-2", "average": 64.0}),
            _message(2, "delete", "raspberry-1", None),
        ]
        self.closed = False

    def submit_reading(self, name: str, temperature: float, timestamp: datetime) -> Dict[str, Any]:
        self.submitted.append((name, temperature, timestamp))
        return {"name": name, "temperature": temperature, "timestamp": timestamp.isoformat()}

    def get_view(self, name: str) -> Dict[str, Any]:
        payload = dict(self.view_payload)
        payload["name"] = name
        return payload

    def create_sink(self, name: str, view: str) -> Dict[str, Any]:
        self.sinks.append((name, view))
        return {"name": name, "view": view, "topic": f"{name}-abc123"}

    def list_sinks(self) -> List[Dict[str, Any]]:
        return [{"name": "avg_sink", "view": "average_per_device", "topic": "avg_sink-abc123", "pending": 2}]

    def read_topic(self, topic: str, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        self.topic_reads.append((topic, offset, limit))
        return self.topic_messages[offset:offset + limit]

    def close(self) -> None:
        self.closed = True


class StubSimulator:
    instances: List["StubSimulator"] = []

    def __init__(self, sender, fleet_size: int, rate: float, retry_policy, seed: Optional[int]) -> None:
        self.sender = sender
        self.devices = [f"raspberry-{index}" for index in range(1, fleet_size + 1)]
        self.rate = rate
        self.retry_policy = retry_policy
        self.seed = seed
        self.durations: List[Optional[float]] = []
        StubSimulator.instances.append(self)

    def run(self, duration: Optional[float] = None) -> FleetStats:
        self.durations.append(duration)
        return FleetStats(
            devices={
                "raspberry-1": DeviceStats(sent=10, retried=1, dropped=0),
                "raspberry-2": DeviceStats(sent=8, retried=3, dropped=2),
            },
            elapsed=2.0,
        )


class StubSender:
    def __init__(self, base_url: str, timeout: float) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.closed = False

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_submit_posts_reading(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app, ["submit", "raspberry-1", "58.5", "--timestamp", "2024-01-01T00:00:00"]
    )

    assert result.exit_code == 0
    assert "Stored raspberry-1 58.5" in result.stdout
    ((name, temperature, timestamp),) = stub.submitted
    assert (name, temperature) == ("raspberry-1", 58.5)
    assert timestamp.isoformat() == "2024-01-01T00:00:00+00:00"
    assert stub.closed is True


def test_view_renders_rows(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["view", "average_per_device"])

    assert result.exit_code == 0
    assert "View average_per_device" in result.stdout
    assert "raspberry-1 | 60.00 | 3" in result.stdout


def test_sink_prints_topic(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["sink", "avg_sink", "average_per_device"])

    assert result.exit_code == 0
    assert stub.sinks == [("avg_sink", "average_per_device")]
    assert "topic avg_sink-abc123" in result.stdout


def test_simulate_uses_config_and_options(monkeypatch, runner: CliRunner, stub: StubClient) -> None:
    StubSimulator.instances.clear()
    senders: List[StubSender] = []

    def sender_factory(base_url: str, timeout: float) -> StubSender:
        sender = StubSender(base_url, timeout)
        senders.append(sender)
        return sender

    monkeypatch.setattr("cli.app.FleetSimulator", StubSimulator)
    monkeypatch.setattr("cli.app.HttpReadingSender", sender_factory)
    monkeypatch.setattr("cli.app.configure_logging", lambda: None)
    monkeypatch.setenv("FLEET_RATE", "40")

    result = runner.invoke(
        app,
        ["--base-url", "http://ingest:9000/", "simulate", "--fleet-size", "4", "--duration", "2", "--max-attempts", "5"],
    )

    assert result.exit_code == 0
    (simulator,) = StubSimulator.instances
    assert len(simulator.devices) == 4
    assert simulator.rate == 40.0
    assert simulator.retry_policy.max_attempts == 5
    assert simulator.durations == [2.0]
    assert senders[0].base_url == "http://ingest:9000"
    assert senders[0].closed is True
    assert "Fleet Summary" in result.stdout
    assert "dropped: 2" in result.stdout
    assert "raspberry-2: 2" in result.stdout


def test_sinks_lists_catalog(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["sinks"])

    assert result.exit_code == 0
    assert "avg_sink: average_per_device -> avg_sink-abc123 (2 pending)" in result.stdout


def test_topic_prints_messages(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["topic", "hot-abc123", "--offset", "1"])

    assert result.exit_code == 0
    assert stub.topic_reads == [("hot-abc123", 1, 100)]
    assert "1 | insert | raspberry-2" in result.stdout
    assert "2 | delete | raspberry-1 | None" in result.stdout
    assert "0 | insert" not in result.stdout


def test_topic_replay_pages_through_and_collapses(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["topic", "hot-abc123", "--replay", "--limit", "2"])

    assert result.exit_code == 0
    assert stub.topic_reads == [("hot-abc123", 0, 2), ("hot-abc123", 2, 2)]
    assert "Replayed hot-abc123" in result.stdout
    assert "raspberry-2 | 64.00" in result.stdout
    assert "raspberry-1 |" not in result.stdout
