import asyncio
from typing import Iterator, List

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.schemas import ReadingIn
from datastore.base import StoreWriteError
from datastore.memory import MemoryReadingStore
from datastore.sql import SqlReadingStore
from models.records import Reading
from services.ingestion import build_default_ingestion
from services.materializer import build_default_materializer


class FailingStore(MemoryReadingStore):
    def _write(self, reading: Reading) -> int:
        raise StoreWriteError("disk full")


@pytest.fixture
def store() -> MemoryReadingStore:
    return MemoryReadingStore(name="sensors")


@pytest.fixture
def api_client(store, install_pipeline) -> Iterator[TestClient]:
    install_pipeline(store)
    app = create_app()
    with TestClient(app) as client:
        yield client


def _count(client: TestClient) -> int:
    response = client.get("/sensors/count")
    assert response.status_code == 200
    return response.json()["count"]


def test_lifespan_builds_and_clears_default_materializer(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("READINGS_PERSISTENCE_PATH", str(tmp_path / "sensors.jsonl"))
    monkeypatch.setenv("BROKER_ROOT_PATH", str(tmp_path / "broker"))
    from broker.registry import build_default_registry
    from broker.topics import build_default_broker
    from datastore.factory import build_default_store
    from settings import get_settings

    caches = (
        get_settings,
        build_default_store,
        build_default_broker,
        build_default_registry,
        build_default_ingestion,
        build_default_materializer,
    )
    for cache in caches:
        cache.cache_clear()
    try:
        with TestClient(create_app()) as client:
            during = build_default_materializer()
            assert client.get("/views").status_code == 200
        after = build_default_materializer()
        assert after is not during
        after.close()
    finally:
        for cache in caches:
            cache.cache_clear()


def test_valid_submission_stores_exactly_one_identical_row(api_client: TestClient, store) -> None:
    payload = {"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": 58.5}

    response = api_client.post("/sensors", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "raspberry-1"
    assert body["temperature"] == 58.5
    assert _count(api_client) == 1
    (row,) = store.scan()
    assert row.name == "raspberry-1"
    assert row.temperature == 58.5
    assert row.timestamp.isoformat() == "2024-01-01T00:00:00+00:00"


def test_duplicate_submissions_produce_duplicate_rows(api_client: TestClient) -> None:
    payload = {"name": "raspberry-2", "timestamp": "2024-01-01T00:00:00Z", "temperature": 61}

    for _ in range(2):
        assert api_client.post("/sensors", json=payload).status_code == 201

    assert _count(api_client) == 2


@pytest.mark.parametrize(
    "payload",
    [
        {"timestamp": "2024-01-01T00:00:00Z", "temperature": 58.0},
        {"name": "raspberry-1", "temperature": 58.0},
        {"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z"},
        {"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": "hot"},
        {"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": "58.0"},
        {"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": True},
        {"name": "raspberry-1", "timestamp": "yesterday-ish", "temperature": 58.0},
        {"name": "raspberry-1", "timestamp": "2024-01-01T12:00:00", "temperature": 58.0},
        {"name": "", "timestamp": "2024-01-01T00:00:00Z", "temperature": 58.0},
    ],
)
def test_malformed_submission_is_rejected_without_writing(api_client: TestClient, payload) -> None:
    response = api_client.post("/sensors", json=payload)

    assert 400 <= response.status_code < 500
    assert _count(api_client) == 0


def test_store_failure_returns_server_error(install_pipeline) -> None:
    failing = FailingStore(name="sensors")
    install_pipeline(failing)

    with TestClient(create_app()) as client:
        response = client.post(
            "/sensors",
            json={"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": 58.0},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "Reading could not be stored."
        assert _count(client) == 0


def test_views_follow_ingested_readings(api_client: TestClient) -> None:
    for second, temperature in enumerate((58.0, 60.0, 62.0)):
        response = api_client.post(
            "/sensors",
            json={
                "name": "raspberry-1",
                "timestamp": f"2024-01-01T00:00:0{second}Z",
                "temperature": temperature,
            },
        )
        assert response.status_code == 201

    catalog = {view["name"] for view in api_client.get("/views").json()}
    result = api_client.get("/views/average_per_device").json()

    assert catalog == {"sensors_count", "average_per_device", "global_average", "hot_devices"}
    assert result["lsn"] == 3
    assert result["rows"] == [{"name": "raspberry-1", "average": 60.0, "readings": 3}]
    assert api_client.get("/views/hot_devices").json()["rows"] == []
    summary = api_client.get("/sensors/summary").json()
    assert summary["per_device_average"] == {"raspberry-1": 60.0}


def test_unknown_view_returns_not_found(api_client: TestClient) -> None:
    response = api_client.get("/views/nope")

    assert response.status_code == 404


def test_sink_topic_is_discoverable_through_catalog(api_client: TestClient) -> None:
    api_client.post(
        "/sensors",
        json={"name": "raspberry-4", "timestamp": "2024-01-01T00:00:00Z", "temperature": 63.0},
    )

    created = api_client.post("/sinks", json={"name": "hot_sink", "view": "hot_devices"})
    assert created.status_code == 201
    topic = created.json()["topic"]

    catalog = api_client.get("/sinks").json()
    messages = api_client.get(f"/topics/{topic}/messages").json()

    assert catalog == [{"name": "hot_sink", "view": "hot_devices", "topic": topic, "pending": 0}]
    assert topic.startswith("hot_sink-")
    assert [message["change"]["op"] for message in messages] == ["insert"]
    assert messages[0]["change"]["after"] == {"name": "raspberry-4", "average": 63.0}


def test_sink_errors(api_client: TestClient) -> None:
    assert api_client.post("/sinks", json={"name": "s", "view": "missing"}).status_code == 404
    assert api_client.post("/sinks", json={"name": "s", "view": "sensors_count"}).status_code == 201
    assert api_client.post("/sinks", json={"name": "s", "view": "sensors_count"}).status_code == 400
    assert api_client.get("/topics/unknown/messages").status_code == 404


def test_list_readings_by_device(api_client: TestClient) -> None:
    for name in ("raspberry-1", "raspberry-2", "raspberry-1"):
        api_client.post(
            "/sensors",
            json={"name": name, "timestamp": "2024-01-01T00:00:00Z", "temperature": 60.0},
        )

    rows = api_client.get("/sensors", params={"name": "raspberry-1"}).json()

    assert [row["name"] for row in rows] == ["raspberry-1", "raspberry-1"]


@pytest.mark.parametrize("backend", ["memory", "sql"])
def test_stored_row_equals_submitted_reading_on_every_backend(install_pipeline, tmp_path, backend) -> None:
    if backend == "sql":
        store = SqlReadingStore(url=f"sqlite+pysqlite:///{tmp_path / 'sensors.db'}")
    else:
        store = MemoryReadingStore(name="sensors", persistence_path=tmp_path / "sensors.jsonl")
    install_pipeline(store)
    payload = {"name": "raspberry-5", "timestamp": "2024-01-01T14:00:00+02:00", "temperature": 59.5}

    try:
        with TestClient(create_app()) as client:
            assert client.post("/sensors", json=payload).status_code == 201
            assert client.post("/sensors", json={**payload, "timestamp": "2024-01-01T12:00:00"}).status_code == 422
        (row,) = store.scan()
    finally:
        store.close()

    submitted = ReadingIn.model_validate(payload).to_record()
    assert row == submitted


class LoopRecordingStore(MemoryReadingStore):
    def __init__(self) -> None:
        super().__init__(name="sensors")
        self.writes_on_event_loop: List[bool] = []

    def _write(self, reading: Reading) -> int:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.writes_on_event_loop.append(False)
        else:
            self.writes_on_event_loop.append(True)
        return super()._write(reading)


def test_store_writes_run_off_the_event_loop(install_pipeline) -> None:
    store = LoopRecordingStore()
    install_pipeline(store)

    with TestClient(create_app()) as client:
        response = client.post(
            "/sensors",
            json={"name": "raspberry-1", "timestamp": "2024-01-01T00:00:00Z", "temperature": 58.0},
        )

    assert response.status_code == 201
    assert store.writes_on_event_loop == [False]
