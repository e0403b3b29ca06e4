from __future__ import annotations

from typing import Callable

import pytest

from broker.registry import SchemaRegistry
from broker.topics import TopicBroker
from datastore.base import ReadingStore
from services.ingestion import IngestionService
from services.materializer import Materializer, build_materializer


@pytest.fixture
def install_pipeline(monkeypatch) -> Callable[[ReadingStore], None]:
    """Point the app's cached factories at components built around ``store``."""

    def install(store: ReadingStore) -> None:
        ingestion = IngestionService(store=store)
        materializers: list[Materializer] = []

        def build_test_ingestion() -> IngestionService:
            return ingestion

        def build_test_materializer() -> Materializer:
            if not materializers:
                materializers.append(
                    build_materializer(store=store, broker=TopicBroker(), registry=SchemaRegistry())
                )
            return materializers[0]

        def cache_clear() -> None:
            while materializers:
                materializers.pop().close()

        build_test_ingestion.cache_clear = lambda: None  # type: ignore[attr-defined]
        build_test_materializer.cache_clear = cache_clear  # type: ignore[attr-defined]

        for module in ("app.main", "app.api"):
            monkeypatch.setattr(f"{module}.build_default_ingestion", build_test_ingestion)
            monkeypatch.setattr(f"{module}.build_default_materializer", build_test_materializer)

    return install
