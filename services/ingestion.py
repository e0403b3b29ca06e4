"""Ingestion of single readings into the reading store."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from datastore.base import ReadingStore, StoreWriteError
from datastore.factory import build_default_store
from models.records import Reading
from services.aggregator import AggregationSummary, Aggregator

logger = logging.getLogger(__name__)


class IngestionService:
    """Writes each accepted reading as exactly one row; nothing is deduplicated."""

    def __init__(self, store: ReadingStore, aggregator: Optional[Aggregator] = None) -> None:
        self.store = store
        self.aggregator = aggregator or Aggregator()

    def ingest(self, reading: Reading) -> int:
        try:
            lsn = self.store.insert(reading)
        except StoreWriteError as exc:
            logger.error(
                "Reading could not be stored",
                extra={"device_name": reading.name, "reason": str(exc)},
            )
            raise
        logger.debug("Reading stored", extra={"device_name": reading.name, "lsn": lsn})
        return lsn

    def list_readings(self, name: Optional[str] = None, limit: int = 100) -> List[Reading]:
        return self.store.readings_for(name=name, limit=limit)

    def count(self) -> int:
        return self.store.count()

    def summary(self) -> AggregationSummary:
        return self.aggregator.aggregate(self.store.scan())


@lru_cache
def build_default_ingestion() -> IngestionService:
    return IngestionService(store=build_default_store())
