from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import Optional

from datastore.base import ReadingStore
from datastore.memory import MemoryReadingStore
from datastore.sql import SqlReadingStore
from settings import get_settings


@lru_cache
def build_default_store(
    url: Optional[str] = None,
    table_name: Optional[str] = None,
) -> ReadingStore:
    """Return the SQL store when a URL is configured, the in-memory one otherwise."""
    settings = get_settings()
    store_url = settings.store_url if url is None else url
    name = settings.table_name if table_name is None else table_name
    if store_url:
        return SqlReadingStore(
            url=store_url,
            table_name=name,
            poll_interval=settings.feed_poll_interval or None,
        )
    path = settings.store_persistence_path
    return MemoryReadingStore(name=name, persistence_path=Path(path) if path else None)
