"""Append-only reading store with a logical replication feed."""

from __future__ import annotations

import logging
from itertools import count as counter
from threading import RLock
from typing import Callable, Dict, List, Optional

from models.records import Reading, RowChange

logger = logging.getLogger(__name__)

Listener = Callable[[RowChange], None]


class StoreWriteError(RuntimeError):
    """Raised when a reading could not be durably written."""


class Subscription:
    """Handle returned by :meth:`ReadingStore.subscribe`."""

    def __init__(self, store: "ReadingStore", subscription_id: int) -> None:
        self._store = store
        self.id = subscription_id

    def cancel(self) -> None:
        self._store._unsubscribe(self.id)


class ReadingStore:
    """Base class for reading stores.

    Subclasses implement ``_write``, ``_scan`` and ``_changes_since``. The
    store owns the LSN assigned to every committed row; this class publishes
    rows to subscribers in LSN order. Rows committed by other writers are
    picked up by :meth:`poll`. Publishing and subscription replays are
    serialized by one lock, so a subscriber sees every row exactly once.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = RLock()
        self._lsn = 0
        self._listeners: Dict[int, Listener] = {}
        self._ids = counter(1)

    @property
    def lsn(self) -> int:
        """LSN of the last row published to subscribers."""
        with self._lock:
            return self._lsn

    def insert(self, reading: Reading) -> int:
        """Write one reading in its own transaction and publish it."""
        with self._lock:
            lsn = self._write(reading)
            self._publish_pending()
            return lsn

    def poll(self) -> int:
        """Publish rows committed since the last published LSN; returns how many."""
        with self._lock:
            return self._publish_pending()

    def scan(self) -> List[Reading]:
        with self._lock:
            return self._scan()

    def count(self) -> int:
        return len(self.scan())

    def readings_for(self, name: Optional[str] = None, limit: Optional[int] = None) -> List[Reading]:
        rows = self.scan()
        if name is not None:
            rows = [row for row in rows if row.name == name]
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows

    def subscribe(self, listener: Listener) -> Subscription:
        """Replay every stored row to ``listener``, then stream new inserts."""
        with self._lock:
            self._publish_pending()
            for change in self._changes_since(0):
                if change.lsn > self._lsn:
                    break
                self._deliver(listener, change)
            subscription_id = next(self._ids)
            self._listeners[subscription_id] = listener
        return Subscription(self, subscription_id)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()

    def _publish_pending(self) -> int:
        changes = self._changes_since(self._lsn)
        for change in changes:
            self._lsn = change.lsn
            for listener in list(self._listeners.values()):
                self._deliver(listener, change)
        return len(changes)

    def _unsubscribe(self, subscription_id: int) -> None:
        with self._lock:
            self._listeners.pop(subscription_id, None)

    def _deliver(self, listener: Listener, change: RowChange) -> None:
        # The row is committed at this point; subscriber errors stay local.
        try:
            listener(change)
        except Exception:
            logger.exception(
                "Replication subscriber failed",
                extra={"lsn": change.lsn, "device_name": change.reading.name},
            )

    def _write(self, reading: Reading) -> int:
        """Commit ``reading`` and return the LSN the store assigned to it."""
        raise NotImplementedError

    def _scan(self) -> List[Reading]:
        raise NotImplementedError

    def _changes_since(self, lsn: int) -> List[RowChange]:
        """Committed rows with an LSN greater than ``lsn``, in LSN order."""
        raise NotImplementedError
