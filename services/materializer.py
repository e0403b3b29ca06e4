"""Incrementally maintained views over the store's replication feed."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Callable, Dict, List, Optional

from broker.registry import SchemaRegistry, build_default_registry
from broker.topics import TopicBroker, build_default_broker
from datastore.base import ReadingStore, Subscription
from datastore.factory import build_default_store
from models.records import ChangeOp, Reading, RowChange, ViewChange
from services.sink import TopicSink
from settings import get_settings

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ViewChange], None]
Row = Dict[str, Any]


@dataclass(frozen=True)
class ViewSnapshot:
    """Point-in-time copy of a view's rows and the LSN they reflect."""

    name: str
    kind: str
    lsn: int
    rows: List[Row] = field(default_factory=list)


class View:
    """Base class for views keyed by an optional string.

    Subclasses implement ``_apply``, returning the row changes caused by one
    reading. Changes are handed to attached listeners in feed order.
    """

    kind = "view"

    def __init__(self, name: str) -> None:
        self.name = name
        self.lsn = 0
        self._rows: Dict[Optional[str], Row] = {}
        self._listeners: List[ChangeListener] = []
        self._lock = RLock()

    def apply(self, change: RowChange) -> None:
        with self._lock:
            if change.lsn <= self.lsn:
                return
            changes = self._apply(change.reading, change.lsn)
            self.lsn = change.lsn
            for view_change in changes:
                for listener in list(self._listeners):
                    self._notify(listener, view_change)

    def snapshot(self) -> ViewSnapshot:
        with self._lock:
            return ViewSnapshot(name=self.name, kind=self.kind, lsn=self.lsn, rows=self._sorted_rows())

    def rows(self) -> List[Row]:
        return self.snapshot().rows

    def attach(self, listener: ChangeListener, snapshot: bool = True) -> Callable[[], None]:
        """Register ``listener``; with ``snapshot`` it first receives every current row as an insert."""
        with self._lock:
            if snapshot:
                for key, row in sorted(self._rows.items(), key=_row_order):
                    self._notify(
                        listener,
                        ViewChange(
                            view=self.name,
                            lsn=self.lsn,
                            op=ChangeOp.insert,
                            key=key,
                            before=None,
                            after=dict(row),
                        ),
                    )
            self._listeners.append(listener)

        def detach() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return detach

    def _notify(self, listener: ChangeListener, change: ViewChange) -> None:
        # The change is already applied; listener errors stay local.
        try:
            listener(change)
        except Exception:
            logger.exception("View listener failed", extra={"view": self.name, "lsn": change.lsn})

    def _apply(self, reading: Reading, lsn: int) -> List[ViewChange]:
        raise NotImplementedError

    def _sorted_rows(self) -> List[Row]:
        return [dict(row) for _, row in sorted(self._rows.items(), key=_row_order)]

    def _upsert(self, key: Optional[str], row: Row, lsn: int) -> ViewChange:
        before = self._rows.get(key)
        self._rows[key] = row
        return ViewChange(
            view=self.name,
            lsn=lsn,
            op=ChangeOp.insert if before is None else ChangeOp.update,
            key=key,
            before=None if before is None else dict(before),
            after=dict(row),
        )

    def _remove(self, key: Optional[str], lsn: int) -> Optional[ViewChange]:
        before = self._rows.pop(key, None)
        if before is None:
            return None
        return ViewChange(
            view=self.name, lsn=lsn, op=ChangeOp.delete, key=key, before=before, after=None
        )


def _row_order(item: tuple) -> str:
    key = item[0]
    return "" if key is None else key


class CountView(View):
    kind = "count"

    def __init__(self, name: str = "sensors_count") -> None:
        super().__init__(name)
        self._count = 0

    def _apply(self, reading: Reading, lsn: int) -> List[ViewChange]:
        self._count += 1
        return [self._upsert(None, {"count": self._count}, lsn)]


class GlobalAverageView(View):
    kind = "average"

    def __init__(self, name: str = "global_average") -> None:
        super().__init__(name)
        self._total = 0.0
        self._count = 0

    def _apply(self, reading: Reading, lsn: int) -> List[ViewChange]:
        self._total += reading.temperature
        self._count += 1
        row = {"average": self._total / self._count, "readings": self._count}
        return [self._upsert(None, row, lsn)]


class DeviceAverageView(View):
    kind = "average_by_device"

    def __init__(self, name: str = "average_per_device") -> None:
        super().__init__(name)
        self._totals: Dict[str, float] = {}
        self._counts: Dict[str, int] = {}

    def _accumulate(self, reading: Reading) -> float:
        self._totals[reading.name] = self._totals.get(reading.name, 0.0) + reading.temperature
        self._counts[reading.name] = self._counts.get(reading.name, 0) + 1
        return self._totals[reading.name] / self._counts[reading.name]

    def _apply(self, reading: Reading, lsn: int) -> List[ViewChange]:
        average = self._accumulate(reading)
        row = {"name": reading.name, "average": average, "readings": self._counts[reading.name]}
        return [self._upsert(reading.name, row, lsn)]


class FilteredAverageView(DeviceAverageView):
    """Devices whose running average is strictly above ``threshold``."""

    kind = "filtered_average_by_device"

    def __init__(self, name: str = "hot_devices", threshold: float = 60.0) -> None:
        super().__init__(name)
        self.threshold = threshold

    def _apply(self, reading: Reading, lsn: int) -> List[ViewChange]:
        average = self._accumulate(reading)
        if average > self.threshold:
            return [self._upsert(reading.name, {"name": reading.name, "average": average}, lsn)]
        removed = self._remove(reading.name, lsn)
        return [removed] if removed is not None else []


@dataclass(frozen=True)
class Source:
    """A named binding to a store's replication feed."""

    name: str
    store: ReadingStore

    def subscribe(self, listener: Callable[[RowChange], None]) -> Subscription:
        return self.store.subscribe(listener)


class Materializer:
    """Catalog of sources, views and sinks maintained from one store.

    With ``catalog_path`` set, every sink is recorded in a JSON-lines file
    and :meth:`restore_sinks` reattaches them after a restart.
    """

    def __init__(
        self,
        store: ReadingStore,
        broker: TopicBroker,
        registry: SchemaRegistry,
        catalog_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.broker = broker
        self.registry = registry
        self.catalog_path = catalog_path
        self._sources: Dict[str, Source] = {}
        self._views: Dict[str, View] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._sinks: Dict[str, TopicSink] = {}
        self._lock = Lock()

    def create_source(self, name: str) -> Source:
        with self._lock:
            if name in self._sources:
                raise ValueError(f"Source {name!r} already exists.")
            source = Source(name=name, store=self.store)
            self._sources[name] = source
            return source

    def create_view(self, view: View, source: str) -> View:
        """Register ``view`` and feed it every row of ``source``, past and future."""
        with self._lock:
            if view.name in self._views:
                raise ValueError(f"View {view.name!r} already exists.")
            bound = self._sources.get(source)
            if bound is None:
                raise KeyError(f"Source {source!r} not found.")
            self._views[view.name] = view
        subscription = bound.subscribe(view.apply)
        with self._lock:
            self._subscriptions[view.name] = subscription
        logger.info("View created", extra={"view": view.name, "lsn": view.lsn})
        return view

    def view(self, name: str) -> View:
        with self._lock:
            view = self._views.get(name)
        if view is None:
            raise KeyError(f"View {name!r} not found.")
        return view

    def views(self) -> List[View]:
        with self._lock:
            return [self._views[name] for name in sorted(self._views)]

    def query(self, name: str) -> ViewSnapshot:
        return self.view(name).snapshot()

    def create_sink(self, name: str, view_name: str) -> TopicSink:
        view = self.view(view_name)
        with self._lock:
            if name in self._sinks:
                raise ValueError(f"Sink {name!r} already exists.")
            sink = TopicSink(name=name, view=view, broker=self.broker, registry=self.registry)
            self._sinks[name] = sink
        try:
            sink.start()
            self._record_sink(sink)
        except Exception:
            sink.stop()
            with self._lock:
                self._sinks.pop(name, None)
            raise
        logger.info(
            "Sink created", extra={"sink": name, "view": view_name, "topic": sink.topic}
        )
        return sink

    def sinks(self) -> List[TopicSink]:
        with self._lock:
            return [self._sinks[name] for name in sorted(self._sinks)]

    def restore_sinks(self) -> List[TopicSink]:
        """Reattach sinks recorded in the catalog file to their existing topics.

        Restored sinks skip the snapshot: their topics already hold the
        changes written before the restart.
        """
        restored: List[TopicSink] = []
        for record in self._read_catalog():
            name, view_name, topic = record["name"], record["view"], record["topic"]
            with self._lock:
                view = self._views.get(view_name)
                if name in self._sinks:
                    continue
                if view is None:
                    logger.warning(
                        "Sink view no longer exists, not restored",
                        extra={"sink": name, "view": view_name, "topic": topic},
                    )
                    continue
                sink = TopicSink(
                    name=name, view=view, broker=self.broker, registry=self.registry, topic=topic
                )
                self._sinks[name] = sink
            sink.start(snapshot=False)
            restored.append(sink)
            logger.info("Sink restored", extra={"sink": name, "view": view_name, "topic": topic})
        return restored

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            sinks = list(self._sinks.values())
            self._subscriptions.clear()
        for sink in sinks:
            sink.stop()
        for subscription in subscriptions:
            subscription.cancel()

    def _record_sink(self, sink: TopicSink) -> None:
        if not self.catalog_path:
            return
        self.catalog_path.parent.mkdir(parents=True, exist_ok=True)
        record = {"name": sink.name, "view": sink.view.name, "topic": sink.topic}
        with self.catalog_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")

    def _read_catalog(self) -> List[Dict[str, str]]:
        if not self.catalog_path or not self.catalog_path.exists():
            return []
        with self.catalog_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]


def build_materializer(
    store: ReadingStore,
    broker: TopicBroker,
    registry: SchemaRegistry,
    threshold: float = 60.0,
    source_name: str = "sensors_source",
    catalog_path: Optional[Path] = None,
) -> Materializer:
    """Wire the standard views over ``store`` and restore recorded sinks."""
    materializer = Materializer(
        store=store, broker=broker, registry=registry, catalog_path=catalog_path
    )
    materializer.create_source(source_name)
    for view in (
        CountView(),
        DeviceAverageView(),
        GlobalAverageView(),
        FilteredAverageView(threshold=threshold),
    ):
        materializer.create_view(view, source=source_name)
    materializer.restore_sinks()
    return materializer


@lru_cache
def build_default_materializer() -> Materializer:
    settings = get_settings()
    broker = build_default_broker()
    return build_materializer(
        store=build_default_store(),
        broker=broker,
        registry=build_default_registry(),
        threshold=settings.hot_threshold,
        catalog_path=broker.root_path / "sinks.jsonl" if broker.root_path else None,
    )
