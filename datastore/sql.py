from __future__ import annotations
import logging
from datetime import datetime, timezone
from threading import Event, Thread
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from datastore.base import ReadingStore, StoreWriteError
from models.records import Reading, RowChange

logger = logging.getLogger(__name__)


def build_sensors_table(metadata: MetaData, name: str = "sensors") -> Table:
    # ``seq`` is the feed position; readings themselves carry no uniqueness constraint.
    return Table(
        name,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False),
        Column("timestamp", DateTime(timezone=True), nullable=False),
        Column("temperature", Float, nullable=False),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlReadingStore(ReadingStore):
    """Reading store backed by a relational table through SQLAlchemy Core.

    LSNs are the table's ``seq`` values, so every process writing to the
    table agrees on them. With ``poll_interval`` set, a background thread
    publishes rows committed by other writers.
    """

    def __init__(
        self,
        url: str,
        table_name: str = "sensors",
        engine: Optional[Engine] = None,
        echo: bool = False,
        poll_interval: Optional[float] = None,
    ) -> None:
        super().__init__(table_name)
        self.url = url
        self.engine = engine or create_engine(url, pool_pre_ping=True, echo=echo)
        self.metadata = MetaData()
        self.table = build_sensors_table(self.metadata, table_name)
        self.metadata.create_all(self.engine, checkfirst=True)
        self._lsn = self._max_seq()
        self.poll_interval = poll_interval
        self._stop_polling = Event()
        self._poller: Optional[Thread] = None
        if poll_interval:
            self._poller = Thread(target=self._poll_loop, name=f"{table_name}-feed", daemon=True)
            self._poller.start()

    def _write(self, reading: Reading) -> int:
        statement = self.table.insert().values(
            name=reading.name,
            timestamp=_as_utc(reading.timestamp),
            temperature=reading.temperature,
        )
        try:
            with self.engine.begin() as connection:
                result = connection.execute(statement)
                return int(result.inserted_primary_key[0])
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"Insert into {self.table.name!r} failed: {exc}") from exc

    def _scan(self) -> List[Reading]:
        statement = select(self.table.c.name, self.table.c.timestamp, self.table.c.temperature).order_by(
            self.table.c.seq
        )
        with self.engine.connect() as connection:
            rows = connection.execute(statement).all()
        return [_to_reading(row) for row in rows]

    def _changes_since(self, lsn: int) -> List[RowChange]:
        table = self.table
        statement = (
            select(table.c.seq, table.c.name, table.c.timestamp, table.c.temperature)
            .where(table.c.seq > lsn)
            .order_by(table.c.seq)
        )
        with self.engine.connect() as connection:
            rows = connection.execute(statement).all()
        return [RowChange(lsn=int(row.seq), reading=_to_reading(row)) for row in rows]

    def count(self) -> int:
        statement = select(func.count()).select_from(self.table)
        with self.engine.connect() as connection:
            return int(connection.execute(statement).scalar_one())

    def close(self) -> None:
        self._stop_polling.set()
        if self._poller is not None:
            self._poller.join()
            self._poller = None
        super().close()
        self.engine.dispose()

    def _max_seq(self) -> int:
        statement = select(func.max(self.table.c.seq))
        with self.engine.connect() as connection:
            return int(connection.execute(statement).scalar_one() or 0)

    def _poll_loop(self) -> None:
        assert self.poll_interval is not None
        while not self._stop_polling.wait(self.poll_interval):
            try:
                published = self.poll()
            except SQLAlchemyError:
                logger.exception("Polling the replication feed failed")
                continue
            if published:
                logger.debug("Published rows from other writers", extra={"lsn": self.lsn})


def _to_reading(row) -> Reading:
    return Reading(name=row.name, timestamp=_as_utc(row.timestamp), temperature=row.temperature)
