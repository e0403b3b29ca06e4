"""Domain records shared by the store, the materializer and the simulator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True, slots=True)
class Reading:
    """One temperature report from one device at one timestamp."""

    name: str
    timestamp: datetime
    temperature: float


@dataclass(frozen=True, slots=True)
class RowChange:
    """An insert published on a store's replication feed."""

    lsn: int
    reading: Reading


class ChangeOp(str, Enum):
    insert = "insert"
    update = "update"
    delete = "delete"


@dataclass(frozen=True, slots=True)
class ViewChange:
    """A row-level change of a materialized view.

    ``before`` is ``None`` for inserts and ``after`` is ``None`` for deletes.
    """

    view: str
    lsn: int
    op: ChangeOp
    key: Optional[str]
    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
