"""Pydantic schemas for the HTTP API layer and the sink wire payload."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AwareDatetime, BaseModel, Field

from models.records import ChangeOp, Reading, ViewChange


class ReadingIn(BaseModel):
    """Payload accepted by the ingestion endpoint."""

    name: str = Field(..., min_length=1, examples=["raspberry-1"])
    timestamp: AwareDatetime = Field(..., description="Measurement time with a UTC offset.")
    temperature: float = Field(..., strict=True, allow_inf_nan=False, examples=[58.4])

    def to_record(self) -> Reading:
        return Reading(name=self.name, timestamp=self.timestamp, temperature=self.temperature)


class ReadingOut(BaseModel):
    """A stored row of the ``sensors`` table."""

    name: str
    timestamp: datetime
    temperature: float

    @classmethod
    def from_record(cls, reading: Reading) -> "ReadingOut":
        return cls(name=reading.name, timestamp=reading.timestamp, temperature=reading.temperature)


class CountResponse(BaseModel):
    count: int = Field(..., ge=0)


class Aggregates(BaseModel):
    """Statistics recomputed from the full row set."""

    row_count: int = Field(..., ge=0)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None
    per_device_count: Dict[str, int] = Field(default_factory=dict)
    per_device_average: Dict[str, float] = Field(default_factory=dict)


class ViewInfo(BaseModel):
    name: str
    kind: str
    lsn: int = Field(..., ge=0, description="Last replication LSN applied to the view.")


class ViewResult(BaseModel):
    name: str
    lsn: int = Field(..., ge=0)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class SinkCreate(BaseModel):
    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_.]+$")
    view: str = Field(..., min_length=1)


class SinkInfo(BaseModel):
    name: str
    view: str
    topic: str
    pending: int = Field(0, ge=0, description="Changes waiting to be written after a broker failure.")


class ViewChangeMessage(BaseModel):
    """Payload of one message written by a sink."""

    view: str
    lsn: int
    op: ChangeOp
    key: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    @classmethod
    def from_change(cls, change: ViewChange) -> "ViewChangeMessage":
        return cls(
            view=change.view,
            lsn=change.lsn,
            op=change.op,
            key=change.key,
            before=change.before,
            after=change.after,
        )


class TopicMessage(BaseModel):
    topic: str
    offset: int
    schema_id: int
    change: ViewChangeMessage
