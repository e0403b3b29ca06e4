"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    Aggregates,
    CountResponse,
    ReadingIn,
    ReadingOut,
    SinkCreate,
    SinkInfo,
    TopicMessage,
    ViewInfo,
    ViewResult,
)
from broker.codec import DecodeError
from datastore.base import StoreWriteError
from services.ingestion import IngestionService, build_default_ingestion
from services.materializer import Materializer, build_default_materializer
from services.sink import TopicSink, read_changes

router = APIRouter()


def get_ingestion() -> IngestionService:
    return build_default_ingestion()


def get_materializer() -> Materializer:
    return build_default_materializer()


def _sink_info(sink: TopicSink) -> SinkInfo:
    return SinkInfo(name=sink.name, view=sink.view.name, topic=sink.topic, pending=sink.pending)


@router.post(
    "/sensors",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingOut,
    summary="Store one temperature reading.",
)
def create_reading(
    payload: ReadingIn,
    ingestion: IngestionService = Depends(get_ingestion),
) -> ReadingOut:
    reading = payload.to_record()
    try:
        ingestion.ingest(reading)
    except StoreWriteError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Reading could not be stored.",
        ) from exc
    return ReadingOut.from_record(reading)


@router.get(
    "/sensors",
    response_model=List[ReadingOut],
    summary="List stored readings, most recent last.",
)
def list_readings(
    name: Optional[str] = Query(None, description="Only readings of this device."),
    limit: int = Query(100, ge=1, le=10_000),
    ingestion: IngestionService = Depends(get_ingestion),
) -> List[ReadingOut]:
    return [ReadingOut.from_record(row) for row in ingestion.list_readings(name=name, limit=limit)]


@router.get("/sensors/count", response_model=CountResponse, summary="Number of stored readings.")
def count_readings(ingestion: IngestionService = Depends(get_ingestion)) -> CountResponse:
    return CountResponse(count=ingestion.count())


@router.get(
    "/sensors/summary",
    response_model=Aggregates,
    summary="Aggregates recomputed from every stored reading.",
)
def summarize_readings(ingestion: IngestionService = Depends(get_ingestion)) -> Aggregates:
    summary = ingestion.summary()
    return Aggregates(
        row_count=summary.row_count,
        min_value=summary.min_value,
        max_value=summary.max_value,
        mean_value=summary.mean_value,
        per_device_count=dict(summary.per_device_count),
        per_device_average=summary.per_device_average,
    )


@router.get("/views", response_model=List[ViewInfo], summary="Catalog of materialized views.")
def list_views(materializer: Materializer = Depends(get_materializer)) -> List[ViewInfo]:
    return [ViewInfo(name=view.name, kind=view.kind, lsn=view.lsn) for view in materializer.views()]


@router.get("/views/{name}", response_model=ViewResult, summary="Current contents of a view.")
def query_view(
    name: str,
    materializer: Materializer = Depends(get_materializer),
) -> ViewResult:
    try:
        snapshot = materializer.query(name)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ViewResult(name=snapshot.name, lsn=snapshot.lsn, rows=snapshot.rows)


@router.post(
    "/sinks",
    status_code=status.HTTP_201_CREATED,
    response_model=SinkInfo,
    summary="Export a view's changes to a new broker topic.",
)
def create_sink(
    payload: SinkCreate,
    materializer: Materializer = Depends(get_materializer),
) -> SinkInfo:
    try:
        sink = materializer.create_sink(payload.name, payload.view)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _sink_info(sink)


@router.get("/sinks", response_model=List[SinkInfo], summary="Catalog of sinks and their topics.")
def list_sinks(materializer: Materializer = Depends(get_materializer)) -> List[SinkInfo]:
    return [_sink_info(sink) for sink in materializer.sinks()]


@router.get(
    "/topics/{topic}/messages",
    response_model=List[TopicMessage],
    summary="Decoded messages of a sink topic.",
)
def read_topic(
    topic: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=10_000),
    materializer: Materializer = Depends(get_materializer),
) -> List[TopicMessage]:
    try:
        return read_changes(
            materializer.broker, materializer.registry, topic, offset=offset, limit=limit
        )
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
