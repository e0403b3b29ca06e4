from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.ingestion import build_default_ingestion
from services.materializer import build_default_materializer


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    ingestion = build_default_ingestion()
    # Views subscribe to the feed before the first request is served.
    materializer = build_default_materializer()
    try:
        yield
    finally:
        materializer.close()
        ingestion.store.close()
        build_default_materializer.cache_clear()
        build_default_ingestion.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Raspberry Pi Sensor Pipeline",
        description="Ingestion endpoint and incrementally maintained temperature views.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
