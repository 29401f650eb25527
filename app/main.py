from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from datastore.mock_document_store import build_default_collection
from logging_config import configure_logging
from push.sender import build_default_sender
from services.alarm_service import build_default_service
from settings import get_settings
from transport.mqtt_listener import build_default_listener


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    build_default_service()
    listener = build_default_listener() if get_settings().mqtt_enabled else None
    if listener is not None:
        listener.ensure_connected()
    try:
        yield
    finally:
        if listener is not None:
            listener.stop()
            build_default_listener.cache_clear()
        build_default_service.cache_clear()
        build_default_sender.cache_clear()
        build_default_collection.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="MAB Alarm Monitor",
        description="Evaluates sensor alarm telemetry and notifies device owners once per incident.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
