from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.refresher import build_default_refresher
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Builds the refresher and registers the gauges before the first scrape.
    build_default_refresher(app.state.settings)
    logger.info(
        "Exporter ready",
        extra={
            "host": f"{app.state.settings.device_host}:{app.state.settings.device_port}",
            "share": app.state.settings.device_share,
            "path": app.state.settings.device_file_path,
        },
    )
    try:
        yield
    finally:
        build_default_refresher.cache_clear()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    resolved = settings if settings is not None else get_settings()
    configure_logging(resolved.log_level)
    app = FastAPI(
        title="AirVisual Exporter",
        description="Prometheus exporter for an air-quality sensor reachable over SMB.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = resolved
    app.include_router(router)
    return app

app = create_app()
