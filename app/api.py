"""HTTP route definitions for the exporter."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse

from app.schemas import HealthResponse
from metrics.registry import GaugeRegistry, build_default_gauges
from services.errors import RefreshError
from services.refresher import RefreshService, build_default_refresher

router = APIRouter()


def get_refresher(request: Request) -> RefreshService:
    return build_default_refresher(getattr(request.app.state, "settings", None))


def get_gauges() -> GaugeRegistry:
    return build_default_gauges()


@router.get(
    "/metrics",
    summary="Refresh from the device and expose the gauges in Prometheus format.",
    response_class=Response,
    responses={500: {"description": "Refresh failed; body holds the error text."}},
)
def scrape_metrics(
    refresher: RefreshService = Depends(get_refresher),
    gauges: GaugeRegistry = Depends(get_gauges),
) -> Response:
    # Sync handler: FastAPI runs it in its threadpool, so scrapes overlap.
    try:
        refresher.refresh()
    except RefreshError as exc:
        return PlainTextResponse(
            str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return Response(content=gauges.render(), media_type=gauges.content_type)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> HealthResponse:
    return HealthResponse(status="ok", detail="Scrape /metrics for device readings.")
