"""
Read-only monitoring endpoints over a MetricsEngine.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse

from services.metrics_engine import MetricsEngine, UnknownField
from services.metrics_engine.retention import RETENTION_TASK
from utils.logger import get_logger

from services.api_gateway.models import (
    CounterDataResponse,
    CountersResponse,
    ErrorResponse,
    HealthResponse,
    StateResponse,
    UptimeResponse,
)

_log = get_logger(__name__)
router = APIRouter(tags=["metrics"])


def get_engine(request: Request) -> MetricsEngine:
    """The engine the app was built around (see create_app)."""
    return request.app.state.metrics_engine


@router.get("/state", response_model=StateResponse)
async def state(engine: MetricsEngine = Depends(get_engine)) -> StateResponse:
    """Entire snapshot: engine start time and every field's config and buckets."""
    return StateResponse(**engine.snapshot().to_dict())


@router.get("/uptime", response_model=UptimeResponse)
async def uptime(engine: MetricsEngine = Depends(get_engine)) -> UptimeResponse:
    return UptimeResponse(uptime=engine.uptime())


@router.get("/counters", response_model=CountersResponse)
async def counters(engine: MetricsEngine = Depends(get_engine)) -> CountersResponse:
    return CountersResponse(counters=engine.field_names())


@router.get(
    "/counter/{name}",
    response_model=CounterDataResponse,
    responses={404: {"model": ErrorResponse}},
)
async def counter(name: str, engine: MetricsEngine = Depends(get_engine)):
    """Retained buckets of one counter, or 404 when it was never registered."""
    try:
        snap = engine.field_snapshot(name)
    except UnknownField as e:
        _log.info("counter_not_found", field=name)
        return ORJSONResponse(status_code=404, content={"error": str(e)})
    return CounterDataResponse(data=snap.data())


@router.get("/health", response_model=HealthResponse)
async def health(engine: MetricsEngine = Depends(get_engine)) -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        uptime_ms=engine.uptime(),
        fields=len(engine.field_names()),
        retention_scheduled=RETENTION_TASK in engine.scheduler,
    )
