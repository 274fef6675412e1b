"""
Request-counting middleware for host applications.

Architecture decisions:
  1. Every request bumps ``requestCount`` once, before the handler runs.
  2. Every response body chunk adds its byte length to ``transferredBytes``.
     The body iterator is wrapped instead of reading Content-Length, so
     streamed responses are counted as they are actually sent.
  3. The engine is attached to ``request.state.metrics`` so handlers can
     record their own fields without importing a global.
  4. Metrics must never break a request. Engine errors are logged at
     warning level and the request carries on.
"""

from __future__ import annotations

from typing import AsyncIterator, Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics_engine import MetricsEngine, MetricsEngineError
from utils.logger import get_logger

_log = get_logger(__name__)

REQUEST_COUNT_FIELD = "requestCount"
TRANSFERRED_BYTES_FIELD = "transferredBytes"


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Feed request and byte counters of a MetricsEngine."""

    def __init__(self, app, engine: MetricsEngine) -> None:
        super().__init__(app)
        self._engine = engine

    def _record(self, field: str, value=None) -> None:
        try:
            self._engine.record(field, value)
        except MetricsEngineError as e:
            _log.warning("request_metric_failed", field=field, error=str(e))

    async def _counted(self, body: AsyncIterator) -> AsyncIterator:
        async for chunk in body:
            size = len(chunk.encode("utf-8")) if isinstance(chunk, str) else len(chunk)
            if size:
                self._record(TRANSFERRED_BYTES_FIELD, size)
            yield chunk

    async def dispatch(self, request: Request, call_next: Callable):
        request.state.metrics = self._engine
        self._record(REQUEST_COUNT_FIELD)

        response = await call_next(request)
        response.body_iterator = self._counted(response.body_iterator)
        return response


def setup_request_metrics(app: FastAPI, engine: MetricsEngine) -> None:
    """
    Install the middleware on a host application.
    Called once, before the app starts serving.
    """
    app.add_middleware(RequestMetricsMiddleware, engine=engine)
    _log.info("request_metrics_enabled")
