"""
Example host application.

Serves a tiny FastAPI app on :3000 whose traffic is counted by the request
middleware, and starts the monitoring web API on :3001 as an exposure
service of the same engine.

Usage:
    python -m scripts.example_app
    curl localhost:3000/
    curl localhost:3001/counter/requestCount
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from services.api_gateway.app import web_service
from services.api_gateway.middleware import setup_request_metrics
from services.metrics_engine import EngineConfig, MetricsEngine, ServiceConfig
from utils.logger import get_logger, setup_logging

_log = get_logger(__name__)


def build_app(engine: MetricsEngine) -> FastAPI:
    app = FastAPI(title="Example app")
    setup_request_metrics(app, engine)

    @app.get("/", response_class=PlainTextResponse)
    async def index(request: Request) -> str:
        start = time.perf_counter_ns()
        body = "\n".join(request.state.metrics.field_names()) + "\n"
        request.state.metrics.record("renderMs", (time.perf_counter_ns() - start) / 1_000_000)
        _log.info("request_received", path="/")
        return body

    return app


def main() -> None:
    setup_logging(level="INFO")
    engine = MetricsEngine(EngineConfig(
        max_retention_ms=1000 * 60 * 2,
        aggregate_seconds=60,
        custom_fields=({"name": "renderMs", "type": "avg", "custom": {"unit": "ms"}},),
        services=(ServiceConfig(name="web", factory=web_service, options={"host": "0.0.0.0", "port": 3001}),),
    ))
    try:
        uvicorn.run(build_app(engine), host="127.0.0.1", port=3000, access_log=False)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
