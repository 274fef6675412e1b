"""
Monitoring web API: exposes a MetricsEngine over HTTP.

Architecture decisions:
  1. create_app() builds a FastAPI app around one engine instance, stored
     on app.state. No module-level engine: tests and host apps can run as
     many engines side by side as they like.
  2. WebAPIService runs that app under uvicorn in a daemon thread and is
     an exposure service, so the engine starts, restarts and stops it like
     any other (ServiceConfig "web").
  3. start_server() is the standalone entry point: engine and API in one
     process, driven by configs.settings.
  4. The API only reads snapshots. It cannot mutate engine state.
"""

from __future__ import annotations

import threading
import time
from contextlib import asynccontextmanager
from typing import Any, List, Mapping, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from configs.settings import Settings, get_settings
from services.metrics_engine import EngineConfig, MetricsEngine, ServiceConfig
from utils.logger import get_logger, setup_logging

from services.api_gateway.endpoints import stats_router

_log = get_logger(__name__)


# ── App factory ─────────────────────────────────────────────

def create_app(engine: MetricsEngine) -> FastAPI:
    """Build the monitoring API for ``engine``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log.info("monitoring_api_startup", fields=len(engine.field_names()))
        yield
        _log.info("monitoring_api_shutdown")

    app = FastAPI(
        title="Metrics Engine Monitoring API",
        description="Windowed counters, sums and averages of the running process",
        version="1.0.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs",
        redoc_url=None,
    )
    app.state.metrics_engine = engine

    # Read-only API; dashboards on other origins may poll it.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(stats_router)
    return app


# ── Exposure service ───────────────────────────────────────

class WebAPIService:
    """The monitoring API served by uvicorn on a background thread."""

    def __init__(
        self, engine: MetricsEngine, host: str, port: int, startup_timeout: float = 5.0
    ) -> None:
        self.host = host
        self.port = port
        self.startup_timeout = startup_timeout
        self._app = create_app(engine)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        config = uvicorn.Config(
            self._app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            name=f"metrics-web-{self.port}",
            daemon=True,
        )
        self._thread.start()
        self._wait_started()
        _log.info("monitoring_started", host=self.host, port=self.port)

    def _wait_started(self) -> None:
        # uvicorn exits its thread when the bind fails instead of raising
        deadline = time.monotonic() + self.startup_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                raise RuntimeError(
                    f"Monitoring API could not start on {self.host}:{self.port}"
                )
            if time.monotonic() > deadline:
                self.stop()
                raise RuntimeError(
                    f"Monitoring API did not start on {self.host}:{self.port} "
                    f"within {self.startup_timeout}s"
                )
            time.sleep(0.01)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        _log.info("monitoring_stopped", host=self.host, port=self.port)

    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def web_service(engine: MetricsEngine, options: Mapping[str, Any]) -> WebAPIService:
    """ServiceFactory for the web API. Options: host (or listen), port."""
    host = options.get("host", options.get("listen", "0.0.0.0"))
    return WebAPIService(engine, host=host, port=int(options.get("port", 3001)))


SERVICE_FACTORIES = {
    "web": web_service,
}


def service_configs_from_settings(settings: Settings) -> List[ServiceConfig]:
    """ServiceConfigs for every enabled API listed in ``settings.apis``."""
    configs = []
    for api in settings.apis:
        factory = SERVICE_FACTORIES.get(api)
        if factory is None:
            _log.warning("unknown_api_skipped", api=api, known=sorted(SERVICE_FACTORIES))
            continue
        configs.append(ServiceConfig(
            name=api,
            factory=factory,
            options={"host": settings.web_host, "port": settings.web_port},
        ))
    return configs


def build_engine(settings: Optional[Settings] = None, *, with_services: bool = True) -> MetricsEngine:
    """Engine configured from settings, with the enabled exposure services."""
    cfg = settings or get_settings()
    services = service_configs_from_settings(cfg) if with_services else []
    return MetricsEngine(EngineConfig.from_settings(cfg, services=services))


# ── Entry point ─────────────────────────────────────────────

def start_server() -> None:
    """Run engine and monitoring API in the foreground (for scripts/CLI)."""
    cfg = get_settings()
    setup_logging(level=cfg.log_level, json_output=cfg.log_json)

    engine = build_engine(cfg, with_services=False)
    try:
        uvicorn.run(
            create_app(engine),
            host=cfg.api_host,
            port=cfg.api_port,
            log_level=cfg.log_level.lower(),
            access_log=False,  # We do our own structured logging
        )
    finally:
        engine.close()


if __name__ == "__main__":
    start_server()
