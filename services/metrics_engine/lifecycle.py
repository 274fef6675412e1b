"""
Exposure services: whatever makes engine state visible outside the process.

The engine does not know about HTTP. A service is anything with start(),
stop() and active(); a ServiceConfig names it and carries the factory that
builds it from the engine plus its options. The web API in
services.api_gateway is one such factory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Protocol

from utils.logger import get_logger

if TYPE_CHECKING:
    from services.metrics_engine.engine import MetricsEngine

_log = get_logger(__name__)


class ExposureService(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def active(self) -> bool: ...


ServiceFactory = Callable[["MetricsEngine", Mapping[str, Any]], ExposureService]


@dataclass(frozen=True)
class ServiceConfig:
    """A named exposure service and how to build it."""

    name: str
    factory: ServiceFactory
    options: Mapping[str, Any] = field(default_factory=dict)


class ServiceManager:
    """Starts, restarts and stops exposure services by name."""

    def __init__(self) -> None:
        self._services: Dict[str, ExposureService] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def get(self, name: str) -> ExposureService:
        return self._services[name]

    def names(self) -> List[str]:
        return list(self._services)

    def start(self, engine: "MetricsEngine", configs: Iterable[ServiceConfig]) -> None:
        """Build and start each service. An active service of the same name is stopped first."""
        for cfg in configs:
            current = self._services.get(cfg.name)
            if current is not None and current.active():
                _log.info("service_restarting", service=cfg.name)
                current.stop()
            service = cfg.factory(engine, cfg.options)
            self._services[cfg.name] = service
            try:
                service.start()
            except Exception as e:
                _log.error("service_start_failed", service=cfg.name, error=str(e))
                raise
            _log.info("service_started", service=cfg.name)

    def stop(self, names: Iterable[str]) -> None:
        """Stop each named service that is active. Unknown or idle names are ignored."""
        for name in names:
            service = self._services.get(name)
            if service is None or not service.active():
                continue
            try:
                service.stop()
            except Exception as e:
                _log.error("service_stop_failed", service=name, error=str(e))
                raise
            _log.info("service_stopped", service=name)

    def stop_all(self) -> None:
        self.stop(self.names())
