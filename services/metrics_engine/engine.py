"""
MetricsEngine: record samples, rotate windows, evict history, hand out snapshots.

Architecture decisions:
  1. All state belongs to the engine instance. Two engines in one process
     share nothing; there is no module-level state object.
  2. record() is synchronous and in-memory only. It takes one per-field
     lock for the rotate-or-fold step and logs after releasing it.
     Different fields never contend.
  3. Retention runs as a re-arming APScheduler job owned by the engine's Scheduler,
     every max_retention_ms. close() cancels it and stops exposure services.
  4. Time comes from an injectable clock returning epoch milliseconds.
     Production uses utils.timing.epoch_ms; tests pass a fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from services.metrics_engine import aggregator
from services.metrics_engine.fields import BUILTIN_FIELDS, FieldConfig
from services.metrics_engine.lifecycle import ExposureService, ServiceConfig, ServiceManager
from services.metrics_engine.registry import FieldRegistry
from services.metrics_engine.retention import RETENTION_TASK, Scheduler, evict_expired
from services.metrics_engine.snapshot import EngineSnapshot, FieldSnapshot
from utils.logger import get_logger
from utils.timing import Clock, epoch_ms, timed

if TYPE_CHECKING:
    from configs.settings import Settings

_log = get_logger(__name__)

FieldDefinition = Union[FieldConfig, Mapping[str, Any]]


@dataclass(frozen=True)
class EngineConfig:
    """
    Everything the engine needs to run.

    max_retention_ms: buckets whose window started this long ago are
        evicted; also the interval between retention passes.
    aggregate_seconds: window length for fields that do not set one.
    custom_fields: registered after the built-in fields.
    services: exposure services started with the engine.
    """

    max_retention_ms: int
    aggregate_seconds: int = 60
    custom_fields: Tuple[FieldDefinition, ...] = ()
    services: Tuple[ServiceConfig, ...] = ()

    def __post_init__(self) -> None:
        if self.max_retention_ms <= 0:
            raise ValueError(f"max_retention_ms must be positive, got {self.max_retention_ms}")
        if self.aggregate_seconds <= 0:
            raise ValueError(f"aggregate_seconds must be positive, got {self.aggregate_seconds}")
        object.__setattr__(self, "custom_fields", tuple(self.custom_fields))
        object.__setattr__(self, "services", tuple(self.services))

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        services: Sequence[ServiceConfig] = (),
    ) -> "EngineConfig":
        return cls(
            max_retention_ms=settings.max_retention_ms,
            aggregate_seconds=settings.aggregate_seconds,
            custom_fields=tuple(settings.custom_fields),
            services=tuple(services),
        )


def _as_config(definition: FieldDefinition) -> FieldConfig:
    if isinstance(definition, FieldConfig):
        return definition
    return FieldConfig.from_definition(definition)


class MetricsEngine:
    """
    In-process windowed metrics.

        engine = MetricsEngine(EngineConfig(max_retention_ms=120_000))
        engine.register_field({"name": "latency", "type": "avg"})
        engine.record("latency", 12.5)
        engine.snapshot().fields["latency"].buckets
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        clock: Clock = epoch_ms,
        start_retention: bool = True,
        start_services: bool = True,
    ) -> None:
        self.config = config
        self._clock = clock
        self._registry = FieldRegistry(config.aggregate_seconds, clock)
        self._scheduler = Scheduler(config.max_retention_ms)
        self._services = ServiceManager()

        for builtin in BUILTIN_FIELDS:
            self.register_field(builtin)
        self.process_start = clock()
        for definition in config.custom_fields:
            self.register_field(definition)

        if start_retention:
            self.start_retention()
        if start_services and config.services:
            self.start_services()

    def __enter__(self) -> "MetricsEngine":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── Fields ──────────────────────────────────────────────

    def register_field(self, definition: FieldDefinition) -> None:
        """Add a field. A name that is already registered keeps its configuration."""
        config = _as_config(definition)
        if self._registry.register(config):
            _log.debug("field_registered", field=config.name, kind=config.kind.value)

    def resolve(self, name: str) -> FieldConfig:
        """Configuration of ``name``. Raises UnknownField."""
        return self._registry.resolve(name)

    def field_names(self) -> List[str]:
        return self._registry.names()

    # ── Writes ──────────────────────────────────────────────

    def record(self, name: str, value: Any = None) -> None:
        """
        Fold one sample into the current window of ``name``.

        Raises UnknownField for unregistered names and InvalidValue when a
        cumulative or average field gets something that is not a finite
        number. Neither leaves any state changed.
        """
        state = self._registry.state(name)
        value = aggregator.normalize(state, value)
        with state.lock:
            now = self._clock()
            rotated = aggregator.fold(state, value, now)
        if rotated:
            _log.debug("bucket_opened", field=name, window_start=now)

    # ── Retention ───────────────────────────────────────────

    def evict_expired(self) -> int:
        """Run one retention pass now. Returns the number of buckets dropped."""
        with timed("retention_pass") as t:
            dropped = evict_expired(
                self._registry.states(), self._clock(), self.config.max_retention_ms
            )
        if dropped:
            _log.info("retention_evicted", buckets=dropped, latency_ms=round(t["ms"], 3))
        return dropped

    def start_retention(self) -> None:
        """(Re)start the periodic retention pass."""
        self._scheduler.schedule(RETENTION_TASK, self.evict_expired)

    def stop_retention(self) -> None:
        self._scheduler.cancel(RETENTION_TASK)

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # ── Reads ───────────────────────────────────────────────

    def snapshot(self) -> EngineSnapshot:
        """Frozen copy of every field; each field is copied under its own lock."""
        fields = {}
        for state in self._registry.states():
            with state.lock:
                fields[state.name] = state.freeze()
        return EngineSnapshot(process_start=self.process_start, fields=MappingProxyType(fields))

    def field_snapshot(self, name: str) -> FieldSnapshot:
        """Frozen copy of one field. Raises UnknownField."""
        state = self._registry.state(name)
        with state.lock:
            return state.freeze()

    def uptime(self) -> int:
        """Milliseconds since the engine was constructed."""
        return self._clock() - self.process_start

    # ── Exposure services ───────────────────────────────────

    def start_services(self, services: Optional[Iterable[ServiceConfig]] = None) -> None:
        """
        Start exposure services (default: the ones in the engine config).
        A service that is already active is stopped and started again.
        """
        self._services.start(self, self.config.services if services is None else services)

    def stop_services(self, services: Optional[Iterable[ServiceConfig]] = None) -> None:
        """Stop exposure services. Inactive or unknown services are skipped."""
        configs = self.config.services if services is None else services
        self._services.stop(cfg.name for cfg in configs)

    def service(self, name: str) -> ExposureService:
        return self._services.get(name)

    def close(self) -> None:
        """Cancel retention and stop every exposure service this engine started."""
        self._scheduler.cancel_all()
        self._services.stop_all()
        _log.debug("engine_closed")
