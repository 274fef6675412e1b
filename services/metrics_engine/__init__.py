"""
Windowed in-process metrics: counters, sums, averages and raw samples
bucketed into time windows with a bounded retention history.
"""

from services.metrics_engine.engine import EngineConfig, MetricsEngine
from services.metrics_engine.errors import (
    InvalidFieldConfig,
    InvalidValue,
    MetricsEngineError,
    SchedulerFault,
    UnknownField,
)
from services.metrics_engine.fields import FieldConfig, FieldKind
from services.metrics_engine.lifecycle import ExposureService, ServiceConfig
from services.metrics_engine.snapshot import (
    AverageBucketSnapshot,
    CounterBucketSnapshot,
    EngineSnapshot,
    FieldSnapshot,
    RawBucketSnapshot,
)

__all__ = [
    "MetricsEngine",
    "EngineConfig",
    "FieldConfig",
    "FieldKind",
    "ServiceConfig",
    "ExposureService",
    "EngineSnapshot",
    "FieldSnapshot",
    "CounterBucketSnapshot",
    "AverageBucketSnapshot",
    "RawBucketSnapshot",
    "MetricsEngineError",
    "UnknownField",
    "InvalidValue",
    "InvalidFieldConfig",
    "SchedulerFault",
]
