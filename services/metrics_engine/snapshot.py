"""
Read-only views of engine state.

Everything here is a frozen copy taken under the owning field's lock, so a
reader can hold on to a snapshot for as long as it likes while writes and
retention passes keep going. Sequences are tuples and mappings are
MappingProxyType: a consumer cannot reach back into live buckets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from services.metrics_engine.fields import FieldConfig


@dataclass(frozen=True)
class CounterBucketSnapshot:
    """One window of a count or cumulative field."""

    window_start: int
    total: float

    def to_dict(self) -> Dict[str, Any]:
        return {"window_start": self.window_start, "total": self.total}


@dataclass(frozen=True)
class AverageBucketSnapshot:
    """
    One window of an average field. ``samples`` is only non-empty for the
    bucket that is still open.
    """

    window_start: int
    sample_count: int
    average: float
    min: float
    max: float
    samples: Tuple[float, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_start": self.window_start,
            "samples": list(self.samples),
            "max": self.max,
            "min": self.min,
            "count": self.sample_count,
            "average": self.average,
        }


@dataclass(frozen=True)
class RawBucketSnapshot:
    """One window of a raw field: (value, timestamp_ms) pairs in arrival order."""

    window_start: int
    points: Tuple[Tuple[Any, int], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_start": self.window_start,
            "points": [[value, ts] for value, ts in self.points],
        }


BucketSnapshot = Union[CounterBucketSnapshot, AverageBucketSnapshot, RawBucketSnapshot]


@dataclass(frozen=True)
class FieldSnapshot:
    """Configuration and retained history of one field."""

    name: str
    config: FieldConfig
    created_at: int
    last_window_start: Optional[int]
    buckets: Tuple[BucketSnapshot, ...]

    def data(self) -> List[Dict[str, Any]]:
        return [b.to_dict() for b in self.buckets]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "data": self.data(),
            "last": self.last_window_start,
            "start": self.created_at,
        }


@dataclass(frozen=True)
class EngineSnapshot:
    """Point-in-time copy of every field plus the engine start time."""

    process_start: int
    fields: Mapping[str, FieldSnapshot]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process_start": self.process_start,
            "fields": {name: snap.to_dict() for name, snap in self.fields.items()},
        }
