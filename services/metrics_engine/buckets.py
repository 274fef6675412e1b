"""
Bucket store: per-field ordered history of aggregation windows.

Architecture decisions:
  1. One FieldState per field, owning a deque of buckets. New buckets are
     appended at the tail, retention pops from the head. Both ends are
     O(1) and the sequence stays ordered by window_start because a bucket
     is only ever appended after the previous tail expired.
  2. Each FieldState carries its own lock. Callers (the aggregator, the
     retention pass, snapshot) hold it for the whole read-decide-mutate
     step. Methods here assume the lock is held; they do no locking.
  3. Buckets are plain mutable dataclasses and never leave this package:
     readers get frozen copies through freeze().
  4. Average buckets keep a transient sample list only while open.
     close() folds it into the final mean and empties it.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from statistics import fmean
from typing import Any, Deque, Iterator, List, Optional, Tuple, Union

from services.metrics_engine.fields import FieldConfig
from services.metrics_engine.snapshot import (
    AverageBucketSnapshot,
    BucketSnapshot,
    CounterBucketSnapshot,
    FieldSnapshot,
    RawBucketSnapshot,
)


@dataclass
class CounterBucket:
    """Running total for count and cumulative fields."""

    window_start: int
    total: float = 0

    def freeze(self) -> CounterBucketSnapshot:
        return CounterBucketSnapshot(window_start=self.window_start, total=self.total)


@dataclass
class AverageBucket:
    """Running min/max/mean for average fields."""

    window_start: int
    sample_count: int
    average: float
    min: float
    max: float
    samples: List[float] = field(default_factory=list)

    def close(self) -> None:
        """Freeze the mean of this window and drop its raw samples."""
        if self.samples:
            self.average = fmean(self.samples)
        self.samples = []

    def freeze(self) -> AverageBucketSnapshot:
        return AverageBucketSnapshot(
            window_start=self.window_start,
            sample_count=self.sample_count,
            average=self.average,
            min=self.min,
            max=self.max,
            samples=tuple(self.samples),
        )


@dataclass
class RawBucket:
    """Every (value, timestamp_ms) pair recorded in the window."""

    window_start: int
    points: List[Tuple[Any, int]] = field(default_factory=list)

    def freeze(self) -> RawBucketSnapshot:
        return RawBucketSnapshot(window_start=self.window_start, points=tuple(self.points))


Bucket = Union[CounterBucket, AverageBucket, RawBucket]


class FieldState:
    """Bucket history and write lock of a single field."""

    def __init__(self, config: FieldConfig, created_at: int) -> None:
        self.config = config
        self.created_at = created_at
        self.lock = threading.Lock()
        self.last_window_start: Optional[int] = None
        self._buckets: Deque[Bucket] = deque()

    def __len__(self) -> int:
        return len(self._buckets)

    def __iter__(self) -> Iterator[Bucket]:
        return iter(self._buckets)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def tail(self) -> Optional[Bucket]:
        """The open bucket, or None before the first sample / after full eviction."""
        return self._buckets[-1] if self._buckets else None

    def is_expired(self, bucket: Bucket, now: int) -> bool:
        """A bucket stops accepting writes once ``now`` passes the end of its window."""
        return now > bucket.window_start + self.config.window_ms

    def append(self, bucket: Bucket) -> None:
        self._buckets.append(bucket)
        self.last_window_start = bucket.window_start

    def trim_expired(self, horizon: int) -> int:
        """
        Drop buckets from the head whose window started at or before
        ``horizon``. Stops at the first younger bucket. Returns how many
        were dropped.
        """
        dropped = 0
        while self._buckets and self._buckets[0].window_start <= horizon:
            self._buckets.popleft()
            dropped += 1
        if not self._buckets:
            self.last_window_start = None
        return dropped

    def freeze(self) -> FieldSnapshot:
        buckets: Tuple[BucketSnapshot, ...] = tuple(b.freeze() for b in self._buckets)
        return FieldSnapshot(
            name=self.config.name,
            config=self.config,
            created_at=self.created_at,
            last_window_start=self.last_window_start,
            buckets=buckets,
        )
