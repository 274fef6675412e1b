"""
Aggregator: folds one sample into a field's open bucket.

Architecture decisions:
  1. One fold function per FieldKind, looked up in _FOLDERS. The table is
     checked against the enum at import time, so adding a kind without a
     fold function fails on import rather than on the first record().
  2. Rotation is the same for every kind: if there is no open bucket or
     ``now`` is past the end of its window, open a new bucket at ``now``.
     Empty windows in between produce nothing; a gap means "no data".
  3. Values are validated before the field lock is taken, so a rejected
     sample cannot leave a half-updated bucket behind.
  4. fold() does no I/O. It reports whether a bucket was opened and the
     caller decides what to log after releasing the lock.
"""

from __future__ import annotations

import math
from numbers import Real
from statistics import fmean
from typing import Any, Callable, Dict

from services.metrics_engine.buckets import AverageBucket, CounterBucket, FieldState, RawBucket
from services.metrics_engine.errors import InvalidValue
from services.metrics_engine.fields import FieldKind

# (state, value, now) -> True when a new bucket was opened
Folder = Callable[[FieldState, Any, int], bool]


def _needs_rotation(state: FieldState, now: int) -> bool:
    tail = state.tail
    return tail is None or state.is_expired(tail, now)


def _require_number(state: FieldState, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidValue(state.name, value)
    try:
        finite = math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        finite = False
    if not finite:
        raise InvalidValue(state.name, value)
    return value


# ── Fold functions ──────────────────────────────────────────

def _fold_count(state: FieldState, value: Any, now: int) -> bool:
    if _needs_rotation(state, now):
        state.append(CounterBucket(window_start=now, total=1))
        return True
    state.tail.total += 1
    return False


def _fold_cumulative(state: FieldState, value: Any, now: int) -> bool:
    if _needs_rotation(state, now):
        state.append(CounterBucket(window_start=now, total=value))
        return True
    state.tail.total += value
    return False


def _fold_average(state: FieldState, value: Any, now: int) -> bool:
    tail = state.tail
    if tail is None or state.is_expired(tail, now):
        if tail is not None:
            tail.close()
        state.append(AverageBucket(
            window_start=now,
            sample_count=1,
            average=value,
            min=value,
            max=value,
            samples=[value],
        ))
        return True

    tail.samples.append(value)
    if value > tail.max:
        tail.max = value
    if value < tail.min:
        tail.min = value
    tail.sample_count += 1
    # Mean of the open window only; closed buckets keep their frozen mean.
    tail.average = fmean(tail.samples)
    return False


def _fold_raw(state: FieldState, value: Any, now: int) -> bool:
    rotated = _needs_rotation(state, now)
    if rotated:
        state.append(RawBucket(window_start=now))
    state.tail.points.append((value, now))
    return rotated


_FOLDERS: Dict[FieldKind, Folder] = {
    FieldKind.COUNT: _fold_count,
    FieldKind.CUMULATIVE: _fold_cumulative,
    FieldKind.AVERAGE: _fold_average,
    FieldKind.RAW: _fold_raw,
}

_missing = set(FieldKind) - set(_FOLDERS)
if _missing:
    raise RuntimeError(f"No fold function for field kinds: {sorted(k.value for k in _missing)}")


# ── Public entry point ─────────────────────────────────────

def normalize(state: FieldState, value: Any) -> Any:
    """Validate ``value`` for the field's kind. Raises InvalidValue."""
    kind = state.config.kind
    if kind in (FieldKind.CUMULATIVE, FieldKind.AVERAGE):
        return _require_number(state, value)
    return value


def fold(state: FieldState, value: Any, now: int) -> bool:
    """
    Fold an already-normalized ``value`` into ``state`` at time ``now``.
    The caller must hold ``state.lock``.
    """
    return _FOLDERS[state.config.kind](state, value, now)
