"""
Unit tests for retention: head-only eviction, and the re-arming,
cancellable scheduler that drives it.
"""
import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.metrics_engine import EngineConfig, MetricsEngine
from services.metrics_engine.buckets import CounterBucket, FieldState
from services.metrics_engine.fields import FieldConfig
from services.metrics_engine.retention import ScheduledTask, Scheduler, evict_expired


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestEvictExpired:
    def _state(self, starts):
        state = FieldState(FieldConfig(name="x", kind="count", window_seconds=1), created_at=0)
        for s in starts:
            state.append(CounterBucket(window_start=s, total=1))
        return state

    def test_drops_prefix_only(self):
        state = self._state([0, 100, 200, 300])
        assert evict_expired([state], now=1200, max_retention_ms=1000) == 3
        assert [b.window_start for b in state] == [300]

    def test_boundary_is_evicted(self):
        state = self._state([0])
        assert evict_expired([state], now=1000, max_retention_ms=1000) == 1
        assert len(state) == 0
        assert state.last_window_start is None

    def test_stops_at_first_young_bucket(self):
        # Out-of-order tail never happens in practice; the scan must not look past the head.
        state = self._state([500, 0])
        assert evict_expired([state], now=1000, max_retention_ms=1000) == 0
        assert len(state) == 2

    def test_nothing_expired(self):
        state = self._state([900])
        assert evict_expired([state], now=1000, max_retention_ms=1000) == 0
        assert state.last_window_start == 900


class TestEngineRetention:
    def test_expired_bucket_absent_survivor_unchanged(self, engine, clock):
        for _ in range(5):
            engine.record("requestCount")
        clock.advance(61_000)
        engine.record("requestCount")
        engine.record("transferredBytes", 512)
        before = engine.snapshot()

        clock.advance(59_000)  # first bucket is now exactly max_retention old
        assert engine.evict_expired() == 1

        after = engine.snapshot()
        assert [b.total for b in after.fields["requestCount"].buckets] == [1]
        assert after.fields["requestCount"].buckets[0] == before.fields["requestCount"].buckets[1]
        assert after.fields["transferredBytes"] == before.fields["transferredBytes"]

    def test_recording_after_full_eviction_opens_new_bucket(self, engine, clock):
        engine.record("requestCount")
        clock.advance(500_000)
        engine.evict_expired()
        assert engine.snapshot().fields["requestCount"].buckets == ()
        engine.record("requestCount")
        buckets = engine.snapshot().fields["requestCount"].buckets
        assert len(buckets) == 1
        assert buckets[0].window_start == clock.now

    def test_timer_evicts_in_background(self):
        eng = MetricsEngine(EngineConfig(max_retention_ms=50, aggregate_seconds=60))
        try:
            eng.record("requestCount")
            assert len(eng.snapshot().fields["requestCount"].buckets) == 1
            assert _wait_for(lambda: not eng.snapshot().fields["requestCount"].buckets)
        finally:
            eng.close()

    def test_close_cancels_timer(self):
        eng = MetricsEngine(EngineConfig(max_retention_ms=10_000))
        task = eng.scheduler.get("retention")
        assert task is not None
        eng.close()
        assert task.cancelled
        assert "retention" not in eng.scheduler


class TestScheduledTask:
    def test_rearms_after_each_run(self):
        hits = []
        done = threading.Event()

        def tick():
            hits.append(time.monotonic())
            if len(hits) >= 3:
                done.set()

        sched = Scheduler(default_interval_ms=20)
        task = sched.schedule("tick", tick)
        try:
            assert done.wait(3.0)
            assert _wait_for(lambda: task.runs >= 3)
        finally:
            sched.cancel_all()
        assert task.faults == 0

    def test_failure_does_not_stop_rearming(self):
        calls = []
        recovered = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            recovered.set()

        sched = Scheduler(default_interval_ms=20)
        task = sched.schedule("flaky", flaky)
        try:
            assert recovered.wait(3.0)
        finally:
            sched.cancel_all()
        assert task.faults == 1

    def test_cancel_stops_future_runs(self):
        sched = Scheduler(default_interval_ms=20)
        task = sched.schedule("idle", lambda: None)
        assert _wait_for(lambda: task.runs >= 1)
        assert sched.cancel("idle") is True
        assert task.cancelled
        settled = task.runs
        time.sleep(0.1)
        assert task.runs <= settled + 1
        sched.cancel_all()

    def test_cancel_is_idempotent(self):
        task = ScheduledTask("idle", lambda: None, interval_ms=10_000)
        task.cancel()
        task.cancel()
        assert task.cancelled

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            ScheduledTask("bad", lambda: None, interval_ms=0)

    def test_each_task_gets_its_own_job_id(self):
        a = ScheduledTask("same", lambda: None, interval_ms=10)
        b = ScheduledTask("same", lambda: None, interval_ms=10)
        assert a.job_id != b.job_id


class TestScheduler:
    def test_default_interval(self):
        sched = Scheduler(default_interval_ms=10_000)
        task = sched.schedule("a", lambda: None)
        try:
            assert task.interval_ms == 10_000
            assert sched.running
        finally:
            sched.cancel_all()

    def test_custom_interval(self):
        sched = Scheduler(default_interval_ms=10_000)
        task = sched.schedule("a", lambda: None, interval_ms=100)
        try:
            assert task.interval_ms == 100
        finally:
            sched.cancel_all()

    def test_explicit_zero_interval_is_rejected(self):
        sched = Scheduler(default_interval_ms=10_000)
        with pytest.raises(ValueError):
            sched.schedule("a", lambda: None, interval_ms=0)
        assert "a" not in sched
        assert not sched.running

    def test_rescheduling_replaces_previous(self):
        sched = Scheduler(default_interval_ms=10_000)
        first = sched.schedule("a", lambda: None)
        second = sched.schedule("a", lambda: None)
        try:
            assert first.cancelled
            assert not second.cancelled
            assert sched.get("a") is second
        finally:
            sched.cancel_all()

    def test_replaced_task_stops_running(self):
        old_hits, new_hits = [], []
        sched = Scheduler(default_interval_ms=20)
        sched.schedule("a", lambda: old_hits.append(1))
        sched.schedule("a", lambda: new_hits.append(1))
        try:
            assert _wait_for(lambda: len(new_hits) >= 2)
        finally:
            sched.cancel_all()
        assert old_hits == []

    def test_cancel_unknown_is_noop(self):
        sched = Scheduler(default_interval_ms=10_000)
        assert sched.cancel("missing") is False

    def test_cancel_all(self):
        sched = Scheduler(default_interval_ms=10_000)
        tasks = [sched.schedule(n, lambda: None) for n in ("a", "b")]
        sched.cancel_all()
        assert all(t.cancelled for t in tasks)
        assert "a" not in sched
        assert not sched.running

    def test_schedule_after_cancel_all(self):
        hits = threading.Event()
        sched = Scheduler(default_interval_ms=20)
        sched.schedule("a", lambda: None)
        sched.cancel_all()
        sched.schedule("b", hits.set)
        try:
            assert hits.wait(3.0)
        finally:
            sched.cancel_all()
