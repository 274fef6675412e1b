"""
Retention: periodic eviction of buckets older than the retention horizon.

Architecture decisions:
  1. Each Scheduler owns one APScheduler BackgroundScheduler. A recurring
     task is a one-shot ``date`` job that is added again from the
     EVENT_JOB_EXECUTED / EVENT_JOB_ERROR listener once the run has
     finished. A slow pass delays the next one instead of piling up
     behind it.
  2. A failed run arrives at the listener as EVENT_JOB_ERROR. It is wrapped
     in SchedulerFault, logged, and the next run is armed anyway.
  3. Tasks are held by name. Scheduling a name again cancels the previous
     handle first, and cancel() is explicit and idempotent.
  4. Eviction walks each field's deque from the head and stops at the first
     bucket inside the horizon. It takes the same per-field lock as
     record(), so a pass never races a rotation.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from services.metrics_engine.buckets import FieldState
from services.metrics_engine.errors import SchedulerFault
from utils.logger import get_logger

_log = get_logger(__name__)

RETENTION_TASK = "retention"

_job_ids = itertools.count(1)


class ScheduledTask:
    """Cancellable handle for a callback that runs again ``interval_ms`` after each run."""

    def __init__(self, name: str, callback: Callable[[], None], interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError(f"Task {name!r}: interval must be positive, got {interval_ms}")
        self.name = name
        self.interval_ms = interval_ms
        self.callback = callback
        self.job_id = f"{name}#{next(_job_ids)}"
        self._cancelled = False
        self.runs = 0
        self.faults = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop re-arming. A run already in progress finishes."""
        self._cancelled = True

    def next_run_date(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(milliseconds=self.interval_ms)


class Scheduler:
    """Named ScheduledTasks on a BackgroundScheduler; one live task per name."""

    def __init__(self, default_interval_ms: int) -> None:
        self._default_interval = default_interval_ms
        self._tasks: Dict[str, ScheduledTask] = {}
        self._jobs: Dict[str, ScheduledTask] = {}
        self._lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def get(self, name: str) -> Optional[ScheduledTask]:
        return self._tasks.get(name)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def schedule(
        self,
        name: str,
        callback: Callable[[], None],
        interval_ms: Optional[int] = None,
    ) -> ScheduledTask:
        """
        Run ``callback`` every ``interval_ms`` (default: the retention
        interval) until cancelled. Replaces any live task of the same name.
        """
        task = ScheduledTask(
            name, callback, interval_ms if interval_ms is not None else self._default_interval
        )
        with self._lock:
            previous = self._tasks.get(name)
            if previous is not None:
                self._drop(previous)
            self._tasks[name] = task
            self._jobs[task.job_id] = task
            self._ensure_started()
            self._arm(task)
        _log.debug("task_scheduled", task=name, interval_ms=task.interval_ms)
        return task

    def cancel(self, name: str) -> bool:
        """Cancel the task called ``name``. Returns False if there was none."""
        with self._lock:
            task = self._tasks.pop(name, None)
            if task is None:
                return False
            self._drop(task)
        return True

    def cancel_all(self) -> None:
        """Cancel every task and shut the background scheduler down."""
        with self._lock:
            for task in list(self._tasks.values()):
                self._drop(task)
            self._tasks.clear()
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)

    # ── internals ────────────────────────────────────────────

    def _ensure_started(self) -> None:
        if self._scheduler is None:
            scheduler = BackgroundScheduler(daemon=True, timezone=timezone.utc)
            scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
            scheduler.start()
            self._scheduler = scheduler

    def _arm(self, task: ScheduledTask) -> None:
        self._scheduler.add_job(
            task.callback,
            trigger=DateTrigger(run_date=task.next_run_date()),
            id=task.job_id,
            name=task.name,
            misfire_grace_time=None,
            replace_existing=True,
        )

    def _drop(self, task: ScheduledTask) -> None:
        task.cancel()
        self._jobs.pop(task.job_id, None)
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(task.job_id)
        except JobLookupError:
            # already fired; the listener sees the cancel and stops re-arming
            pass

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        with self._lock:
            task = self._jobs.get(event.job_id)
            if task is None:
                return
            task.runs += 1
            if event.exception is not None:
                task.faults += 1
                fault = SchedulerFault(task.name, event.exception)
                _log.error(
                    "scheduled_task_failed",
                    task=task.name,
                    error=str(fault),
                    traceback=event.traceback,
                )
            if not task.cancelled and self._scheduler is not None:
                self._arm(task)


def evict_expired(states: Iterable[FieldState], now: int, max_retention_ms: int) -> int:
    """
    One retention pass: drop every bucket whose window started at or before
    ``now - max_retention_ms``. Returns the number of buckets dropped.
    """
    horizon = now - max_retention_ms
    dropped = 0
    for state in states:
        with state.lock:
            dropped += state.trim_expired(horizon)
    return dropped
