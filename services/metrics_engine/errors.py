"""
Error taxonomy for the metrics engine.

Nothing here is fatal: every error leaves the engine usable. UnknownField
and InvalidValue are raised to the caller of record() before any state is
touched; SchedulerFault never leaves the retention scheduler.
"""

from __future__ import annotations


class MetricsEngineError(Exception):
    """Base class for everything the engine raises."""


class UnknownField(MetricsEngineError, KeyError):
    """record() or a query named a field that was never registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Could not find counter for name: {self.name}"


class InvalidValue(MetricsEngineError, ValueError):
    """A numeric-only field kind received a value that is not a finite number."""

    def __init__(self, name: str, value: object) -> None:
        super().__init__(f"Field {name!r} expects a finite number, got {value!r}")
        self.name = name
        self.value = value


class InvalidFieldConfig(MetricsEngineError, ValueError):
    """A field definition is malformed (empty name, unknown kind, bad window)."""


class SchedulerFault(MetricsEngineError):
    """An exception escaped one run of a scheduled task."""

    def __init__(self, task: str, cause: BaseException) -> None:
        super().__init__(f"Scheduled task {task!r} failed: {cause!r}")
        self.task = task
        self.cause = cause
