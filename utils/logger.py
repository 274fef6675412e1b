"""
Structured logging for the engine and its exposure layer.

structlog over stdlib logging:
  - JSON output for production log shipping, console output for local dev.
  - Bound loggers cost nothing when the level is filtered out, which
    matters because the engine logs from the record() path.
  - Event names are snake_case keys; details go in keyword arguments.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable, Union

import structlog

# Third-party loggers that install their own handlers; we re-route them
# through the root handler so every line gets the same renderer.
_ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error")


def _processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def setup_logging(
    *,
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    adopt: Iterable[str] = _ADOPTED_LOGGERS,
) -> None:
    """
    Call once at process startup. Configures stdlib logging and
    structlog together, then adopts the loggers named in ``adopt``.
    """
    structlog.configure(
        processors=[
            *_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in adopt:
        adopted = logging.getLogger(name)
        adopted.handlers.clear()
        adopted.propagate = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named, bound logger. Use this everywhere."""
    return structlog.get_logger(name)
