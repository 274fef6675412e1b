"""
Shared fixtures: a hand-driven clock and an engine wired to it.
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.metrics_engine import EngineConfig, MetricsEngine

T0 = 1_700_000_000_000


class FakeClock:
    """Epoch-milliseconds clock that only moves when told to."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def engine(clock):
    """Engine with 120s retention and 60s windows; retention timer off."""
    eng = MetricsEngine(
        EngineConfig(max_retention_ms=120_000, aggregate_seconds=60),
        clock=clock,
        start_retention=False,
    )
    yield eng
    eng.close()
