"""
Field registry: name -> FieldState, first registration wins.

Re-registering a name is not an error. Host applications register their
fields on every start-up path, and a second definition must never replace
a live field's configuration or wipe its buckets.
"""

from __future__ import annotations

import threading
from typing import Dict, List

from services.metrics_engine.buckets import FieldState
from services.metrics_engine.errors import UnknownField
from services.metrics_engine.fields import FieldConfig
from utils.timing import Clock


class FieldRegistry:
    """Thread-safe registry owning one FieldState per field name."""

    def __init__(self, default_window_seconds: int, clock: Clock) -> None:
        self._default_window = default_window_seconds
        self._clock = clock
        self._states: Dict[str, FieldState] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        return name in self._states

    def __len__(self) -> int:
        return len(self._states)

    def register(self, config: FieldConfig) -> bool:
        """Insert ``config`` unless the name exists. Returns True if inserted."""
        resolved = config.with_default_window(self._default_window)
        with self._lock:
            if resolved.name in self._states:
                return False
            self._states[resolved.name] = FieldState(resolved, created_at=self._clock())
            return True

    def resolve(self, name: str) -> FieldConfig:
        return self.state(name).config

    def state(self, name: str) -> FieldState:
        try:
            return self._states[name]
        except KeyError:
            raise UnknownField(name) from None

    def names(self) -> List[str]:
        """Field names in registration order."""
        with self._lock:
            return list(self._states)

    def states(self) -> List[FieldState]:
        with self._lock:
            return list(self._states.values())
