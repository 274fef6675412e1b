"""
Field kinds and field configuration.

A field is a named counter. Its kind decides how samples are folded into a
bucket, its window decides when the bucket rotates. Configurations are
frozen once built: the registry hands the same object to every reader.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from numbers import Real
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from services.metrics_engine.errors import InvalidFieldConfig


def _valid_window(seconds: Any) -> bool:
    if isinstance(seconds, bool) or not isinstance(seconds, Real):
        return False
    return 0 < seconds < math.inf


class FieldKind(str, Enum):
    """How samples of a field are aggregated within one window."""

    COUNT = "count"
    CUMULATIVE = "cumulative"
    AVERAGE = "avg"
    RAW = "raw"

    @classmethod
    def parse(cls, value: "FieldKind | str") -> "FieldKind":
        if isinstance(value, FieldKind):
            return value
        key = str(value).strip().lower()
        if key == "average":
            key = "avg"
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise InvalidFieldConfig(
                f"Unknown field kind {value!r} (expected one of: {valid})"
            ) from None


@dataclass(frozen=True)
class FieldConfig:
    """
    Configuration of one counter field.

    window_seconds may be left unset on a definition; the registry fills in
    the engine-wide default before the config is stored.
    """

    name: str
    kind: FieldKind
    window_seconds: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidFieldConfig("Field name must be a non-empty string")
        object.__setattr__(self, "kind", FieldKind.parse(self.kind))
        if self.window_seconds is not None and not _valid_window(self.window_seconds):
            raise InvalidFieldConfig(
                f"Field {self.name!r}: window must be a positive number of seconds, "
                f"got {self.window_seconds!r}"
            )
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @property
    def window_ms(self) -> int:
        if self.window_seconds is None:
            raise InvalidFieldConfig(f"Field {self.name!r} has no resolved window")
        return self.window_seconds * 1000

    def with_default_window(self, default_seconds: int) -> "FieldConfig":
        """Return a copy whose window falls back to ``default_seconds``."""
        if self.window_seconds is not None:
            return self
        return FieldConfig(
            name=self.name,
            kind=self.kind,
            window_seconds=default_seconds,
            metadata=self.metadata,
        )

    @classmethod
    def from_definition(cls, definition: Mapping[str, Any]) -> "FieldConfig":
        """
        Build a config from a plain mapping as found in settings or JSON:
            {"name": "latency", "type": "avg", "aggregate": 30, "custom": {...}}
        ``kind``/``window_seconds``/``metadata`` are accepted as aliases.
        """
        try:
            name = definition["name"]
        except KeyError:
            raise InvalidFieldConfig(f"Field definition without a name: {dict(definition)!r}") from None
        kind = definition.get("type", definition.get("kind"))
        if kind is None:
            raise InvalidFieldConfig(f"Field {name!r} has no type")
        window = definition.get("aggregate", definition.get("window_seconds"))
        metadata = definition.get("custom", definition.get("metadata")) or {}
        return cls(name=name, kind=kind, window_seconds=window, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "aggregate": self.window_seconds,
            "custom": dict(self.metadata),
        }


# Fields every engine carries, registered before any custom field.
BUILTIN_FIELDS = (
    FieldConfig(name="requestCount", kind=FieldKind.COUNT),
    FieldConfig(name="transferredBytes", kind=FieldKind.CUMULATIVE),
)
