"""Per-operation timeout budgets."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Mapping

from otcprovider.core.errors import ConfigurationError

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

OPERATIONS = ("create", "read", "update", "delete")


def parse_duration(value: str | int | float) -> float:
    """Parse durations such as ``"10m"``, ``"1h30m"`` or ``"45s"`` into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(f"negative duration: {value}")
        return float(value)

    text = value.strip()
    if not text:
        raise ConfigurationError("empty duration")
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ConfigurationError(f"invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class Timeouts:
    """Durations in seconds; ``None`` means no deadline."""

    create: float | None = 600.0
    read: float | None = None
    update: float | None = 600.0
    delete: float | None = 600.0

    def for_operation(self, operation: str) -> float | None:
        if operation not in OPERATIONS:
            raise ValueError(f"unknown operation {operation!r}")
        return getattr(self, operation)

    def merged(self, overrides: Mapping[str, Any] | None) -> "Timeouts":
        """Apply host-supplied overrides (durations as strings or seconds)."""
        if not overrides:
            return self
        changes: dict[str, float | None] = {}
        for key, raw in overrides.items():
            if key not in OPERATIONS:
                raise ConfigurationError(f"unknown timeout {key!r}")
            changes[key] = None if raw in (None, "") else parse_duration(raw)
        return replace(self, **changes)

    def to_dict(self) -> dict[str, float | None]:
        return {op: getattr(self, op) for op in OPERATIONS}

    @classmethod
    def of(cls, **durations: str | float | None) -> "Timeouts":
        return cls().merged(durations)
