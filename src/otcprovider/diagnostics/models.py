"""
Diagnostic records returned alongside (possibly partial) resource state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Iterable


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class ErrorKind(StrEnum):
    """Classification of a remote failure."""

    GONE = "gone"
    CONFLICT = "conflict"
    THROTTLED = "throttled"
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.THROTTLED, ErrorKind.TRANSIENT)


@dataclass(frozen=True)
class Diagnostic:
    """A severity-tagged message about one operation.

    ``field_path`` uses dotted notation with list indices, e.g.
    ``billing.0.size``.
    """

    severity: Severity
    summary: str
    detail: str = ""
    field_path: str | None = None
    retry_hint: str | None = None
    kind: ErrorKind | None = None
    request_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def at(self, field_path: str) -> "Diagnostic":
        """Return a copy anchored at ``field_path`` (prefixing any existing path)."""
        path = f"{field_path}.{self.field_path}" if self.field_path else field_path
        return replace(self, field_path=path)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "severity": str(self.severity),
            "summary": self.summary,
            "detail": self.detail,
        }
        if self.field_path:
            data["field_path"] = self.field_path
        if self.retry_hint:
            data["retry_hint"] = self.retry_hint
        if self.kind:
            data["kind"] = str(self.kind)
        if self.request_id:
            data["request_id"] = self.request_id
        return data


def error(
    summary: str,
    detail: str = "",
    *,
    field_path: str | None = None,
    kind: ErrorKind | None = None,
    **kwargs: Any,
) -> Diagnostic:
    return Diagnostic(
        Severity.ERROR, summary, detail, field_path=field_path, kind=kind, **kwargs
    )


def warning(summary: str, detail: str = "", *, field_path: str | None = None) -> Diagnostic:
    return Diagnostic(Severity.WARNING, summary, detail, field_path=field_path)


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(d.is_error for d in diagnostics)
