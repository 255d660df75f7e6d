"""
Error taxonomy for remote calls.

Every failure a handler can raise is mapped to exactly one ErrorKind and
then rendered into a Diagnostic at the engine boundary.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

import httpx

from otcprovider.core.errors import OperationCancelled
from otcprovider.diagnostics.models import Diagnostic, ErrorKind, Severity

# Service error codes that mean the object no longer exists even when the
# status code is not 404
GONE_CODES = frozenset({"ResourceNotFound", "NotFound", "itemNotFound"})

THROTTLE_CODES = frozenset({"APIGW.0308", "Throttling", "TooManyRequests"})

_FIELD_PATTERNS = (
    re.compile(r"(?:field|parameter|param|attribute|key)\s*[\[\('\"]+\s*([A-Za-z_][\w.]*)", re.I),
    re.compile(r"['\"]([A-Za-z_][\w.]*)['\"]\s+(?:is|are)\s+(?:invalid|required|missing|illegal)", re.I),
    re.compile(r"invalid\s+([A-Za-z_][\w]*)", re.I),
)


class ApiError(Exception):
    """A failed call against the cloud REST API."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        code: str | None = None,
        request_id: str | None = None,
        method: str | None = None,
        url: str | None = None,
        decode_error: bool = False,
        transport: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code
        self.request_id = request_id
        self.method = method
        self.url = url
        self.decode_error = decode_error
        self.transport = transport
        self.history: list[str] = []

    @property
    def kind(self) -> ErrorKind:
        return classify(self)

    def __str__(self) -> str:
        prefix = f"{self.method} {self.url}: " if self.method and self.url else ""
        code = f" [{self.code}]" if self.code else ""
        return f"{prefix}{self.status}{code} {self.message}"


class HandlerError(Exception):
    """Raised by a handler to abort with an already-shaped diagnostic."""

    def __init__(
        self,
        summary: str,
        detail: str = "",
        *,
        field_path: str | None = None,
        kind: ErrorKind = ErrorKind.UNKNOWN,
    ):
        super().__init__(summary)
        self.diagnostic = Diagnostic(
            Severity.ERROR, summary, detail, field_path=field_path, kind=kind
        )


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception to exactly one ErrorKind."""
    if isinstance(exc, ApiError):
        return _classify_api_error(exc)
    if isinstance(exc, HandlerError):
        return exc.diagnostic.kind or ErrorKind.UNKNOWN
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def _classify_api_error(exc: ApiError) -> ErrorKind:
    if exc.transport:
        return ErrorKind.TRANSIENT
    if exc.decode_error:
        return ErrorKind.UNKNOWN
    status = exc.status
    if status == 404 or exc.code in GONE_CODES:
        return ErrorKind.GONE
    if status == 409:
        return ErrorKind.CONFLICT
    if status == 429 or exc.code in THROTTLE_CODES:
        return ErrorKind.THROTTLED
    if status in (400, 422):
        return ErrorKind.INVALID_INPUT
    if status in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if 500 <= status <= 599:
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def is_gone(exc: BaseException) -> bool:
    return classify(exc) is ErrorKind.GONE


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def extract_field_path(message: str, known_fields: Iterable[str] = ()) -> str | None:
    """Find a field name referenced by a remote validation message.

    When ``known_fields`` is given only names from that set are returned;
    camelCase remote names are matched against snake_case fields.
    """
    known = set(known_fields)
    for pattern in _FIELD_PATTERNS:
        for match in pattern.finditer(message):
            candidate = match.group(1).rstrip(".")
            if not known:
                return candidate
            for name in (candidate, _snake(candidate), candidate.split(".")[-1]):
                if name in known:
                    return name
                if _snake(name) in known:
                    return _snake(name)
    return None


_SUMMARIES = {
    ErrorKind.GONE: "Remote object does not exist",
    ErrorKind.CONFLICT: "Remote object is in a conflicting state",
    ErrorKind.THROTTLED: "Request throttled by the remote API",
    ErrorKind.INVALID_INPUT: "Remote API rejected the request",
    ErrorKind.UNAUTHORIZED: "Not authorized for this operation",
    ErrorKind.TRANSIENT: "Remote API temporarily unavailable",
    ErrorKind.UNKNOWN: "Unexpected error",
}


def to_diagnostic(
    exc: BaseException,
    *,
    operation: str | None = None,
    known_fields: Iterable[str] = (),
) -> Diagnostic:
    """Render any exception raised inside a handler as an error Diagnostic."""
    if isinstance(exc, HandlerError):
        return exc.diagnostic

    if isinstance(exc, OperationCancelled):
        return Diagnostic(
            Severity.ERROR,
            "Operation cancelled",
            f"{operation or 'operation'} cancelled before completion (timeout)",
            kind=ErrorKind.TRANSIENT,
            retry_hint="re-run the operation",
        )

    kind = classify(exc)
    summary = _SUMMARIES[kind]
    if operation:
        summary = f"{summary} during {operation}"

    field_path = None
    request_id = None
    retry_hint = None
    detail = str(exc) or type(exc).__name__

    if isinstance(exc, ApiError):
        request_id = exc.request_id
        if kind is ErrorKind.INVALID_INPUT:
            field_path = extract_field_path(exc.message, known_fields) if known_fields else None
        if exc.history:
            detail = f"{detail}\nretry history:\n" + "\n".join(
                f"  {entry}" for entry in exc.history
            )
    elif kind is ErrorKind.UNKNOWN:
        detail = f"{type(exc).__name__}: {detail}"

    if kind.retryable:
        retry_hint = "retry budget exhausted; the operation may succeed if re-run"
    elif kind is ErrorKind.CONFLICT:
        retry_hint = "wait for the remote object to settle and re-run"

    return Diagnostic(
        Severity.ERROR,
        summary,
        detail,
        field_path=field_path,
        retry_hint=retry_hint,
        kind=kind,
        request_id=request_id,
    )


def decode_error_body(payload: Any) -> tuple[str | None, str | None, str | None]:
    """Extract (code, message, request_id) from the known error envelopes."""
    if not isinstance(payload, dict):
        return None, None, None

    inner = payload.get("error")
    if isinstance(inner, dict):
        return (
            _str_or_none(inner.get("code")),
            _str_or_none(inner.get("message")),
            _str_or_none(inner.get("request_id") or inner.get("request-id")),
        )

    if "error_code" in payload or "error_msg" in payload:
        return (
            _str_or_none(payload.get("error_code")),
            _str_or_none(payload.get("error_msg")),
            _str_or_none(payload.get("request_id")),
        )

    if "code" in payload and "message" in payload:
        return (
            _str_or_none(payload.get("code")),
            _str_or_none(payload.get("message")),
            _str_or_none(payload.get("request_id")),
        )

    # Nova-style {"itemNotFound": {"code": 404, "message": "..."}}
    if len(payload) == 1:
        key, value = next(iter(payload.items()))
        if isinstance(value, dict) and "message" in value:
            return key, _str_or_none(value.get("message")), None

    return None, None, None


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
