"""Diagnostics and the remote error taxonomy."""

from otcprovider.diagnostics.classify import (
    ApiError,
    HandlerError,
    classify,
    extract_field_path,
    is_gone,
    to_diagnostic,
)
from otcprovider.diagnostics.models import (
    Diagnostic,
    ErrorKind,
    Severity,
    error,
    has_errors,
    warning,
)

__all__ = [
    "ApiError",
    "Diagnostic",
    "ErrorKind",
    "HandlerError",
    "Severity",
    "classify",
    "error",
    "extract_field_path",
    "has_errors",
    "is_gone",
    "to_diagnostic",
    "warning",
]
