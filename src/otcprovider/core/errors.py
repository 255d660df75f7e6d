"""
Process-level error handling for the OTC provider.

Handler failures never escape the engine; they become diagnostics.
The exceptions here cover the cases that are not per-resource outcomes:
malformed schemas at registry build time, unknown resource types,
bad configuration and unparseable import identifiers.

Exit Codes:
- 0: Success
- 1: Warning (operation succeeded with warnings)
- 10: Configuration error
- 11: Provider error (remote API failure)
- 12: Validation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class OtcProviderError(Exception):
    """Base exception for provider errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(OtcProviderError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class SchemaError(ConfigurationError):
    """Raised when a resource schema is malformed at registry build time."""


class UnknownResourceTypeError(ConfigurationError):
    """Raised when a resource type name is not registered."""


class ProviderError(OtcProviderError):
    """Raised when a handler result breaks the engine contract."""

    exit_code = ExitCode.PROVIDER_ERROR


class ValidationError(OtcProviderError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class ImportIdError(ValidationError):
    """Raised when an import identifier cannot be parsed."""


class OperationCancelled(OtcProviderError):
    """Raised when the host cancels an in-flight operation."""


F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Exit codes:
        - OtcProviderError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130
        - Other exceptions: Returns 127
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except OtcProviderError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                print(format_error_message(e), file=sys.stderr)
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: OtcProviderError) -> str:
    """Render an error and its details for terminal output."""
    lines = [f"Error: {error.message}"]
    for key, value in error.details.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)
