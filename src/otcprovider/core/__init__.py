"""Core modules for the provider - exception hierarchy and exit codes."""

from otcprovider.core.errors import (
    ConfigurationError,
    ExitCode,
    ImportIdError,
    OperationCancelled,
    OtcProviderError,
    ProviderError,
    SchemaError,
    UnknownResourceTypeError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ConfigurationError",
    "ExitCode",
    "ImportIdError",
    "OperationCancelled",
    "OtcProviderError",
    "ProviderError",
    "SchemaError",
    "UnknownResourceTypeError",
    "ValidationError",
    "format_error_message",
    "main_with_error_handling",
]
