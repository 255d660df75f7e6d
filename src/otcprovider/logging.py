import logging
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping

import structlog

REDACTED = "***"

SENSITIVE_KEYS = frozenset(
    {"password", "token", "auth_token", "secret", "access_key", "secret_key", "x-auth-token"}
)

_extra_sensitive: set[str] = set()


def register_sensitive_keys(*keys: str) -> None:
    """Mark additional event keys whose values must never be rendered."""

    _extra_sensitive.update(k.lower() for k in keys)


def redact_sensitive(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor replacing sensitive values with a placeholder."""

    for key in list(event_dict):
        lowered = key.lower()
        if lowered in SENSITIVE_KEYS or lowered in _extra_sensitive:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(level: int | str = logging.INFO, json_output: bool = True) -> None:
    """Configure structlog/standard logging bridge."""

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


@contextmanager
def bind_context(**kwargs: Any) -> Iterator[None]:
    """Bind contextvars for every log emitted inside the block; ``None`` values are skipped."""

    with structlog.contextvars.bound_contextvars(**{k: v for k, v in kwargs.items() if v is not None}):
        yield
