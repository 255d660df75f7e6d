"""Reusable field validators.

Each validator factory returns a callable taking the coerced value and
returning a (possibly empty) list of diagnostics. The engine anchors the
diagnostics at the field path.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterable

import yaml

from otcprovider.diagnostics.models import Diagnostic, error, warning

Validator = Callable[[Any], list[Diagnostic]]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def string_len_between(low: int, high: int) -> Validator:
    def check(value: Any) -> list[Diagnostic]:
        if not low <= len(value) <= high:
            return [error("Invalid length", f"expected length in [{low}, {high}], got {len(value)}")]
        return []

    return check


def string_in_slice(valid: Iterable[str], ignore_case: bool = False) -> Validator:
    options = tuple(valid)

    def check(value: Any) -> list[Diagnostic]:
        candidates = [o.lower() for o in options] if ignore_case else options
        probe = value.lower() if ignore_case else value
        if probe not in candidates:
            return [error("Invalid value", f"expected one of {list(options)}, got {value!r}")]
        return []

    return check


def int_between(low: int, high: int) -> Validator:
    def check(value: Any) -> list[Diagnostic]:
        if not low <= value <= high:
            return [error("Value out of range", f"expected {low} <= value <= {high}, got {value}")]
        return []

    return check


def int_at_least(low: int) -> Validator:
    def check(value: Any) -> list[Diagnostic]:
        if value < low:
            return [error("Value out of range", f"expected value >= {low}, got {value}")]
        return []

    return check


def string_match(pattern: str, message: str = "") -> Validator:
    compiled = re.compile(pattern)

    def check(value: Any) -> list[Diagnostic]:
        if not compiled.match(value):
            return [error("Invalid format", message or f"value {value!r} does not match {pattern}")]
        return []

    return check


def validate_name(max_len: int = 64) -> Validator:
    """Cloud resource names: letters, digits, underscores and hyphens."""
    return string_match(
        rf"^[\w\-]{{1,{max_len}}}$",
        f"only letters, digits, underscores and hyphens are allowed, up to {max_len} characters",
    )


def validate_email(value: Any) -> list[Diagnostic]:
    if value and not _EMAIL_RE.match(value):
        return [error("Invalid email address", f"{value!r} is not a valid email address")]
    return []


def validate_json_string(value: Any) -> list[Diagnostic]:
    if not value:
        return []
    try:
        json.loads(value)
    except ValueError as e:
        return [error("Invalid JSON", str(e))]
    return []


def validate_stack_template(value: Any) -> list[Diagnostic]:
    """Accept JSON or YAML templates; warn when the version header is missing."""
    if not value:
        return []
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as e:
        return [error("Invalid template", f"template is neither valid JSON nor YAML: {e}")]
    if not isinstance(parsed, dict):
        return [error("Invalid template", "template must be a mapping")]
    if "heat_template_version" not in parsed:
        return [warning("Template has no version", "heat_template_version is not set")]
    return []
