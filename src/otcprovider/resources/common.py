"""Helpers shared by the resource modules."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from otcprovider.diagnostics.classify import ApiError, is_gone
from otcprovider.engine.context import OperationContext
from otcprovider.engine.coercion import ResourceInstance


def compact(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values from a request payload."""
    return {k: v for k, v in payload.items() if v is not None}


def optional(instance: ResourceInstance, name: str) -> Any:
    """Value of ``name`` only when set, else ``None`` (omitted from payloads)."""
    return instance.get_set(name)


def changed_payload(ctx: OperationContext, mapping: Mapping[str, str]) -> dict[str, Any]:
    """Minimal patch body: ``{remote_key: value}`` for changed fields only.

    ``mapping`` maps schema field names to remote keys.
    """
    change_set = ctx.change_set
    body: dict[str, Any] = {}
    for field_name, remote_key in mapping.items():
        if change_set is None or change_set.has_change(field_name):
            body[remote_key] = ctx.desired.get(field_name)
    return body


def status_probe(
    fetch: Callable[[], Mapping[str, Any]],
    status_key: str = "status",
    *,
    gone_state: str | None = None,
) -> Callable[[], tuple[Any, str]]:
    """Adapt a GET into a waiter probe; 404 maps to ``gone_state`` if given."""

    def probe() -> tuple[Any, str]:
        try:
            body = fetch()
        except ApiError as exc:
            if gone_state is not None and is_gone(exc):
                return None, gone_state
            raise
        return body, str(body.get(status_key, ""))

    return probe


def remote_tags(items: Any) -> dict[str, str]:
    """``[{"key": k, "value": v}, ...]`` into a plain mapping."""
    return {str(t["key"]): str(t.get("value", "")) for t in items or [] if "key" in t}


def case_insensitive(old: Any, new: Any) -> bool:
    return str(old).lower() == str(new).lower()
