"""
RTS orchestration stack.

Stacks provision asynchronously. Create, update and delete block on the
stack status; failed and rollback states end the wait with the remote
status reason attached.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
import yaml

from otcprovider.diagnostics.classify import ApiError, HandlerError, is_gone
from otcprovider.diagnostics.models import ErrorKind, error
from otcprovider.engine.coercion import ResourceInstance
from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.timeouts import Timeouts
from otcprovider.schema.validators import validate_json_string, validate_name, validate_stack_template

logger = structlog.get_logger()

TYPE_NAME = "opentelekomcloud_rts_stack_v1"

CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
CREATE_COMPLETE = "CREATE_COMPLETE"
CREATE_FAILED = "CREATE_FAILED"
UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
UPDATE_COMPLETE = "UPDATE_COMPLETE"
UPDATE_FAILED = "UPDATE_FAILED"
DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
DELETE_COMPLETE = "DELETE_COMPLETE"
DELETE_FAILED = "DELETE_FAILED"
ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
ROLLBACK_FAILED = "ROLLBACK_FAILED"

FAILED_STATES = frozenset(
    {CREATE_FAILED, UPDATE_FAILED, DELETE_FAILED, ROLLBACK_IN_PROGRESS, ROLLBACK_COMPLETE, ROLLBACK_FAILED}
)

POLL_DELAY = 5.0
POLL_INTERVAL = 3.0


def normalize_template(value: str) -> str:
    """Canonical JSON for a JSON or YAML template; invalid input is kept as-is."""
    if not value:
        return value
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if not isinstance(parsed, dict):
        return value
    return json.dumps(parsed, sort_keys=True, default=str)


def normalize_json(value: str) -> str:
    if not value:
        return value
    try:
        return json.dumps(json.loads(value), sort_keys=True)
    except ValueError:
        return value


SCHEMA = {
    "region": f.string(optional=True, computed=True, force_new=True),
    "name": f.string(required=True, force_new=True, validators=(validate_name(),)),
    "template_body": f.string(
        optional=True, computed=True, validators=(validate_stack_template,), normalize=normalize_template
    ),
    "template_url": f.string(optional=True),
    "files": f.map_of(f.string(), optional=True),
    "environment": f.string(optional=True, validators=(validate_json_string,), normalize=normalize_json),
    "parameters": f.map_of(f.string(), optional=True, computed=True),
    "timeout_mins": f.integer(optional=True, computed=True),
    "disable_rollback": f.boolean(optional=True, computed=True),
    "status": f.string(computed=True),
    "status_reason": f.string(computed=True),
    "outputs": f.map_of(f.string(), computed=True),
    "capabilities": f.set_of(f.string(), computed=True),
    "notification_topics": f.set_of(f.string(), computed=True),
    "creation_time": f.string(computed=True),
    "updated_time": f.string(computed=True),
}


def _client(ctx: OperationContext):
    return ctx.client("rts", "v1")


def _stack_ref(ctx: OperationContext) -> str:
    name = ctx.desired.get("name")
    return f"{name}/{ctx.id}" if name else ctx.id


def _get_stack(ctx: OperationContext, ref: str | None = None) -> dict[str, Any]:
    return _client(ctx).get(f"/stacks/{ref or _stack_ref(ctx)}")["stack"]


def _template_payload(instance: ResourceInstance) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if instance.get("template_body"):
        payload["template"] = instance.get("template_body")
    if instance.get("template_url"):
        payload["template_url"] = instance.get("template_url")
    if instance.get("files"):
        payload["files"] = dict(instance.get("files"))
    return payload


def _status_probe(ctx: OperationContext, *, gone_state: str | None = None):
    def probe() -> tuple[Any, str]:
        try:
            stack = _get_stack(ctx)
        except ApiError as exc:
            if gone_state is not None and is_gone(exc):
                return None, gone_state
            raise
        status = stack.get("stack_status", "")
        if status in FAILED_STATES:
            raise HandlerError(
                f"Stack {stack.get('stack_name', ctx.id)} reached {status}",
                f"{status}: {stack.get('stack_status_reason', '')}",
                kind=ErrorKind.UNKNOWN,
            )
        return stack, status

    return probe


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    stack = {
        "stack_name": desired.get("name"),
        **_template_payload(desired),
        "disable_rollback": desired.get("disable_rollback"),
        "environment": desired.get("environment") or None,
        "parameters": dict(desired.get("parameters") or {}),
        "timeout_mins": desired.get("timeout_mins") or None,
    }
    body = _client(ctx).post("/stacks", json={k: v for k, v in stack.items() if v is not None})
    ctx.set_id(body["stack"]["id"])
    ctx.wait_until(
        _status_probe(ctx),
        pending={CREATE_IN_PROGRESS},
        target={CREATE_COMPLETE},
        initial_delay=POLL_DELAY,
        min_interval=POLL_INTERVAL,
    )


def _flatten_parameters(remote: dict[str, Any], configured: dict[str, Any]) -> dict[str, str]:
    """Drop the OS:: pseudo parameters unless they were configured."""
    return {
        k: str(v) for k, v in (remote or {}).items() if not k.startswith("OS::") or k in configured
    }


def read(ctx: OperationContext) -> dict[str, Any] | None:
    stack = _get_stack(ctx)
    # lookup by name reports deleted stacks instead of 404
    if stack.get("stack_status") == DELETE_COMPLETE:
        return None
    # import is done by name, so the id may change here
    ctx.set_id(stack["id"])
    ref = f"{stack['stack_name']}/{stack['id']}"
    template = _client(ctx).get(f"/stacks/{ref}/template")
    return {
        "id": stack["id"],
        "name": stack.get("stack_name"),
        "region": ctx.region,
        "parameters": _flatten_parameters(stack.get("parameters"), ctx.desired.get("parameters") or {}),
        "template_body": json.dumps(template, sort_keys=True),
        "disable_rollback": stack.get("disable_rollback"),
        "status": stack.get("stack_status"),
        "status_reason": stack.get("stack_status_reason"),
        "outputs": {o["output_key"]: str(o.get("output_value", "")) for o in stack.get("outputs") or []},
        "capabilities": stack.get("capabilities") or [],
        "notification_topics": stack.get("notification_topics") or [],
        "timeout_mins": stack.get("timeout_mins"),
        "creation_time": stack.get("creation_time"),
        "updated_time": stack.get("updated_time"),
    }


def update(ctx: OperationContext) -> None:
    desired = ctx.desired
    stack: dict[str, Any] = {
        **_template_payload(desired),
        "parameters": dict(desired.get("parameters") or {}),
    }
    if desired.get("environment"):
        stack["environment"] = desired.get("environment")
    if ctx.change_set.has_change("timeout_mins"):
        stack["timeout_mins"] = desired.get("timeout_mins")
    if ctx.change_set.has_change("disable_rollback"):
        stack["disable_rollback"] = desired.get("disable_rollback")
    _client(ctx).put(f"/stacks/{_stack_ref(ctx)}", json=stack)
    ctx.wait_until(
        _status_probe(ctx),
        pending={UPDATE_IN_PROGRESS, CREATE_COMPLETE},
        target={UPDATE_COMPLETE},
        initial_delay=POLL_DELAY,
        min_interval=POLL_INTERVAL,
    )


def delete(ctx: OperationContext) -> None:
    _client(ctx).delete(f"/stacks/{_stack_ref(ctx)}")
    ctx.wait_until(
        _status_probe(ctx, gone_state=DELETE_COMPLETE),
        pending={DELETE_IN_PROGRESS, CREATE_COMPLETE, UPDATE_COMPLETE},
        target={DELETE_COMPLETE},
        initial_delay=POLL_DELAY,
        min_interval=POLL_INTERVAL,
    )


def custom_diff(desired: ResourceInstance, prior, change_set):
    if not desired.get("template_body") and not desired.get("template_url"):
        return [
            error(
                "Missing template",
                "both template_body and template_url are empty, must specify one of them",
                field_path="template_body",
            )
        ]
    return []


DESCRIPTOR = ResourceTypeDescriptor(
    name=TYPE_NAME,
    schema=SCHEMA,
    lifecycle=LifecycleHandlers(
        create=create,
        read=read,
        update=update,
        delete=delete,
        custom_diff=custom_diff,
        importer=SimpleIdImporter(),
    ),
    default_timeouts=Timeouts.of(create="30m", update="30m", delete="30m"),
    description="RTS orchestration stack",
)
