"""CBR backup / replication policy."""

from __future__ import annotations

from typing import Any

from otcprovider.diagnostics.models import error
from otcprovider.engine.coercion import ResourceInstance
from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.resources.common import compact
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.validators import int_between, string_in_slice, validate_name

TYPE_NAME = "opentelekomcloud_cbr_policy_v3"

DEFAULT_TIMEZONE = "UTC+00:00"

OPERATION_DEFINITION = {
    "day_backups": f.integer(optional=True, computed=True, validators=(int_between(0, 100),)),
    "max_backups": f.integer(optional=True, computed=True, validators=(int_between(-1, 99999),)),
    "month_backups": f.integer(optional=True, computed=True, validators=(int_between(0, 100),)),
    "retention_duration_days": f.integer(optional=True, computed=True, validators=(int_between(-1, 99999),)),
    "timezone": f.string(required=True),
    "week_backups": f.integer(optional=True, computed=True, validators=(int_between(0, 100),)),
    "year_backups": f.integer(optional=True, computed=True, validators=(int_between(0, 100),)),
}

SCHEMA = {
    "region": f.string(computed=True),
    "enabled": f.boolean(optional=True, default=True),
    "name": f.string(required=True, validators=(validate_name(),)),
    "operation_definition": f.block(OPERATION_DEFINITION, optional=True, computed=True, max_items=1),
    "operation_type": f.string(
        required=True, force_new=True, validators=(string_in_slice(["backup", "replication"]),)
    ),
    "trigger_pattern": f.list_of(f.string(), required=True, min_items=1),
    "destination_region": f.string(optional=True),
    "destination_project_id": f.string(optional=True),
}


def _client(ctx: OperationContext):
    return ctx.client("cbr", "v3")


def _operation_definition(instance: ResourceInstance) -> dict[str, Any]:
    definitions = instance.get("operation_definition") or []
    if not definitions:
        return {"timezone": DEFAULT_TIMEZONE}
    od = definitions[0]
    body = compact(
        {
            "day_backups": od.get("day_backups"),
            "week_backups": od.get("week_backups"),
            "month_backups": od.get("month_backups"),
            "year_backups": od.get("year_backups"),
            "max_backups": od.get("max_backups"),
            "retention_duration_days": od.get("retention_duration_days"),
            "timezone": od.get("timezone"),
        }
    )
    if instance.get("destination_project_id"):
        body["destination_project_id"] = instance.get("destination_project_id")
        body["destination_region"] = instance.get("destination_region")
    return body


def _trigger(instance: ResourceInstance) -> dict[str, Any]:
    return {"properties": {"pattern": list(instance.get("trigger_pattern"))}}


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    policy = {
        "name": desired.get("name"),
        "enabled": desired.get("enabled"),
        "operation_type": desired.get("operation_type"),
        "operation_definition": _operation_definition(desired),
        "trigger": _trigger(desired),
    }
    body = _client(ctx).post("/policies", json={"policy": policy})
    ctx.set_id(body["policy"]["id"])


def read(ctx: OperationContext) -> dict[str, Any]:
    policy = _client(ctx).get(f"/policies/{ctx.id}")["policy"]
    od = policy.get("operation_definition") or {}
    return {
        "id": policy["id"],
        "enabled": policy.get("enabled"),
        "name": policy.get("name"),
        "operation_type": policy.get("operation_type"),
        "trigger_pattern": ((policy.get("trigger") or {}).get("properties") or {}).get("pattern"),
        "region": ctx.region,
        "operation_definition": [
            {
                "day_backups": od.get("day_backups"),
                "max_backups": od.get("max_backups"),
                "month_backups": od.get("month_backups"),
                "retention_duration_days": od.get("retention_duration_days"),
                "timezone": od.get("timezone"),
                "week_backups": od.get("week_backups"),
                "year_backups": od.get("year_backups"),
            }
        ],
        "destination_project_id": od.get("destination_project_id"),
        "destination_region": od.get("destination_region"),
    }


def update(ctx: OperationContext) -> None:
    change_set = ctx.change_set
    desired = ctx.desired
    policy: dict[str, Any] = {}
    if change_set.has_change("name"):
        policy["name"] = desired.get("name")
    if change_set.has_change("enabled"):
        policy["enabled"] = desired.get("enabled")
    if change_set.has_change("trigger_pattern"):
        policy["trigger"] = _trigger(desired)
    if any(
        change_set.has_change(name)
        for name in ("operation_definition", "destination_project_id", "destination_region")
    ):
        policy["operation_definition"] = _operation_definition(desired)
    if policy:
        _client(ctx).put(f"/policies/{ctx.id}", json={"policy": policy})


def delete(ctx: OperationContext) -> None:
    _client(ctx).delete(f"/policies/{ctx.id}")


def custom_diff(desired: ResourceInstance, prior, change_set):
    if desired.is_set("destination_project_id") and not desired.is_set("destination_region"):
        return [
            error(
                "Missing required argument",
                "destination_project_id requires destination_region",
                field_path="destination_region",
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
    description="CBR backup policy",
)
