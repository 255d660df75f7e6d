"""Precise protection rule of a dedicated WAF policy. Every argument forces replacement."""

from __future__ import annotations

from typing import Any

from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import PathIndexedImporter
from otcprovider.resources.common import compact, optional
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.timeouts import Timeouts
from otcprovider.schema.validators import string_in_slice

TYPE_NAME = "opentelekomcloud_waf_dedicated_precise_protection_rule_v1"

CONDITION_CATEGORIES = [
    "url",
    "user-agent",
    "referer",
    "ip",
    "method",
    "request_line",
    "request",
    "params",
    "cookie",
    "header",
]

CONDITION = {
    "category": f.string(optional=True, force_new=True, validators=(string_in_slice(CONDITION_CATEGORIES),)),
    "logic_operation": f.string(optional=True, force_new=True),
    "contents": f.list_of(f.string(), optional=True, force_new=True),
    "value_list_id": f.string(optional=True, force_new=True),
    "index": f.string(optional=True, force_new=True),
}

ACTION = {
    "category": f.string(required=True, force_new=True, validators=(string_in_slice(["block", "pass", "log"]),)),
    "followed_action_id": f.string(optional=True, force_new=True),
}

SCHEMA = {
    "policy_id": f.string(required=True, force_new=True),
    "time": f.boolean(required=True, force_new=True),
    "start": f.integer(optional=True, force_new=True),
    "terminal": f.integer(optional=True, force_new=True),
    "description": f.string(optional=True, force_new=True),
    "conditions": f.block(CONDITION, optional=True, force_new=True),
    "action": f.block(ACTION, required=True, force_new=True, max_items=1),
    "priority": f.integer(required=True, force_new=True),
    "status": f.integer(computed=True),
    "created_at": f.integer(computed=True),
}


def _client(ctx: OperationContext):
    return ctx.client("waf", "v1")


def _path(ctx: OperationContext, policy_id: str | None = None) -> str:
    return f"/waf/policy/{policy_id or ctx.desired.get('policy_id')}/custom"


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    action = desired.get("action")[0]
    conditions = [
        compact(
            {
                "category": c.get("category") or None,
                "index": c.get("index") or None,
                "logic_operation": c.get("logic_operation") or None,
                "value_list_id": c.get("value_list_id") or None,
                "contents": list(c.get("contents") or []) or None,
            }
        )
        for c in desired.get("conditions") or []
    ]
    payload = compact(
        {
            "time": desired.get("time"),
            "start": optional(desired, "start"),
            "terminal": optional(desired, "terminal"),
            "description": optional(desired, "description"),
            "conditions": conditions,
            "action": compact(
                {"category": action["category"], "followed_action_id": action.get("followed_action_id") or None}
            ),
            "priority": desired.get("priority"),
        }
    )
    body = _client(ctx).post(_path(ctx), json=payload)
    ctx.set_id(body["id"])


def read(ctx: OperationContext) -> dict[str, Any]:
    rule = _client(ctx).get(f"{_path(ctx)}/{ctx.id}")
    action = rule.get("action") or {}
    return {
        "id": rule["id"],
        "policy_id": rule.get("policyid"),
        "description": rule.get("description"),
        "priority": rule.get("priority"),
        "start": rule.get("start"),
        "terminal": rule.get("terminal"),
        "status": rule.get("status"),
        "created_at": rule.get("timestamp"),
        "conditions": [
            {
                "category": c.get("category"),
                "index": c.get("index"),
                "contents": c.get("contents") or [],
                "logic_operation": c.get("logic_operation"),
                "value_list_id": c.get("value_list_id"),
            }
            for c in rule.get("conditions") or []
        ],
        "action": [
            {"category": action.get("category"), "followed_action_id": action.get("followed_action_id")}
        ],
    }


def delete(ctx: OperationContext) -> None:
    _client(ctx).delete(f"{_path(ctx)}/{ctx.id}")


IMPORTER = PathIndexedImporter(("policy_id", "id"))

DESCRIPTOR = ResourceTypeDescriptor(
    name=TYPE_NAME,
    schema=SCHEMA,
    lifecycle=LifecycleHandlers(create=create, read=read, delete=delete, importer=IMPORTER),
    default_timeouts=Timeouts.of(create="10m", delete="10m"),
    description="Dedicated WAF precise protection rule",
)
