"""
CBR backup vault.

Attached resources, the bound backup policy and tags are reconciled as
sub-resources after the vault itself exists.
"""

from __future__ import annotations

from typing import Any

import structlog

from otcprovider.diagnostics.models import error
from otcprovider.engine.coercion import ResourceInstance
from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.engine.reconcilers import AttributeReconciler, BindingReconciler, TagReconciler
from otcprovider.resources.common import compact, optional, remote_tags
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.validators import int_between, string_in_slice, string_len_between

logger = structlog.get_logger()

TYPE_NAME = "opentelekomcloud_cbr_vault_v3"

BILLING = {
    "cloud_type": f.string(
        optional=True, force_new=True, default="public", validators=(string_in_slice(["public", "hybrid"]),)
    ),
    "consistent_level": f.string(optional=True, force_new=True, default="crash_consistent"),
    "object_type": f.string(required=True, force_new=True),
    "protect_type": f.string(
        required=True, force_new=True, validators=(string_in_slice(["backup", "replication"]),)
    ),
    "size": f.integer(required=True, validators=(int_between(1, 10485760),)),
    "charging_mode": f.string(
        optional=True, force_new=True, default="post_paid", validators=(string_in_slice(["post_paid", "pre_paid"]),)
    ),
    "period_type": f.string(
        optional=True, force_new=True, default="month", validators=(string_in_slice(["year", "month"]),)
    ),
    "period_num": f.integer(optional=True, force_new=True),
    "is_auto_renew": f.boolean(optional=True, force_new=True),
    "is_auto_pay": f.boolean(optional=True, force_new=True),
    "console_url": f.string(optional=True, force_new=True, validators=(string_len_between(1, 255),)),
    "product_id": f.string(computed=True),
    "order_id": f.string(computed=True),
    "allocated": f.integer(computed=True),
    "spec_code": f.string(computed=True),
    "used": f.integer(computed=True),
    "storage_unit": f.string(computed=True),
    "frozen_scene": f.string(computed=True),
    "status": f.string(computed=True),
}

RESOURCE = {
    "id": f.string(required=True),
    "name": f.string(optional=True, computed=True, validators=(string_len_between(0, 255),)),
    "type": f.string(
        required=True, validators=(string_in_slice(["OS::Nova::Server", "OS::Cinder::Volume"]),)
    ),
    "protect_status": f.string(computed=True),
    "size": f.integer(computed=True),
    "backup_size": f.integer(computed=True),
    "backup_count": f.integer(computed=True),
}

SCHEMA = {
    "name": f.string(required=True, validators=(string_len_between(1, 64),)),
    "description": f.string(optional=True, force_new=True, validators=(string_len_between(0, 64),)),
    "resource": f.block(RESOURCE, optional=True, computed=True),
    "billing": f.block(BILLING, required=True, max_items=1),
    "backup_policy_id": f.string(optional=True),
    "tags": f.tags_field(),
    "enterprise_project_id": f.string(optional=True, computed=True),
    "auto_bind": f.boolean(optional=True, computed=True),
    "bind_rules": f.block({"key": f.string(required=True), "value": f.string(required=True)}, optional=True),
    "auto_expand": f.boolean(optional=True, computed=True),
    "project_id": f.string(computed=True),
    "provider_id": f.string(computed=True),
    "user_id": f.string(computed=True),
    "created_at": f.string(computed=True),
}


def _client(ctx: OperationContext):
    return ctx.client("cbr", "v3")


def _bind_rules(instance: ResourceInstance) -> dict[str, Any] | None:
    rules = instance.get("bind_rules") or []
    if not rules:
        return None
    return {"tags": [{"key": r["key"], "value": r["value"]} for r in rules]}


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    billing = desired.get("billing")[0]
    billing_payload = compact(
        {
            "cloud_type": billing["cloud_type"],
            "consistent_level": billing["consistent_level"],
            "object_type": billing["object_type"],
            "protect_type": billing["protect_type"],
            "size": billing["size"],
            "charging_mode": billing["charging_mode"],
            "period_type": billing["period_type"] if billing["charging_mode"] == "pre_paid" else None,
            "period_num": billing.get("period_num") or None,
            "is_auto_renew": billing.get("is_auto_renew") or None,
            "is_auto_pay": billing.get("is_auto_pay") or None,
            "console_url": billing.get("console_url") or None,
        }
    )
    vault = compact(
        {
            "name": desired.get("name"),
            "description": optional(desired, "description"),
            "billing": billing_payload,
            # attached resources are reconciled separately
            "resources": [],
            "enterprise_project_id": optional(desired, "enterprise_project_id"),
            "auto_bind": optional(desired, "auto_bind"),
            "auto_expand": optional(desired, "auto_expand"),
            "bind_rules": _bind_rules(desired),
        }
    )
    body = _client(ctx).post("/vaults", json={"vault": vault})
    ctx.set_id(body["vault"]["id"])


def read(ctx: OperationContext) -> dict[str, Any]:
    vault = _client(ctx).get(f"/vaults/{ctx.id}")["vault"]
    billing = vault.get("billing") or {}
    configured = (ctx.desired.get("billing") or [{}])[0]
    return {
        "id": vault["id"],
        "name": vault.get("name"),
        "description": vault.get("description"),
        "backup_policy_id": _policy_id(ctx),
        "project_id": vault.get("project_id"),
        "provider_id": vault.get("provider_id"),
        "user_id": vault.get("user_id"),
        "created_at": vault.get("created_at"),
        "enterprise_project_id": vault.get("enterprise_project_id"),
        "auto_bind": vault.get("auto_bind"),
        "auto_expand": vault.get("auto_expand"),
        "bind_rules": [
            {"key": t["key"], "value": t["value"]}
            for t in (vault.get("bind_rules") or {}).get("tags") or []
        ],
        "tags": remote_tags(vault.get("tags")),
        "resource": [
            {
                "id": r["id"],
                "name": r.get("name"),
                "type": r.get("type"),
                "protect_status": r.get("protect_status"),
                "size": r.get("size"),
                "backup_size": r.get("backup_size"),
                "backup_count": r.get("backup_count"),
            }
            for r in vault.get("resources") or []
        ],
        "billing": [
            {
                # write-only billing inputs keep their configured values
                **{k: configured.get(k) for k in ("period_type", "period_num", "is_auto_renew", "is_auto_pay", "console_url") if k in configured},
                "allocated": billing.get("allocated"),
                "charging_mode": billing.get("charging_mode"),
                "cloud_type": billing.get("cloud_type"),
                "consistent_level": billing.get("consistent_level"),
                "object_type": billing.get("object_type"),
                "order_id": billing.get("order_id"),
                "product_id": billing.get("product_id"),
                "protect_type": billing.get("protect_type"),
                "size": billing.get("size"),
                "spec_code": billing.get("spec_code"),
                "status": billing.get("status"),
                "storage_unit": billing.get("storage_unit"),
                "used": billing.get("used"),
                "frozen_scene": billing.get("frozen_scene"),
            }
        ],
    }


def _policy_id(ctx: OperationContext) -> str:
    body = _client(ctx).get("/policies", params={"vault_id": ctx.id})
    policies = body.get("policies") or []
    return policies[0]["id"] if policies else ""


def update(ctx: OperationContext) -> None:
    change_set = ctx.change_set
    desired = ctx.desired
    vault: dict[str, Any] = {}
    if change_set.has_change("billing"):
        vault["billing"] = {"size": desired.get("billing")[0]["size"]}
    if change_set.has_change("name"):
        vault["name"] = desired.get("name")
    if change_set.has_change("auto_bind"):
        vault["auto_bind"] = desired.get("auto_bind")
    if change_set.has_change("auto_expand"):
        vault["auto_expand"] = desired.get("auto_expand")
    if change_set.has_change("bind_rules"):
        vault["bind_rules"] = _bind_rules(desired) or {"tags": []}
    if vault:
        _client(ctx).put(f"/vaults/{ctx.id}", json={"vault": vault})


def delete(ctx: OperationContext) -> None:
    _client(ctx).delete(f"/vaults/{ctx.id}")


class VaultResourcesReconciler(AttributeReconciler):
    """Attached servers and volumes, keyed by resource id."""

    name = "resources"
    field = "resource"

    def current(self, ctx: OperationContext, instance: ResourceInstance | None) -> frozenset:
        if instance is None:
            return frozenset()
        return frozenset(r["id"] for r in instance.get("resource") or [])

    def apply(self, ctx: OperationContext, to_add: frozenset, to_remove: frozenset):
        client = _client(ctx)
        if to_add:
            resources = [
                compact({"id": r["id"], "type": r["type"], "name": r.get("name") or None})
                for r in ctx.desired.get("resource")
                if r["id"] in to_add
            ]
            client.post(f"/vaults/{ctx.id}/addresources", json={"resources": resources})
        if to_remove:
            client.post(f"/vaults/{ctx.id}/removeresources", json={"resource_ids": sorted(to_remove)})
        return []


def _associate_policy(ctx: OperationContext, policy_id: str) -> None:
    _client(ctx).post(f"/vaults/{ctx.id}/associatepolicy", json={"policy_id": policy_id})


def _dissociate_policy(ctx: OperationContext, policy_id: str) -> None:
    _client(ctx).post(f"/vaults/{ctx.id}/dissociatepolicy", json={"policy_id": policy_id})


def custom_diff(desired: ResourceInstance, prior, change_set):
    billing = (desired.get("billing") or [{}])[0]
    if billing.get("charging_mode") != "pre_paid":
        return []
    return [
        error(
            "Missing required argument",
            f'argument "{name}" is required if "charging_mode" is set to "pre_paid"',
            field_path=f"billing.0.{name}",
        )
        for name in ("period_type", "period_num")
        if not billing.get(name)
    ]


def lookup_by_name(ctx: OperationContext, name: str) -> list[str]:
    body = _client(ctx).get("/vaults", params={"name": name})
    return [v["id"] for v in body.get("vaults", []) if v.get("name") == name]


DESCRIPTOR = ResourceTypeDescriptor(
    name=TYPE_NAME,
    schema=SCHEMA,
    lifecycle=LifecycleHandlers(
        create=create,
        read=read,
        update=update,
        delete=delete,
        custom_diff=custom_diff,
        importer=SimpleIdImporter(
            lookup_by_name, id_pattern=r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
        ),
    ),
    reconcilers=(
        VaultResourcesReconciler(),
        BindingReconciler(
            "backup_policy", "backup_policy_id", _associate_policy, _dissociate_policy, single_slot=True
        ),
        TagReconciler("cbr", "v3", "/vault/{id}"),
    ),
    description="CBR backup vault",
)
