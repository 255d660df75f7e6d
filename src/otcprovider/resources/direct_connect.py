"""Direct Connect circuit (DCaaS v2)."""

from __future__ import annotations

from typing import Any

from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.resources.common import changed_payload, compact, optional, status_probe
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.timeouts import Timeouts
from otcprovider.schema.validators import int_at_least, string_len_between

TYPE_NAME = "opentelekomcloud_direct_connect_v2"

BASE = "/dcaas/direct-connects"

DELETED = "DELETED"

# Fields sent on create, mapped to the remote attribute names
CREATE_FIELDS = {
    "bandwidth": "bandwidth",
    "port_type": "port_type",
    "location": "location",
    "name": "name",
    "description": "description",
    "peer_location": "peer_location",
    "device_id": "device_id",
    "interface_name": "interface_name",
    "redundant_id": "redundant_id",
    "provider_name": "provider",
    "provider_status": "provider_status",
    "type": "type",
    "hosting_id": "hosting_id",
    "charge_mode": "charge_mode",
    "order_id": "order_id",
    "product_id": "product_id",
    "admin_state_up": "admin_state_up",
    "vlan": "vlan",
}

UPDATE_FIELDS = {
    "name": "name",
    "description": "description",
    "bandwidth": "bandwidth",
    "provider_status": "provider_status",
}

COMPUTED_FIELDS = (
    "status",
    "tenant_id",
    "apply_time",
    "create_time",
    "delete_time",
    "spec_code",
    "applicant",
    "email",
    "region_id",
    "service_key",
    "cable_label",
    "peer_port_type",
    "peer_provider",
    "reason",
    "vgw_type",
    "lag_id",
)

SCHEMA = {
    "id": f.string(computed=True),
    "bandwidth": f.integer(optional=True, computed=True, validators=(int_at_least(1),)),
    "port_type": f.string(optional=True, computed=True, force_new=True),
    "location": f.string(optional=True, computed=True, force_new=True),
    "name": f.string(optional=True, computed=True, validators=(string_len_between(0, 64),)),
    "description": f.string(optional=True, computed=True),
    "peer_location": f.string(optional=True, computed=True, force_new=True),
    "device_id": f.string(optional=True, computed=True, force_new=True),
    "interface_name": f.string(optional=True, computed=True, force_new=True),
    "redundant_id": f.string(optional=True, computed=True, force_new=True),
    "provider_name": f.string(required=True, force_new=True),
    "provider_status": f.string(optional=True, computed=True),
    "type": f.string(optional=True, computed=True, force_new=True),
    "hosting_id": f.string(optional=True, computed=True, force_new=True),
    "charge_mode": f.string(optional=True, computed=True, force_new=True),
    "order_id": f.string(optional=True, computed=True, force_new=True),
    "product_id": f.string(optional=True, computed=True, force_new=True),
    "admin_state_up": f.boolean(optional=True, computed=True, force_new=True),
    "vlan": f.integer(optional=True, computed=True, force_new=True),
    "period_type": f.integer(computed=True),
    "period_num": f.integer(computed=True),
    **{name: f.string(computed=True) for name in COMPUTED_FIELDS},
}


def _client(ctx: OperationContext):
    return ctx.client("dcaas", "v2.0")


def create(ctx: OperationContext) -> None:
    payload = compact({remote: optional(ctx.desired, name) for name, remote in CREATE_FIELDS.items()})
    body = _client(ctx).post(BASE, json={"direct_connect": payload})
    ctx.set_id(body["direct_connect"]["id"])


def read(ctx: OperationContext) -> dict[str, Any]:
    dc = _client(ctx).get(f"{BASE}/{ctx.id}")["direct_connect"]
    result = {name: dc.get(remote) for name, remote in CREATE_FIELDS.items()}
    result.update({name: dc.get(name) for name in COMPUTED_FIELDS})
    result["period_type"] = dc.get("period_type")
    result["period_num"] = dc.get("period_num")
    result["id"] = dc["id"]
    return result


def update(ctx: OperationContext) -> None:
    payload = changed_payload(ctx, UPDATE_FIELDS)
    if payload:
        _client(ctx).put(f"{BASE}/{ctx.id}", json={"direct_connect": payload})


def delete(ctx: OperationContext) -> None:
    client = _client(ctx)
    client.delete(f"{BASE}/{ctx.id}")

    def fetch() -> dict[str, Any]:
        return client.get(f"{BASE}/{ctx.id}")["direct_connect"]

    ctx.wait_until(
        status_probe(fetch, gone_state=DELETED),
        pending={"ACTIVE", "DOWN", "BUILD", "PENDING_DELETE", "PENDING_PAY", "ERROR"},
        target={DELETED},
        initial_delay=5.0,
        min_interval=3.0,
    )


DESCRIPTOR = ResourceTypeDescriptor(
    name=TYPE_NAME,
    schema=SCHEMA,
    lifecycle=LifecycleHandlers(
        create=create,
        read=read,
        update=update,
        delete=delete,
        importer=SimpleIdImporter(),
    ),
    default_timeouts=Timeouts.of(create="10m", update="10m", delete="10m"),
    description="Direct Connect circuit",
)
