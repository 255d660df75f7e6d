"""
Dedicated WAF protected domain.

The policy binding and the protection status go through their own
endpoints and are reconciled as sub-resources once the host exists.
A host left without a policy keeps the default one the service assigns.
"""

from __future__ import annotations

from typing import Any

import structlog

from otcprovider.diagnostics.models import error
from otcprovider.engine.coercion import ResourceInstance
from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.engine.reconcilers import BindingReconciler, CallbackReconciler
from otcprovider.resources.common import compact, optional
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.validators import int_between, string_in_slice

logger = structlog.get_logger()

TYPE_NAME = "opentelekomcloud_waf_dedicated_domain_v1"

HOSTS = "/premium-waf/host"

PROTECT_STATUS_ENABLED = 1

PCI_TLS = "TLS v1.2"
PCI_CIPHER = "cipher_2"

SERVER = {
    "client_protocol": f.string(required=True, force_new=True, validators=(string_in_slice(["HTTP", "HTTPS"]),)),
    "server_protocol": f.string(required=True, force_new=True, validators=(string_in_slice(["HTTP", "HTTPS"]),)),
    "address": f.string(required=True, force_new=True),
    "port": f.integer(required=True, force_new=True, validators=(int_between(0, 65535),)),
    "type": f.string(required=True, force_new=True, validators=(string_in_slice(["ipv4", "ipv6"]),)),
    "vpc_id": f.string(required=True, force_new=True),
}

TIMEOUT_CONFIG = {
    "connect_timeout": f.integer(optional=True),
    "send_timeout": f.integer(optional=True),
    "read_timeout": f.integer(optional=True),
}

SCHEMA = {
    "region": f.string(optional=True, computed=True, force_new=True),
    "domain": f.string(required=True, force_new=True),
    "server": f.block(SERVER, required=True, force_new=True, max_items=80),
    "certificate_id": f.string(optional=True),
    "policy_id": f.string(optional=True, computed=True),
    "proxy": f.boolean(optional=True, default=False),
    "keep_policy": f.boolean(optional=True, default=True),
    "protect_status": f.integer(optional=True, computed=True, validators=(int_between(-1, 1),)),
    "tls": f.string(
        optional=True,
        computed=True,
        validators=(string_in_slice(["TLS v1.0", "TLS v1.1", "TLS v1.2", "TLS v1.3"]),),
    ),
    "cipher": f.string(
        optional=True,
        computed=True,
        validators=(string_in_slice(["cipher_1", "cipher_2", "cipher_3", "cipher_4", "cipher_default"]),),
    ),
    "pci_3ds": f.boolean(optional=True, computed=True),
    "pci_dss": f.boolean(optional=True, computed=True),
    "timeout_config": f.block(TIMEOUT_CONFIG, optional=True, computed=True, force_new=True, max_items=1),
    "access_status": f.integer(computed=True),
    "protocol": f.string(computed=True),
    "certificate_name": f.string(computed=True),
    "alarm_page": f.map_of(f.string(), computed=True),
    "compliance_certification": f.map_of(f.boolean(), computed=True),
    "traffic_identifier": f.map_of(f.string(), computed=True),
    "created_at": f.integer(computed=True),
}

# Fields sent through the host update call rather than at creation
SETTINGS_FIELDS = ("tls", "cipher", "pci_3ds", "pci_dss", "timeout_config")


def _client(ctx: OperationContext):
    return ctx.client("waf", "v1")


def _certificate_name(ctx: OperationContext, certificate_id: str) -> str:
    body = _client(ctx).get(f"/premium-waf/certificate/{certificate_id}")
    return body.get("name", "")


def _servers(instance: ResourceInstance) -> list[dict[str, Any]]:
    return [
        {
            "front_protocol": s["client_protocol"],
            "back_protocol": s["server_protocol"],
            "address": s["address"],
            "port": s["port"],
            "type": s["type"],
            "vpc_id": s["vpc_id"],
        }
        for s in instance.get("server") or []
    ]


def _flag(instance: ResourceInstance) -> dict[str, str] | None:
    pci_3ds = bool(instance.get("pci_3ds"))
    pci_dss = bool(instance.get("pci_dss"))
    if not pci_3ds and not pci_dss:
        return None
    return {"pci_3ds": str(pci_3ds).lower(), "pci_dss": str(pci_dss).lower()}


def _timeout_config(instance: ResourceInstance) -> dict[str, int] | None:
    blocks = instance.get_set("timeout_config") or []
    if not blocks:
        return None
    raw = blocks[0]
    return {
        "connect_timeout": raw.get("connect_timeout") or 0,
        "send_timeout": raw.get("send_timeout") or 0,
        "read_timeout": raw.get("read_timeout") or 0,
    }


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    certificate_id = optional(desired, "certificate_id")
    payload = compact(
        {
            "hostname": desired.get("domain"),
            "server": _servers(desired),
            "certificateid": certificate_id,
            "certificatename": _certificate_name(ctx, certificate_id) if certificate_id else None,
            "proxy": desired.get("proxy"),
        }
    )
    body = _client(ctx).post(HOSTS, json=payload)
    ctx.set_id(body["id"])

    if any(desired.is_set(name) for name in SETTINGS_FIELDS):
        settings = compact(
            {
                "tls": optional(desired, "tls"),
                "cipher": optional(desired, "cipher"),
                "flag": _flag(desired),
                "timeout_config": _timeout_config(desired),
            }
        )
        if settings:
            _client(ctx).put(f"{HOSTS}/{ctx.id}", json=settings)


def _parse_bool(value: Any) -> bool | None:
    if value in (None, ""):
        return None
    return str(value).lower() == "true"


def read(ctx: OperationContext) -> dict[str, Any]:
    host = _client(ctx).get(f"{HOSTS}/{ctx.id}")
    flag = host.get("flag") or {}
    pci_3ds = _parse_bool(flag.get("pci_3ds"))
    pci_dss = _parse_bool(flag.get("pci_dss"))
    compliance = compact({"pci_3ds": pci_3ds, "pci_dss": pci_dss})

    traffic = host.get("traffic_mark")
    block_page = host.get("block_page")
    timeout_config = host.get("timeout_config")
    return {
        "id": host["id"],
        "domain": host.get("hostname"),
        "server": [
            {
                "client_protocol": s.get("front_protocol"),
                "server_protocol": s.get("back_protocol"),
                "address": s.get("address"),
                "port": s.get("port"),
                "type": s.get("type"),
                "vpc_id": s.get("vpc_id"),
            }
            for s in host.get("server") or []
        ],
        "certificate_id": host.get("certificateid"),
        "certificate_name": host.get("certificatename"),
        "policy_id": host.get("policyid"),
        "proxy": host.get("proxy"),
        "protect_status": host.get("protect_status"),
        "access_status": host.get("access_status"),
        "protocol": host.get("protocol"),
        "tls": host.get("tls"),
        "cipher": host.get("cipher"),
        "created_at": host.get("timestamp"),
        "pci_3ds": pci_3ds,
        "pci_dss": pci_dss,
        "compliance_certification": compliance,
        "traffic_identifier": {
            "ip_tag": ",".join(traffic.get("sip") or []),
            "session_tag": traffic.get("cookie", ""),
            "user_tag": traffic.get("params", ""),
        }
        if traffic
        else {},
        "alarm_page": {
            "template_name": block_page.get("template", ""),
            "redirect_url": block_page.get("redirect_url", ""),
        }
        if block_page
        else {},
        "timeout_config": [
            {
                "connect_timeout": timeout_config.get("connect_timeout"),
                "send_timeout": timeout_config.get("send_timeout"),
                "read_timeout": timeout_config.get("read_timeout"),
            }
        ]
        if timeout_config
        else [],
    }


def update(ctx: OperationContext) -> None:
    change_set = ctx.change_set
    desired = ctx.desired
    client = _client(ctx)

    if any(change_set.has_change(name) for name in ("proxy", "certificate_id", *SETTINGS_FIELDS)):
        payload: dict[str, Any] = compact(
            {"tls": optional(desired, "tls"), "cipher": optional(desired, "cipher")}
        )
        if change_set.has_change("proxy"):
            payload["proxy"] = desired.get("proxy")
        certificate_id = optional(desired, "certificate_id")
        if change_set.has_change("certificate_id") and certificate_id:
            payload["certificateid"] = certificate_id
            payload["certificatename"] = _certificate_name(ctx, certificate_id)
        if change_set.has_change("pci_3ds") or change_set.has_change("pci_dss"):
            flag = _flag(desired)
            if flag is not None:
                payload["flag"] = flag
        timeout_config = _timeout_config(desired)
        if timeout_config is not None:
            payload["timeout_config"] = timeout_config
        client.put(f"{HOSTS}/{ctx.id}", json=payload)


def _bind_policy(ctx: OperationContext, policy_id: str) -> None:
    logger.debug("waf_policy_bound", id=ctx.id, policy_id=policy_id)
    _client(ctx).put(f"/waf/policy/{policy_id}/hosts", json={"hosts": [ctx.id]})


def delete(ctx: OperationContext) -> None:
    keep_policy = ctx.desired.get("keep_policy")
    if keep_policy is None:
        keep_policy = True
    _client(ctx).delete(f"{HOSTS}/{ctx.id}", params={"keepPolicy": str(bool(keep_policy)).lower()})


def _apply_protect_status(ctx: OperationContext, to_add: frozenset, to_remove: frozenset):
    if not to_add:
        return []
    status = next(iter(to_add))
    if ctx.prior is None and status == PROTECT_STATUS_ENABLED:
        # New hosts start protected
        return []
    logger.debug("waf_protect_status", id=ctx.id, protect_status=status)
    _client(ctx).put(f"{HOSTS}/{ctx.id}/protect-status", json={"protect_status": status})
    return []


def custom_diff(desired: ResourceInstance, prior, change_set):
    if not desired.get("pci_3ds") and not desired.get("pci_dss"):
        return []
    if desired.get("tls") == PCI_TLS and desired.get("cipher") == PCI_CIPHER:
        return []
    path = "pci_3ds" if desired.get("pci_3ds") else "pci_dss"
    return [
        error(
            "Invalid compliance settings",
            f'pci_3ds and pci_dss require tls "{PCI_TLS}" and cipher "{PCI_CIPHER}"',
            field_path=path,
        )
    ]


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
    reconcilers=(
        BindingReconciler("policy", "policy_id", _bind_policy),
        CallbackReconciler("protect_status", "protect_status", _apply_protect_status),
    ),
    description="Dedicated WAF domain",
)
