"""
IAM user (identity v3.0 OS-USER API).

Login protection lives behind its own endpoint and is synced by a
reconciler; the password is write-only and never read back.
"""

from __future__ import annotations

from typing import Any

import structlog

from otcprovider.diagnostics.models import error
from otcprovider.engine.context import OperationContext
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.engine.reconcilers import CallbackReconciler
from otcprovider.resources.common import case_insensitive, changed_payload, compact, optional
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor
from otcprovider.schema.validators import string_in_slice, string_match, validate_email

logger = structlog.get_logger()

TYPE_NAME = "opentelekomcloud_identity_user_v3"

USERS = "/OS-USER/users"

# 32 hex characters
USER_ID_PATTERN = r"[0-9a-f]{32}"


def _normalize_phone(value: str) -> str:
    """Remote reports phones as ``<areacode>-<number>``."""
    return value.split("-", 1)[-1] if value else value


SCHEMA = {
    "name": f.string(required=True),
    "password": f.string(optional=True, sensitive=True),
    "description": f.string(optional=True),
    "email": f.string(
        optional=True, computed=True, diff_suppress=case_insensitive, validators=(validate_email,)
    ),
    "phone": f.string(
        optional=True,
        validators=(string_match(r"^[0-9]{0,32}$", "the phone number must have a maximum of 32 digits"),),
    ),
    "country_code": f.string(optional=True),
    "enabled": f.boolean(optional=True, default=True),
    "pwd_reset": f.boolean(optional=True, default=True),
    "access_type": f.string(
        optional=True, computed=True, validators=(string_in_slice(["default", "programmatic", "console"]),)
    ),
    "send_welcome_email": f.boolean(optional=True),
    "login_protection": f.block(
        {
            "verification_method": f.string(
                required=True, validators=(string_in_slice(["sms", "email", "vmfa"]),)
            ),
            "enabled": f.boolean(required=True),
        },
        optional=True,
        max_items=1,
    ),
    "password_strength": f.string(computed=True),
    "create_time": f.string(computed=True),
    "last_login": f.string(computed=True),
    "domain_id": f.string(computed=True),
}


def _client(ctx: OperationContext):
    return ctx.client("identity", "v3.0")


def _domain_id(ctx: OperationContext) -> str:
    domain_id = ctx.clients.credentials.domain_id or ctx.provider_meta.get("domain_id")
    if domain_id:
        return str(domain_id)
    body = ctx.client("identity", "v3").get("/auth/domains")
    domains = body.get("domains") or []
    if not domains:
        raise ValueError("domain id could not be determined from the token")
    return str(domains[0]["id"])


def _send_welcome_email(ctx: OperationContext) -> None:
    ctx.client("identity", "v3").post(f"/users/{ctx.id}/welcome")


def create(ctx: OperationContext) -> None:
    desired = ctx.desired
    user = compact(
        {
            "name": desired.get("name"),
            "domain_id": _domain_id(ctx),
            "description": optional(desired, "description"),
            "email": optional(desired, "email"),
            "phone": optional(desired, "phone"),
            "areacode": optional(desired, "country_code"),
            "access_mode": optional(desired, "access_type"),
            "enabled": desired.get("enabled"),
            "pwd_status": desired.get("pwd_reset"),
        }
    )
    logger.debug("identity_user_create", name=user["name"])
    user["password"] = optional(desired, "password")
    body = _client(ctx).post(USERS, json={"user": compact(user)})
    ctx.set_id(body["user"]["id"])

    if desired.get("send_welcome_email"):
        _send_welcome_email(ctx)


def read(ctx: OperationContext) -> dict[str, Any]:
    user = _client(ctx).get(f"{USERS}/{ctx.id}")["user"]
    return {
        "id": user["id"],
        "name": user.get("name"),
        "description": user.get("description"),
        "email": user.get("email"),
        "phone": _normalize_phone(user.get("phone") or ""),
        "country_code": user.get("areacode"),
        "enabled": user.get("enabled"),
        "pwd_reset": user.get("pwd_status"),
        "access_type": user.get("access_mode"),
        "password_strength": user.get("pwd_strength"),
        "create_time": user.get("create_time"),
        "last_login": user.get("last_login_time"),
        "domain_id": user.get("domain_id"),
        "login_protection": _read_login_protection(ctx),
    }


def _read_login_protection(ctx: OperationContext) -> list[dict[str, Any]] | None:
    if not ctx.desired.is_set("login_protection"):
        return None
    protect = _client(ctx).get(f"{USERS}/{ctx.id}/login-protect").get("login_protect") or {}
    method = protect.get("verification_method")
    if method in (None, "none"):
        current = ctx.desired.get("login_protection") or [{}]
        method = current[0].get("verification_method", "")
    return [{"enabled": bool(protect.get("enabled")), "verification_method": method}]


def update(ctx: OperationContext) -> None:
    user = changed_payload(
        ctx,
        {
            "name": "name",
            "description": "description",
            "email": "email",
            "access_type": "access_mode",
            "enabled": "enabled",
            "pwd_reset": "pwd_status",
        },
    )
    if ctx.change_set.has_change("phone") or ctx.change_set.has_change("country_code"):
        user["phone"] = ctx.desired.get("phone")
        user["areacode"] = ctx.desired.get("country_code")
    logger.debug("identity_user_update", keys=sorted(user))
    if ctx.change_set.has_change("password"):
        user["password"] = ctx.desired.get("password")

    if user:
        _client(ctx).put(f"{USERS}/{ctx.id}", json={"user": user})

    if ctx.change_set.has_change("email") and ctx.desired.get("send_welcome_email"):
        _send_welcome_email(ctx)


def delete(ctx: OperationContext) -> None:
    ctx.client("identity", "v3").delete(f"/users/{ctx.id}")


def _apply_login_protection(ctx: OperationContext, to_add: frozenset, to_remove: frozenset):
    if not to_add:
        # Removing the block disables protection
        payload = {"enabled": False}
    else:
        item = dict(next(iter(to_add)))
        payload = {"enabled": item["enabled"], "verification_method": item["verification_method"]}
    _client(ctx).put(f"{USERS}/{ctx.id}/login-protect", json={"login_protect": payload})
    return []


def lookup_by_name(ctx: OperationContext, name: str) -> list[str]:
    body = ctx.client("identity", "v3").get("/users", params={"name": name})
    return [u["id"] for u in body.get("users", []) if u.get("name") == name]


def custom_diff(desired, prior, change_set):
    diags = []
    if desired.is_set("phone") != desired.is_set("country_code"):
        diags.append(
            error("Conflicting configuration", "phone and country_code must be set together", field_path="phone")
        )
    if desired.get("send_welcome_email") and not desired.is_set("email"):
        diags.append(
            error("Missing required argument", "send_welcome_email requires email", field_path="send_welcome_email")
        )
    return diags


DESCRIPTOR = ResourceTypeDescriptor(
    name=TYPE_NAME,
    schema=SCHEMA,
    lifecycle=LifecycleHandlers(
        create=create,
        read=read,
        update=update,
        delete=delete,
        custom_diff=custom_diff,
        importer=SimpleIdImporter(lookup_by_name, id_pattern=USER_ID_PATTERN),
    ),
    reconcilers=(CallbackReconciler("login_protection", "login_protection", _apply_login_protection),),
    description="IAM user",
)
