"""Concrete Open Telekom Cloud resource types."""

from __future__ import annotations

from functools import lru_cache

from otcprovider.logging import register_sensitive_keys
from otcprovider.resources import (
    cbr_policy,
    cbr_vault,
    direct_connect,
    identity_user,
    rts_stack,
    waf_domain,
    waf_rule,
)
from otcprovider.schema.registry import ResourceTypeDescriptor, SchemaRegistry, build_registry

RESOURCE_MODULES = (
    identity_user,
    cbr_policy,
    cbr_vault,
    direct_connect,
    rts_stack,
    waf_domain,
    waf_rule,
)


def descriptors() -> list[ResourceTypeDescriptor]:
    return [module.DESCRIPTOR for module in RESOURCE_MODULES]


@lru_cache
def default_registry() -> SchemaRegistry:
    """Frozen registry of every built-in resource type."""
    registry = build_registry(descriptors())
    for descriptor in registry:
        register_sensitive_keys(*descriptor.sensitive_fields())
    return registry


__all__ = ["RESOURCE_MODULES", "default_registry", "descriptors"]
