"""Declarative resource-type schemas and their registry."""

from otcprovider.schema.fields import (
    FieldKind,
    FieldSpec,
    block,
    boolean,
    integer,
    list_of,
    map_of,
    set_of,
    string,
    tags_field,
)
from otcprovider.schema.registry import (
    LifecycleHandlers,
    ResourceTypeDescriptor,
    SchemaRegistry,
    build_registry,
)
from otcprovider.schema.timeouts import Timeouts, parse_duration

__all__ = [
    "FieldKind",
    "FieldSpec",
    "LifecycleHandlers",
    "ResourceTypeDescriptor",
    "SchemaRegistry",
    "Timeouts",
    "block",
    "boolean",
    "build_registry",
    "integer",
    "list_of",
    "map_of",
    "parse_duration",
    "set_of",
    "string",
    "tags_field",
]
