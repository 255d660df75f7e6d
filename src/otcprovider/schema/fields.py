"""
Field specifications for resource-type schemas.

A FieldSpec is data: the engine interprets it for coercion, diffing and
the schema export. Structural mistakes are caught by ``validate_field``
when the registry is built, never at request time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Mapping

from otcprovider.core.errors import SchemaError

if TYPE_CHECKING:
    from otcprovider.diagnostics.models import Diagnostic


class FieldKind(StrEnum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    LIST = "list"
    SET = "set"
    MAP = "map"
    BLOCK = "block"

    @property
    def is_scalar(self) -> bool:
        return self in (FieldKind.STRING, FieldKind.INT, FieldKind.BOOL)

    @property
    def is_collection(self) -> bool:
        return self in (FieldKind.LIST, FieldKind.SET, FieldKind.MAP)


Validator = Callable[[Any], "list[Diagnostic]"]
DiffSuppress = Callable[[Any, Any], bool]
Normalizer = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldSpec:
    """Declarative description of one attribute."""

    kind: FieldKind
    required: bool = False
    optional: bool = False
    computed: bool = False
    force_new: bool = False
    sensitive: bool = False
    default: Any = None
    validators: tuple[Validator, ...] = ()
    elem: "FieldSpec | None" = None
    block: "Mapping[str, FieldSpec] | None" = None
    max_items: int | None = None
    min_items: int | None = None
    diff_suppress: DiffSuppress | None = None
    normalize: Normalizer | None = None
    description: str = ""

    @property
    def computed_only(self) -> bool:
        """Output-only: never part of desired state, excluded from diff."""
        return self.computed and not self.optional and not self.required

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def zero(self) -> Any:
        """Typed zero value for this kind."""
        if self.kind is FieldKind.STRING:
            return ""
        if self.kind is FieldKind.INT:
            return 0
        if self.kind is FieldKind.BOOL:
            return False
        if self.kind is FieldKind.SET:
            return frozenset()
        if self.kind is FieldKind.MAP:
            return {}
        return []

    def describe(self) -> dict[str, Any]:
        """Export for the host schema description and the CLI."""
        data: dict[str, Any] = {"kind": str(self.kind)}
        for flag in ("required", "optional", "computed", "force_new", "sensitive"):
            if getattr(self, flag):
                data[flag] = True
        if self.has_default:
            data["default"] = self.default
        if self.max_items is not None:
            data["max_items"] = self.max_items
        if self.min_items is not None:
            data["min_items"] = self.min_items
        if self.elem is not None:
            data["elem"] = self.elem.describe()
        if self.block is not None:
            data["block"] = {name: spec.describe() for name, spec in self.block.items()}
        if self.description:
            data["description"] = self.description
        return data


# Shorthand constructors used by the resource modules


def string(**kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.STRING, **kwargs)


def integer(**kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.INT, **kwargs)


def boolean(**kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.BOOL, **kwargs)


def list_of(elem: FieldSpec, **kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.LIST, elem=elem, **kwargs)


def set_of(elem: FieldSpec, **kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.SET, elem=elem, **kwargs)


def map_of(elem: FieldSpec, **kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.MAP, elem=elem, **kwargs)


def block(fields: Mapping[str, FieldSpec], **kwargs: Any) -> FieldSpec:
    return FieldSpec(FieldKind.BLOCK, block=dict(fields), **kwargs)


def tags_field(**kwargs: Any) -> FieldSpec:
    return map_of(string(), optional=True, **kwargs)


def validate_field(name: str, spec: FieldSpec, *, nested: bool = False) -> None:
    """Raise SchemaError if ``spec`` is structurally invalid."""
    if not isinstance(spec.kind, FieldKind):
        raise SchemaError(f"field {name!r}: unknown kind {spec.kind!r}")

    if not nested:
        if spec.required and spec.computed:
            raise SchemaError(f"field {name!r}: required and computed are mutually exclusive")
        if spec.required and spec.optional:
            raise SchemaError(f"field {name!r}: required and optional are mutually exclusive")
        if not (spec.required or spec.optional or spec.computed):
            raise SchemaError(f"field {name!r}: one of required, optional or computed must be set")
        if spec.required and spec.has_default:
            raise SchemaError(f"field {name!r}: required fields cannot have a default")
        if spec.force_new and spec.computed_only:
            raise SchemaError(f"field {name!r}: computed-only fields cannot be force_new")

    if spec.kind.is_collection:
        if spec.elem is None:
            raise SchemaError(f"field {name!r}: {spec.kind} requires an element spec")
        if spec.kind is FieldKind.SET and not spec.elem.kind.is_scalar:
            raise SchemaError(f"field {name!r}: set elements must be scalar")
        if spec.kind is FieldKind.MAP and not spec.elem.kind.is_scalar:
            raise SchemaError(f"field {name!r}: map values must be scalar")
        validate_field(f"{name}.*", spec.elem, nested=True)
    elif spec.elem is not None:
        raise SchemaError(f"field {name!r}: element spec only valid on collections")

    if spec.kind is FieldKind.BLOCK:
        if not spec.block:
            raise SchemaError(f"field {name!r}: block requires nested fields")
        for sub_name, sub_spec in spec.block.items():
            validate_field(f"{name}.{sub_name}", sub_spec)
    elif spec.block is not None:
        raise SchemaError(f"field {name!r}: nested fields only valid on blocks")

    if spec.max_items is not None or spec.min_items is not None:
        if spec.kind not in (FieldKind.LIST, FieldKind.SET, FieldKind.BLOCK):
            raise SchemaError(f"field {name!r}: item bounds only valid on lists, sets and blocks")
        low = spec.min_items or 0
        if spec.max_items is not None and spec.max_items < max(low, 1):
            raise SchemaError(f"field {name!r}: max_items must be >= max(min_items, 1)")

    for validator in spec.validators:
        if not callable(validator):
            raise SchemaError(f"field {name!r}: validator {validator!r} is not callable")
