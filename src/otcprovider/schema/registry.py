"""
Schema registry.

Holds one ResourceTypeDescriptor per resource type. The registry is built
and validated once at process start and frozen afterwards; it is the only
process-wide state the engine reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping, Sequence

import structlog

from otcprovider.core.errors import SchemaError, UnknownResourceTypeError
from otcprovider.schema.fields import FieldKind, FieldSpec, validate_field
from otcprovider.schema.timeouts import Timeouts

if TYPE_CHECKING:
    from otcprovider.diagnostics.models import Diagnostic
    from otcprovider.engine.context import OperationContext
    from otcprovider.engine.diff import ChangeSet
    from otcprovider.engine.coercion import ResourceInstance
    from otcprovider.engine.importer import Importer
    from otcprovider.engine.reconcilers import SubResourceReconciler

logger = structlog.get_logger()

# Attributes every instance carries regardless of its schema
RESERVED_FIELDS = ("id", "timeouts")

CreateHandler = Callable[["OperationContext"], None]
ReadHandler = Callable[["OperationContext"], "Mapping[str, Any] | None"]
UpdateHandler = Callable[["OperationContext"], None]
DeleteHandler = Callable[["OperationContext"], None]
CustomDiff = Callable[
    ["ResourceInstance", "ResourceInstance | None", "ChangeSet"], "list[Diagnostic]"
]


@dataclass(frozen=True)
class LifecycleHandlers:
    """Function references for the lifecycle verbs of one resource type.

    ``read`` returns the remote attribute map, or ``None`` when the remote
    object is gone. ``update`` may be omitted when every field is force_new.
    """

    create: CreateHandler
    read: ReadHandler
    delete: DeleteHandler
    update: UpdateHandler | None = None
    custom_diff: CustomDiff | None = None
    importer: "Importer | None" = None


@dataclass
class ResourceTypeDescriptor:
    name: str
    schema: Mapping[str, FieldSpec]
    lifecycle: LifecycleHandlers
    default_timeouts: Timeouts | None = None
    reconcilers: Sequence["SubResourceReconciler"] = ()
    description: str = ""

    def fields(self) -> Mapping[str, FieldSpec]:
        return self.schema

    def timeouts(self) -> Timeouts:
        return self.default_timeouts or Timeouts()

    def handlers(self) -> LifecycleHandlers:
        return self.lifecycle

    def importer(self) -> "Importer | None":
        return self.lifecycle.importer

    def sensitive_fields(self) -> list[str]:
        return [name for name, spec in self.schema.items() if spec.sensitive]

    def force_new_fields(self) -> list[str]:
        return [name for name, spec in self.schema.items() if spec.force_new]

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "fields": {name: spec.describe() for name, spec in self.schema.items()},
            "timeouts": self.timeouts().to_dict(),
            "importable": self.lifecycle.importer is not None,
            "reconcilers": [r.name for r in self.reconcilers],
        }

    def validate(self) -> None:
        """Raise SchemaError on any structural problem."""
        if not self.name:
            raise SchemaError("resource type name must not be empty")
        for name, spec in self.schema.items():
            if name == "timeouts":
                raise SchemaError(f"{self.name}: 'timeouts' is reserved")
            if name == "id" and not spec.computed_only:
                raise SchemaError(f"{self.name}: 'id' may only be declared computed")
            try:
                validate_field(name, spec)
            except SchemaError as e:
                raise SchemaError(f"{self.name}: {e.message}") from e

        all_force_new = all(
            spec.force_new for spec in self.schema.values() if not spec.computed_only
        )
        if self.lifecycle.update is None and not all_force_new:
            raise SchemaError(
                f"{self.name}: an update handler is required unless every "
                "configurable field is force_new"
            )

        seen: set[str] = set()
        for reconciler in self.reconcilers:
            if reconciler.field not in self.schema:
                raise SchemaError(
                    f"{self.name}: reconciler {reconciler.name!r} targets unknown "
                    f"field {reconciler.field!r}"
                )
            if reconciler.field in seen:
                raise SchemaError(
                    f"{self.name}: field {reconciler.field!r} has more than one reconciler"
                )
            seen.add(reconciler.field)

        importer = self.lifecycle.importer
        if importer is not None:
            for path in importer.attribute_paths():
                head = path.split(".", 1)[0]
                if head not in self.schema and head not in RESERVED_FIELDS:
                    raise SchemaError(
                        f"{self.name}: importer writes unknown field {path!r}"
                    )


class SchemaRegistry:
    """Registry of resource type descriptors, immutable once frozen."""

    def __init__(self) -> None:
        self._types: dict[str, ResourceTypeDescriptor] = {}
        self._frozen = False

    def register(self, descriptor: ResourceTypeDescriptor) -> None:
        if self._frozen:
            raise SchemaError("schema registry is frozen")
        if descriptor.name in self._types:
            raise SchemaError(f"resource type {descriptor.name!r} already registered")
        descriptor.validate()
        self._types[descriptor.name] = descriptor
        logger.debug("resource_type_registered", type_name=descriptor.name)

    def freeze(self) -> "SchemaRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> ResourceTypeDescriptor:
        try:
            return self._types[name]
        except KeyError as exc:
            raise UnknownResourceTypeError(
                f"Unknown resource type: {name}",
                details={"available": ", ".join(sorted(self._types))},
            ) from exc

    def names(self) -> list[str]:
        return sorted(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[ResourceTypeDescriptor]:
        return iter(self._types[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._types)


def build_registry(descriptors: Sequence[ResourceTypeDescriptor]) -> SchemaRegistry:
    registry = SchemaRegistry()
    for descriptor in descriptors:
        registry.register(descriptor)
    return registry.freeze()


__all__ = [
    "FieldKind",
    "LifecycleHandlers",
    "ResourceTypeDescriptor",
    "SchemaRegistry",
    "build_registry",
]
