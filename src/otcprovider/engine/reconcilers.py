"""
Sub-resource reconcilers.

A reconciler owns one attribute of its parent resource whose remote
counterpart lives behind separate API calls (tags, policy bindings,
attached resources, ...). The engine computes the add and remove deltas
and calls ``apply`` once; additions always go first so capacity-bound
collections never overflow mid-replacement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol, runtime_checkable

import structlog

from otcprovider.diagnostics.models import Diagnostic
from otcprovider.engine.coercion import ResourceInstance

if TYPE_CHECKING:
    from otcprovider.engine.context import OperationContext

logger = structlog.get_logger()

Item = Any
ApplyFn = Callable[["OperationContext", frozenset, frozenset], "list[Diagnostic] | None"]


@runtime_checkable
class SubResourceReconciler(Protocol):
    name: str
    field: str

    def current(self, ctx: "OperationContext", instance: ResourceInstance | None) -> frozenset: ...

    def apply(
        self, ctx: "OperationContext", to_add: frozenset, to_remove: frozenset
    ) -> list[Diagnostic]: ...


@dataclass(frozen=True)
class ReconcileResult:
    name: str
    to_add: frozenset
    to_remove: frozenset
    applied: bool
    diagnostics: tuple[Diagnostic, ...] = ()


def hashable(value: Any) -> Any:
    """Turn nested dicts/lists into hashable equivalents for set algebra."""
    if isinstance(value, dict):
        return tuple(sorted((k, hashable(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(hashable(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(hashable(v) for v in value)
    return value


def attribute_items(instance: ResourceInstance | None, field: str) -> frozenset:
    """Items of one attribute as a set, by the attribute's shape.

    Maps become ``(key, value)`` pairs, lists and sets their elements,
    block lists hashable tuples, and a non-empty scalar a single item.
    """
    if instance is None or not instance.is_set(field):
        return frozenset()
    value = instance.get(field)
    if isinstance(value, dict):
        return frozenset((k, hashable(v)) for k, v in value.items())
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(hashable(v) for v in value)
    if value in ("", None):
        return frozenset()
    return frozenset({value})


class AttributeReconciler:
    """Base reconciler reading items straight from the instance attribute."""

    name: str = ""
    field: str = ""

    def current(self, ctx: "OperationContext", instance: ResourceInstance | None) -> frozenset:
        return attribute_items(instance, self.field)

    def apply(
        self, ctx: "OperationContext", to_add: frozenset, to_remove: frozenset
    ) -> list[Diagnostic]:
        raise NotImplementedError


class CallbackReconciler(AttributeReconciler):
    """Reconciler whose apply step is a plain function."""

    def __init__(self, name: str, field: str, apply: ApplyFn):
        self.name = name
        self.field = field
        self._apply = apply

    def apply(
        self, ctx: "OperationContext", to_add: frozenset, to_remove: frozenset
    ) -> list[Diagnostic]:
        return list(self._apply(ctx, to_add, to_remove) or [])


class BindingReconciler(AttributeReconciler):
    """Single-valued binding such as a policy attached to a parent.

    By default a bind replaces any previous binding, so ``unbind`` runs
    only when nothing replaces the old value. With ``single_slot`` the
    remote refuses a second binding and the old value is unbound first.
    """

    def __init__(
        self,
        name: str,
        field: str,
        bind: Callable[["OperationContext", Any], None],
        unbind: Callable[["OperationContext", Any], None] | None = None,
        *,
        single_slot: bool = False,
    ):
        self.name = name
        self.field = field
        self._bind = bind
        self._unbind = unbind
        self.single_slot = single_slot

    def apply(
        self, ctx: "OperationContext", to_add: frozenset, to_remove: frozenset
    ) -> list[Diagnostic]:
        unbind_first = self.single_slot and self._unbind is not None
        if unbind_first:
            for item in sorted(to_remove, key=repr):
                self._unbind(ctx, item)
        for item in sorted(to_add, key=repr):
            self._bind(ctx, item)
        if not unbind_first and not to_add and self._unbind is not None:
            for item in sorted(to_remove, key=repr):
                self._unbind(ctx, item)
        return []


class TagReconciler(AttributeReconciler):
    """Tags behind the ``{path}/tags/action`` batch endpoint.

    New or changed pairs are upserted with ``action=create``; keys absent
    from the desired map are removed with ``action=delete``.
    """

    def __init__(
        self,
        service: str,
        version: str,
        path: str,
        *,
        field: str = "tags",
        name: str = "tags",
    ):
        self.service = service
        self.version = version
        self.path = path
        self.field = field
        self.name = name

    def apply(
        self, ctx: "OperationContext", to_add: frozenset, to_remove: frozenset
    ) -> list[Diagnostic]:
        client = ctx.client(self.service, self.version)
        url = self.path.format(id=ctx.id) + "/tags/action"
        if to_add:
            client.post(url, json={"action": "create", "tags": _tag_list(to_add)})
        added_keys = {key for key, _ in to_add}
        stale = frozenset(pair for pair in to_remove if pair[0] not in added_keys)
        if stale:
            ctx.check_cancelled()
            client.post(url, json={"action": "delete", "tags": _tag_list(stale)})
        return []


def _tag_list(pairs: Iterable[tuple[str, Any]]) -> list[dict[str, Any]]:
    return [{"key": key, "value": value} for key, value in sorted(pairs)]


def reconcile(
    ctx: "OperationContext",
    reconciler: SubResourceReconciler,
) -> ReconcileResult:
    """Compute deltas between prior and desired and apply them once."""
    desired = reconciler.current(ctx, ctx.desired)
    prior = reconciler.current(ctx, ctx.prior)
    to_add = desired - prior
    to_remove = prior - desired
    if not to_add and not to_remove:
        return ReconcileResult(reconciler.name, to_add, to_remove, applied=False)

    ctx.check_cancelled()
    logger.info(
        "sub_resource_reconcile",
        type_name=ctx.descriptor.name,
        id=ctx.id,
        reconciler=reconciler.name,
        adding=len(to_add),
        removing=len(to_remove),
    )
    diagnostics = reconciler.apply(ctx, to_add, to_remove)
    return ReconcileResult(
        reconciler.name, to_add, to_remove, applied=True, diagnostics=tuple(diagnostics)
    )
