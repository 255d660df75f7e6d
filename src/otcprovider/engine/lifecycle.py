"""
Resource engine: the boundary between the host and lifecycle handlers.

Every public entry point takes plain attribute maps, returns an
OperationResult and never raises. Handlers raise; the engine classifies
what they raise into diagnostics.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import structlog

from otcprovider.clients.factory import ClientFactory, Credentials
from otcprovider.config.settings import Settings, get_settings
from otcprovider.core.errors import OtcProviderError, ProviderError
from otcprovider.diagnostics.classify import ApiError, classify, to_diagnostic
from otcprovider.diagnostics.models import Diagnostic, ErrorKind, error, has_errors, warning
from otcprovider.engine.coercion import (
    Attribute,
    ResourceInstance,
    apply_remote,
    instance_from_desired,
    instance_from_state,
    merge_computed,
)
from otcprovider.engine.context import CancellationSignal, OperationContext
from otcprovider.engine.diff import ChangeSet, compute_diff
from otcprovider.engine.reconcilers import reconcile
from otcprovider.engine.waiter import WaitOutcome
from otcprovider.logging import bind_context
from otcprovider.schema.registry import ResourceTypeDescriptor, SchemaRegistry
from otcprovider.schema.timeouts import Timeouts

logger = structlog.get_logger()

DELETE_CONFLICT_INTERVAL = 5.0


@dataclass
class OperationResult:
    """New attributes plus diagnostics for one handler invocation."""

    attributes: dict[str, Any]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    private: dict[str, Any] = field(default_factory=dict)
    change_set: ChangeSet | None = None

    @property
    def id(self) -> str:
        return str(self.attributes.get("id") or "")

    @property
    def has_errors(self) -> bool:
        return has_errors(self.diagnostics)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "attributes": self.attributes,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
        if self.private:
            data["private"] = self.private
        return data


@dataclass
class PlanResult:
    attributes: dict[str, Any]
    change_set: ChangeSet
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def requires_replace(self) -> bool:
        return self.change_set.requires_replace

    @property
    def has_changes(self) -> bool:
        return not self.change_set.is_empty()

    @property
    def has_errors(self) -> bool:
        return has_errors(self.diagnostics)


def _empty() -> dict[str, Any]:
    return {"id": ""}


class ResourceEngine:
    """Drives lifecycle handlers for the resource types in a registry."""

    def __init__(
        self,
        registry: SchemaRegistry,
        settings: Settings | None = None,
        credentials: Credentials | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or get_settings()
        self.credentials = credentials or Credentials.from_settings(self.settings)
        self._clock = clock
        self._sleep = sleep

    # -- helpers -----------------------------------------------------------

    def _timeouts(self, descriptor: ResourceTypeDescriptor, overrides: Mapping[str, Any] | None) -> Timeouts:
        base = descriptor.default_timeouts or Timeouts(
            create=self.settings.default_create_timeout,
            update=self.settings.default_update_timeout,
            delete=self.settings.default_delete_timeout,
        )
        return base.merged(overrides)

    @staticmethod
    def _invalid_timeouts(exc: OtcProviderError) -> Diagnostic:
        return error("Invalid timeouts", exc.message, field_path="timeouts", kind=ErrorKind.INVALID_INPUT)

    def _region(self, *instances: ResourceInstance | None) -> str:
        for instance in instances:
            if instance is not None and instance.get_set("region"):
                return str(instance.get("region"))
        return self.settings.region

    def _context(
        self,
        descriptor: ResourceTypeDescriptor,
        operation: str,
        desired: ResourceInstance,
        *,
        prior: ResourceInstance | None = None,
        timeouts: Timeouts,
        cancel: CancellationSignal | None,
        provider_meta: Mapping[str, Any] | None,
    ) -> OperationContext:
        cancel = cancel or CancellationSignal()
        region = self._region(desired, prior)
        budget = timeouts.for_operation(operation)
        deadline = None if budget is None else self._clock() + budget
        factory = ClientFactory(
            self.settings, self.credentials, region=region, cancel=cancel, sleep=self._sleep
        )
        return OperationContext(
            clients=factory,
            region=region,
            desired=desired,
            descriptor=descriptor,
            operation=operation,
            prior=prior,
            timeouts=timeouts,
            deadline=deadline,
            cancel=cancel,
            provider_meta=dict(provider_meta or {}),
            clock=self._clock,
            sleep=self._sleep,
        )

    def _failure(self, exc: BaseException, ctx: OperationContext) -> Diagnostic:
        diagnostic = to_diagnostic(
            exc, operation=ctx.operation, known_fields=ctx.descriptor.fields().keys()
        )
        if isinstance(exc, (ApiError, OtcProviderError)) or diagnostic.kind is not ErrorKind.UNKNOWN:
            logger.warning(
                "operation_failed",
                kind=str(diagnostic.kind) if diagnostic.kind else None,
                summary=diagnostic.summary,
                request_id=diagnostic.request_id,
            )
        else:
            logger.exception("operation_crashed", error=str(exc))
        return diagnostic

    def _refresh(self, ctx: OperationContext) -> tuple[ResourceInstance | None, list[Diagnostic]]:
        """Run the read handler; ``None`` means the remote object is gone."""
        ctx.check_cancelled()
        try:
            remote = ctx.descriptor.handlers().read(ctx)
        except ApiError as exc:
            if classify(exc) is ErrorKind.GONE:
                return None, []
            raise
        if remote is None:
            return None, []
        instance, diags = apply_remote(ctx.desired, ctx.descriptor.fields(), remote)
        self._settle_computed(ctx, instance)
        return instance, diags

    def _settle_computed(self, ctx: OperationContext, instance: ResourceInstance) -> None:
        for name, spec in ctx.descriptor.fields().items():
            if name == "id" or not spec.computed:
                continue
            attr = instance.attributes.get(name)
            if attr is None or not attr.present:
                value = ctx.region if name == "region" else (attr.value if attr else spec.zero())
                instance.attributes[name] = Attribute(value, True)

    def _reconcile_all(self, ctx: OperationContext) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        for reconciler in ctx.descriptor.reconcilers:
            result = reconcile(ctx, reconciler)
            diags.extend(result.diagnostics)
            if has_errors(result.diagnostics):
                break
        return diags

    def _custom_diff(
        self,
        descriptor: ResourceTypeDescriptor,
        desired: ResourceInstance,
        prior: ResourceInstance | None,
        change_set: ChangeSet,
    ) -> list[Diagnostic]:
        custom = descriptor.handlers().custom_diff
        if custom is None:
            return []
        return list(custom(desired, prior, change_set) or [])

    # -- plan ----------------------------------------------------------------

    def plan(
        self,
        type_name: str,
        prior_state: Mapping[str, Any] | None,
        desired_state: Mapping[str, Any],
    ) -> PlanResult:
        """Coerce, merge computed values and diff without touching the remote."""
        descriptor = self.registry.get(type_name)
        fields = descriptor.fields()
        desired, diags = instance_from_desired(type_name, fields, desired_state)
        prior = instance_from_state(type_name, fields, prior_state)
        if prior is not None and not prior.id:
            prior = None
        merged = merge_computed(fields, prior, desired)
        change_set = compute_diff(fields, prior, merged)
        if not has_errors(diags):
            diags.extend(self._custom_diff(descriptor, merged, prior, change_set))
        logger.debug(
            "resource_planned",
            type_name=type_name,
            id=merged.id,
            changed=change_set.changed_fields,
            requires_replace=change_set.requires_replace,
        )
        return PlanResult(merged.to_dict(), change_set, diags)

    # -- create --------------------------------------------------------------

    def create(
        self,
        type_name: str,
        desired_state: Mapping[str, Any],
        *,
        timeouts: Mapping[str, Any] | None = None,
        cancel: CancellationSignal | None = None,
        provider_meta: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        descriptor = self.registry.get(type_name)
        fields = descriptor.fields()
        desired, diags = instance_from_desired(type_name, fields, desired_state)
        desired.id = ""
        if not has_errors(diags):
            diags.extend(self._custom_diff(descriptor, desired, None, ChangeSet()))
        if has_errors(diags):
            return OperationResult({**desired.to_dict(), "id": ""}, diags)

        try:
            budget = self._timeouts(descriptor, timeouts or desired_state.get("timeouts"))
        except OtcProviderError as exc:
            return OperationResult(_empty(), [self._invalid_timeouts(exc)])
        ctx = self._context(
            descriptor, "create", desired, timeouts=budget, cancel=cancel, provider_meta=provider_meta
        )

        with bind_context(type_name=type_name, operation="create"):
            try:
                descriptor.handlers().create(ctx)
                if not ctx.id:
                    raise ProviderError(f"create handler for {type_name} returned no id")
                logger.info("resource_created", id=ctx.id)
                diags.extend(self._reconcile_all(ctx))
                if not has_errors(diags):
                    instance, read_diags = self._refresh(ctx)
                    diags.extend(read_diags)
                    if instance is None:
                        raise ProviderError(
                            f"{type_name} {ctx.id} disappeared right after creation"
                        )
                    return OperationResult(instance.to_dict(), [*diags, *ctx.warnings], dict(instance.private))
            except Exception as exc:
                diags.append(self._failure(exc, ctx))
            finally:
                ctx.clients.close()

        diags.extend(ctx.warnings)
        if ctx.id:
            diags.append(
                warning(
                    "Dangling resource",
                    f"{type_name} {ctx.id} exists remotely but was not fully configured; "
                    "the next plan will read and reconcile it",
                )
            )
            return OperationResult(ctx.desired.to_dict(), diags, dict(ctx.desired.private))
        return OperationResult(_empty(), diags)

    # -- read ----------------------------------------------------------------

    def read(
        self,
        type_name: str,
        prior_state: Mapping[str, Any],
        *,
        private: Mapping[str, Any] | None = None,
        timeouts: Mapping[str, Any] | None = None,
        cancel: CancellationSignal | None = None,
        provider_meta: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        descriptor = self.registry.get(type_name)
        prior = instance_from_state(type_name, descriptor.fields(), prior_state, private=private)
        if prior is None or not prior.id:
            return OperationResult(_empty())

        try:
            budget = self._timeouts(descriptor, timeouts or prior_state.get("timeouts"))
        except OtcProviderError as exc:
            return OperationResult(prior.to_dict(), [self._invalid_timeouts(exc)], dict(prior.private))
        ctx = self._context(
            descriptor,
            "read",
            prior.copy(),
            prior=prior,
            timeouts=budget,
            cancel=cancel,
            provider_meta=provider_meta,
        )
        with bind_context(type_name=type_name, operation="read", id=prior.id):
            try:
                instance, diags = self._refresh(ctx)
            except Exception as exc:
                return OperationResult(prior.to_dict(), [self._failure(exc, ctx)], dict(prior.private))
            finally:
                ctx.clients.close()

        if instance is None:
            logger.info("resource_gone", id=prior.id)
            return OperationResult(_empty())
        return OperationResult(instance.to_dict(), [*diags, *ctx.warnings], dict(instance.private))

    # -- update --------------------------------------------------------------

    def update(
        self,
        type_name: str,
        prior_state: Mapping[str, Any],
        desired_state: Mapping[str, Any],
        *,
        private: Mapping[str, Any] | None = None,
        timeouts: Mapping[str, Any] | None = None,
        cancel: CancellationSignal | None = None,
        provider_meta: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        descriptor = self.registry.get(type_name)
        fields = descriptor.fields()
        prior = instance_from_state(type_name, fields, prior_state, private=private)
        if prior is None or not prior.id:
            return OperationResult(
                _empty(), [error("Cannot update a resource that does not exist", f"{type_name} has no id")]
            )

        desired, diags = instance_from_desired(type_name, fields, desired_state)
        if has_errors(diags):
            return OperationResult(prior.to_dict(), diags, dict(prior.private))

        merged = merge_computed(fields, prior, desired)
        merged.id = prior.id
        change_set = compute_diff(fields, prior, merged)
        diags.extend(self._custom_diff(descriptor, merged, prior, change_set))
        if has_errors(diags):
            return OperationResult(prior.to_dict(), diags, dict(prior.private), change_set)

        if change_set.requires_replace:
            for name in change_set.replace_fields():
                diags.append(
                    error(
                        "Update would require replacement",
                        f"{name} is force_new; the resource must be deleted and re-created",
                        field_path=name,
                    )
                )
            return OperationResult(prior.to_dict(), diags, dict(prior.private), change_set)

        try:
            budget = self._timeouts(descriptor, timeouts or desired_state.get("timeouts"))
        except OtcProviderError as exc:
            return OperationResult(prior.to_dict(), [self._invalid_timeouts(exc)])
        ctx = self._context(
            descriptor,
            "update",
            merged,
            prior=prior,
            timeouts=budget,
            cancel=cancel,
            provider_meta=provider_meta,
        )
        ctx.change_set = change_set

        reconciled = {r.field for r in descriptor.reconcilers}
        primary = [name for name in change_set.changed_fields if name not in reconciled]

        with bind_context(type_name=type_name, operation="update", id=prior.id):
            try:
                if primary:
                    update = descriptor.handlers().update
                    if update is None:
                        raise ProviderError(f"{type_name} does not support in-place update")
                    update(ctx)
                    logger.info("resource_updated", fields=primary)
                diags.extend(self._reconcile_all(ctx))
                if has_errors(diags):
                    return OperationResult(prior.to_dict(), [*diags, *ctx.warnings], dict(prior.private), change_set)
                instance, read_diags = self._refresh(ctx)
                diags.extend(read_diags)
                if instance is None:
                    raise ApiError(404, f"{type_name} {prior.id} disappeared during update")
            except Exception as exc:
                diags.append(self._failure(exc, ctx))
                return OperationResult(prior.to_dict(), [*diags, *ctx.warnings], dict(prior.private), change_set)
            finally:
                ctx.clients.close()

        return OperationResult(instance.to_dict(), [*diags, *ctx.warnings], dict(instance.private), change_set)

    # -- delete --------------------------------------------------------------

    def delete(
        self,
        type_name: str,
        prior_state: Mapping[str, Any],
        *,
        private: Mapping[str, Any] | None = None,
        timeouts: Mapping[str, Any] | None = None,
        cancel: CancellationSignal | None = None,
        provider_meta: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        descriptor = self.registry.get(type_name)
        prior = instance_from_state(type_name, descriptor.fields(), prior_state, private=private)
        if prior is None or not prior.id:
            return OperationResult(_empty())

        try:
            budget = self._timeouts(descriptor, timeouts or prior_state.get("timeouts"))
        except OtcProviderError as exc:
            return OperationResult(prior.to_dict(), [self._invalid_timeouts(exc)], dict(prior.private))
        ctx = self._context(
            descriptor,
            "delete",
            prior.copy(),
            prior=prior,
            timeouts=budget,
            cancel=cancel,
            provider_meta=provider_meta,
        )
        delete = descriptor.handlers().delete

        def attempt() -> tuple[Any, str]:
            try:
                delete(ctx)
            except ApiError as exc:
                kind = classify(exc)
                if kind is ErrorKind.GONE:
                    return None, "deleted"
                if kind is ErrorKind.CONFLICT:
                    logger.info("delete_conflict_retry", error=str(exc))
                    return exc, "deleting"
                raise
            return None, "deleted"

        with bind_context(type_name=type_name, operation="delete", id=prior.id):
            try:
                observation, state = attempt()
                if state != "deleted":
                    result = ctx.wait(
                        attempt,
                        pending={"deleting"},
                        target={"deleted"},
                        min_interval=DELETE_CONFLICT_INTERVAL,
                        initial_delay=DELETE_CONFLICT_INTERVAL,
                    )
                    if result.outcome is WaitOutcome.PROBE_ERROR and result.error is not None:
                        raise result.error
                    if not result.ok:
                        last = result.observation or observation
                        diag = to_diagnostic(last, operation="delete") if last else None
                        return OperationResult(
                            prior.to_dict(),
                            [
                                error(
                                    f"Error deleting {type_name} {prior.id}",
                                    f"{result.describe()}: {last}",
                                    kind=ErrorKind.CONFLICT,
                                    request_id=diag.request_id if diag else None,
                                ),
                                *ctx.warnings,
                            ],
                            dict(prior.private),
                        )
            except Exception as exc:
                return OperationResult(
                    prior.to_dict(), [self._failure(exc, ctx), *ctx.warnings], dict(prior.private)
                )
            finally:
                ctx.clients.close()

        logger.info("resource_deleted")
        return OperationResult(_empty(), list(ctx.warnings))

    # -- import --------------------------------------------------------------

    def import_resource(
        self,
        type_name: str,
        import_id: str,
        *,
        timeouts: Mapping[str, Any] | None = None,
        cancel: CancellationSignal | None = None,
        provider_meta: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        """Parse ``import_id`` into initial state and hydrate it with Read."""
        descriptor = self.registry.get(type_name)
        importer = descriptor.importer()
        if importer is None:
            return OperationResult(_empty(), [error("Resource type does not support import", type_name)])

        try:
            initial = importer.parse(import_id)
        except OtcProviderError as exc:
            return OperationResult(
                _empty(), [error("Invalid import id", exc.message, kind=ErrorKind.INVALID_INPUT)]
            )

        fields = descriptor.fields()
        instance = instance_from_state(type_name, fields, initial) or ResourceInstance(type_name)
        try:
            budget = self._timeouts(descriptor, timeouts)
        except OtcProviderError as exc:
            return OperationResult(_empty(), [self._invalid_timeouts(exc)])
        ctx = self._context(
            descriptor,
            "read",
            instance,
            timeouts=budget,
            cancel=cancel,
            provider_meta=provider_meta,
        )

        def adopt(values: Mapping[str, Any]) -> None:
            resolved = instance_from_state(type_name, fields, values) or ResourceInstance(type_name)
            ctx.desired = resolved
            ctx.region = self._region(resolved)
            logger.info("import_resolved_by_lookup", id=resolved.id)

        diags: list[Diagnostic] = []
        with bind_context(type_name=type_name, operation="import", id=import_id):
            try:
                hydrated = None
                if not importer.looks_like_id(import_id):
                    found = importer.fallback(ctx, import_id)
                    if found is not None:
                        adopt(found)
                        hydrated, diags = self._refresh(ctx)
                else:
                    try:
                        hydrated, diags = self._refresh(ctx)
                    except ApiError as exc:
                        if classify(exc) is not ErrorKind.INVALID_INPUT:
                            raise
                        found = importer.fallback(ctx, import_id)
                        if found is None:
                            raise
                        adopt(found)
                        hydrated, diags = self._refresh(ctx)
            except Exception as exc:
                return OperationResult(_empty(), [self._failure(exc, ctx)])
            finally:
                ctx.clients.close()

        if hydrated is None:
            return OperationResult(
                _empty(),
                [
                    error(
                        "Cannot import non-existent remote object",
                        f"{type_name} {import_id!r} was not found",
                        kind=ErrorKind.GONE,
                    )
                ],
            )

        for name, spec in fields.items():
            if spec.sensitive and not spec.computed:
                diags.append(
                    warning(
                        "Sensitive attribute unknown after import",
                        f"{name} cannot be read back from the remote; it stays unknown "
                        "until it is supplied in the configuration again",
                        field_path=name,
                    )
                )
        logger.info("resource_imported", id=hydrated.id)
        return OperationResult(hydrated.to_dict(), [*diags, *ctx.warnings], dict(hydrated.private))
