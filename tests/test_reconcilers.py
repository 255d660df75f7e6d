"""Tests for sub-resource reconcilers."""

import json

import respx
from helpers import make_context
from httpx import Response
from otcprovider.engine.reconcilers import (
    BindingReconciler,
    CallbackReconciler,
    TagReconciler,
    attribute_items,
    hashable,
    reconcile,
)
from otcprovider.resources import cbr_vault

VAULT_URL = "https://cbr.eu-de.otc.t-systems.com/v3/proj"

VAULT = {
    "name": "vault",
    "billing": [{"object_type": "server", "protect_type": "backup", "size": 100}],
}


def _ctx(settings, credentials, desired_extra=None, prior_extra=None):
    desired = {**VAULT, **(desired_extra or {})}
    prior = {**VAULT, "id": "v-1", **(prior_extra or {})}
    return make_context(cbr_vault.DESCRIPTOR, settings, credentials, desired, prior=prior)


class TestAttributeItems:
    def test_map_pairs(self, settings, credentials):
        ctx = _ctx(settings, credentials, {"tags": {"env": "prod"}})
        assert attribute_items(ctx.desired, "tags") == frozenset({("env", "prod")})

    def test_unset_is_empty(self, settings, credentials):
        ctx = _ctx(settings, credentials)
        assert attribute_items(ctx.desired, "tags") == frozenset()
        assert attribute_items(None, "tags") == frozenset()

    def test_scalar(self, settings, credentials):
        ctx = _ctx(settings, credentials, {"backup_policy_id": "pol-1"})
        assert attribute_items(ctx.desired, "backup_policy_id") == frozenset({"pol-1"})

    def test_hashable(self):
        assert hashable({"b": [1, {"c": 2}], "a": 1}) == (("a", 1), ("b", (1, (("c", 2),))))


class TestTagReconciler:
    @respx.mock
    def test_upsert_then_delete_stale(self, settings, credentials):
        """Test changed keys are upserted and only keys absent from the desired map are deleted."""
        route = respx.post(f"{VAULT_URL}/vault/v-1/tags/action").mock(return_value=Response(204))
        ctx = _ctx(
            settings,
            credentials,
            desired_extra={"tags": {"env": "prod", "owner": "b"}},
            prior_extra={"tags": {"env": "dev", "team": "a"}},
        )

        result = reconcile(ctx, TagReconciler("cbr", "v3", "/vault/{id}"))

        assert result.applied
        bodies = [json.loads(call.request.content) for call in route.calls]
        assert bodies == [
            {"action": "create", "tags": [{"key": "env", "value": "prod"}, {"key": "owner", "value": "b"}]},
            {"action": "delete", "tags": [{"key": "team", "value": "a"}]},
        ]

    @respx.mock
    def test_no_change_no_calls(self, settings, credentials):
        route = respx.post(f"{VAULT_URL}/vault/v-1/tags/action")
        ctx = _ctx(settings, credentials, {"tags": {"env": "prod"}}, {"tags": {"env": "prod"}})

        result = reconcile(ctx, TagReconciler("cbr", "v3", "/vault/{id}"))

        assert not result.applied
        assert route.call_count == 0


class TestBindingReconciler:
    def _calls(self):
        calls = []
        bind = lambda ctx, value: calls.append(("bind", value))  # noqa: E731
        unbind = lambda ctx, value: calls.append(("unbind", value))  # noqa: E731
        return calls, bind, unbind

    def test_rebind_replaces(self, settings, credentials):
        calls, bind, unbind = self._calls()
        ctx = _ctx(settings, credentials, {"backup_policy_id": "new"}, {"backup_policy_id": "old"})
        reconcile(ctx, BindingReconciler("policy", "backup_policy_id", bind, unbind))
        assert calls == [("bind", "new")]

    def test_single_slot_unbinds_first(self, settings, credentials):
        calls, bind, unbind = self._calls()
        ctx = _ctx(settings, credentials, {"backup_policy_id": "new"}, {"backup_policy_id": "old"})
        reconcile(ctx, BindingReconciler("policy", "backup_policy_id", bind, unbind, single_slot=True))
        assert calls == [("unbind", "old"), ("bind", "new")]

    def test_removal_unbinds(self, settings, credentials):
        calls, bind, unbind = self._calls()
        ctx = _ctx(settings, credentials, prior_extra={"backup_policy_id": "old"})
        reconcile(ctx, BindingReconciler("policy", "backup_policy_id", bind, unbind))
        assert calls == [("unbind", "old")]


def test_callback_reconciler_receives_deltas(settings, credentials):
    seen = {}

    def apply(ctx, to_add, to_remove):
        seen.update(add=to_add, remove=to_remove)

    ctx = _ctx(settings, credentials, {"tags": {"a": "1"}}, {"tags": {"b": "2"}})
    result = reconcile(ctx, CallbackReconciler("tags", "tags", apply))
    assert seen == {"add": frozenset({("a", "1")}), "remove": frozenset({("b", "2")})}
    assert result.diagnostics == ()
