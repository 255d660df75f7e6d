"""Engine scenarios against an in-memory resource type."""

import itertools
from dataclasses import replace

import pytest
from otcprovider.core.errors import UnknownResourceTypeError
from otcprovider.diagnostics.classify import ApiError
from otcprovider.diagnostics.models import ErrorKind, Severity, error
from otcprovider.engine.context import CancellationSignal
from otcprovider.engine.importer import SimpleIdImporter
from otcprovider.engine.lifecycle import ResourceEngine
from otcprovider.engine.reconcilers import CallbackReconciler
from otcprovider.resources.common import changed_payload
from otcprovider.schema import fields as f
from otcprovider.schema.registry import LifecycleHandlers, ResourceTypeDescriptor, build_registry

TYPE = "test_server"


class FakeCloud:
    """Remote API double: objects by id plus knobs for failure modes."""

    def __init__(self):
        self.objects = {}
        self.mutations = []
        self.ids = itertools.count(1)
        self.create_states = ["ACTIVE"]
        self.delete_conflicts = 0
        self.create_error = None

    def mutate(self, action, *args):
        self.mutations.append((action, *args))

    def create(self, ctx):
        ctx.check_cancelled()
        if self.create_error is not None:
            raise self.create_error
        resource_id = f"srv-{next(self.ids)}"
        desired = ctx.desired
        self.objects[resource_id] = {
            "name": desired.get("name"),
            "type": desired.get("type"),
            "description": desired.get("description"),
            "size": desired.get_set("size") or 1,
            "tags": {},
            "states": list(self.create_states),
        }
        self.mutate("create", resource_id)
        ctx.set_id(resource_id)
        if len(self.create_states) > 1 or self.create_states[0] != "ACTIVE":
            ctx.wait_until(self.probe(ctx), pending={"BUILD"}, target={"ACTIVE"})

    def probe(self, ctx):
        def probe():
            obj = self._get(ctx.id)
            states = obj["states"]
            state = states.pop(0) if len(states) > 1 else states[0]
            return obj, state

        return probe

    def _get(self, resource_id):
        if not resource_id.startswith("srv-"):
            raise ApiError(400, f"invalid server id {resource_id!r}", code="badRequest")
        try:
            return self.objects[resource_id]
        except KeyError:
            raise ApiError(404, f"server {resource_id} not found", code="itemNotFound") from None

    def read(self, ctx):
        obj = self._get(ctx.id)
        return {
            "id": ctx.id,
            "name": obj["name"],
            "type": obj["type"],
            "description": obj["description"],
            "size": obj["size"],
            "tags": dict(obj["tags"]),
            "status": obj["states"][0],
        }

    def update(self, ctx):
        payload = changed_payload(ctx, {"name": "name", "description": "description", "size": "size"})
        self._get(ctx.id).update(payload)
        self.mutate("update", ctx.id, payload)

    def delete(self, ctx):
        self._get(ctx.id)
        if self.delete_conflicts:
            self.delete_conflicts -= 1
            raise ApiError(409, "server is busy", code="Conflict")
        del self.objects[ctx.id]
        self.mutate("delete", ctx.id)

    def apply_tags(self, ctx, to_add, to_remove):
        tags = self._get(ctx.id)["tags"]
        for key, _ in to_remove:
            tags.pop(key, None)
        tags.update(dict(to_add))
        self.mutate("tags", ctx.id, sorted(to_add), sorted(to_remove))
        return []

    def lookup(self, ctx, name):
        return [rid for rid, obj in self.objects.items() if obj["name"] == name]


def custom_diff(desired, prior, change_set):
    if desired.get("name") == "forbidden":
        return [error("Invalid name", "the name 'forbidden' is reserved", field_path="name")]
    return []


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def engine(cloud, settings, credentials, clock):
    descriptor = ResourceTypeDescriptor(
        name=TYPE,
        schema={
            "name": f.string(required=True),
            "type": f.string(required=True, force_new=True),
            "description": f.string(optional=True),
            "size": f.integer(optional=True, computed=True),
            "password": f.string(optional=True, sensitive=True),
            "tags": f.tags_field(),
            "status": f.string(computed=True),
        },
        lifecycle=LifecycleHandlers(
            create=cloud.create,
            read=cloud.read,
            update=cloud.update,
            delete=cloud.delete,
            custom_diff=custom_diff,
            importer=SimpleIdImporter(cloud.lookup),
        ),
        reconcilers=(CallbackReconciler("tags", "tags", cloud.apply_tags),),
    )
    return ResourceEngine(build_registry([descriptor]), settings, credentials, clock=clock, sleep=clock.sleep)


CONFIG = {"name": "web", "type": "small", "password": "pw", "tags": {"env": "prod"}}


def _errors(result):
    return [d for d in result.diagnostics if d.severity is Severity.ERROR]


class TestCreate:
    def test_create_read_delete(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)

        assert not created.has_errors
        assert created.id == "srv-1"
        assert created.attributes["status"] == "ACTIVE"
        assert created.attributes["size"] == 1
        assert created.attributes["password"] == "pw"
        assert cloud.objects["srv-1"]["tags"] == {"env": "prod"}

        read = engine.read(TYPE, created.attributes)
        assert read.attributes == created.attributes

        deleted = engine.delete(TYPE, read.attributes)
        assert deleted.attributes == {"id": ""}
        assert deleted.diagnostics == []
        assert cloud.objects == {}

    def test_invalid_config_makes_no_calls(self, engine, cloud):
        result = engine.create(TYPE, {"name": "web"})
        assert [d.field_path for d in _errors(result)] == ["type"]
        assert cloud.mutations == []

    def test_custom_diff_blocks_create(self, engine, cloud):
        result = engine.create(TYPE, {**CONFIG, "name": "forbidden"})
        assert _errors(result)[0].field_path == "name"
        assert cloud.mutations == []

    def test_remote_rejection_points_at_field(self, engine, cloud):
        cloud.create_error = ApiError(400, "'description' is invalid", code="SRV.0001", request_id="req-9")
        result = engine.create(TYPE, CONFIG)
        [diag] = _errors(result)
        assert diag.kind is ErrorKind.INVALID_INPUT
        assert diag.field_path == "description"
        assert diag.request_id == "req-9"
        assert result.attributes == {"id": ""}

    def test_async_create_timeout_keeps_id(self, engine, cloud, clock):
        """Test a timed-out create reports the last status and keeps the new id."""
        cloud.create_states = ["BUILD"]

        result = engine.create(TYPE, CONFIG, timeouts={"create": "30s"})

        [diag] = _errors(result)
        assert "timeout" in diag.detail
        assert "BUILD" in diag.detail
        assert diag.kind is ErrorKind.UNKNOWN
        assert result.id == "srv-1"
        assert any(d.summary == "Dangling resource" for d in result.diagnostics)
        assert clock.now - 1000.0 == pytest.approx(30.0)

    def test_async_create_completes(self, engine, cloud):
        cloud.create_states = ["BUILD", "BUILD", "ACTIVE"]
        result = engine.create(TYPE, CONFIG)
        assert not result.has_errors
        assert result.attributes["status"] == "ACTIVE"

    def test_cancelled(self, engine, cloud):
        cancel = CancellationSignal()
        cancel.cancel()
        result = engine.create(TYPE, CONFIG, cancel=cancel)
        assert _errors(result)[0].summary == "Operation cancelled"
        assert cloud.mutations == []

    def test_invalid_timeouts(self, engine, cloud):
        result = engine.create(TYPE, CONFIG, timeouts={"create": "soon"})
        assert _errors(result)[0].field_path == "timeouts"
        assert cloud.mutations == []

    def test_handler_without_id(self, engine):
        descriptor = engine.registry.get(TYPE)
        descriptor.lifecycle = replace(descriptor.lifecycle, create=lambda ctx: None)

        result = engine.create(TYPE, CONFIG)

        [diag] = _errors(result)
        assert "returned no id" in diag.summary + diag.detail
        assert result.attributes == {"id": ""}


class TestPlanAndUpdate:
    def test_plan_new_resource(self, engine):
        plan = engine.plan(TYPE, None, CONFIG)
        assert plan.has_changes
        assert plan.attributes["id"] == ""

    def test_idempotent_apply(self, engine, cloud):
        """Test re-applying the same configuration plans nothing and mutates nothing."""
        created = engine.create(TYPE, CONFIG)
        mutations = len(cloud.mutations)

        plan = engine.plan(TYPE, created.attributes, CONFIG)
        assert not plan.has_changes

        updated = engine.update(TYPE, created.attributes, CONFIG)
        assert not updated.has_errors
        assert updated.attributes == created.attributes
        assert len(cloud.mutations) == mutations

    def test_update_sends_changed_fields_only(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)

        updated = engine.update(TYPE, created.attributes, {**CONFIG, "description": "frontend"})

        assert not updated.has_errors
        assert updated.attributes["description"] == "frontend"
        assert cloud.mutations[-1] == ("update", "srv-1", {"description": "frontend"})

    def test_tag_change_skips_primary_update(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)

        updated = engine.update(TYPE, created.attributes, {**CONFIG, "tags": {"env": "dev"}})

        assert updated.attributes["tags"] == {"env": "dev"}
        assert [m[0] for m in cloud.mutations] == ["create", "tags", "tags"]

    def test_force_new_rejected(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)
        mutations = len(cloud.mutations)

        plan = engine.plan(TYPE, created.attributes, {**CONFIG, "type": "large"})
        assert plan.requires_replace

        result = engine.update(TYPE, created.attributes, {**CONFIG, "type": "large"})
        [diag] = _errors(result)
        assert diag.summary == "Update would require replacement"
        assert diag.field_path == "type"
        assert result.attributes == created.attributes
        assert len(cloud.mutations) == mutations

    def test_update_missing_prior(self, engine):
        result = engine.update(TYPE, {"id": ""}, CONFIG)
        assert result.has_errors

    def test_update_gone_keeps_prior(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)
        cloud.objects.clear()
        result = engine.update(TYPE, created.attributes, {**CONFIG, "description": "x"})
        assert _errors(result)[0].kind is ErrorKind.GONE
        assert result.attributes == created.attributes


class TestRead:
    def test_gone(self, engine):
        result = engine.read(TYPE, {"id": "srv-404", "name": "web", "type": "small"})
        assert result.attributes == {"id": ""}
        assert result.diagnostics == []

    def test_no_id(self, engine):
        assert engine.read(TYPE, {"id": ""}).attributes == {"id": ""}

    def test_drift_reported(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)
        cloud.objects["srv-1"]["description"] = "edited in console"
        read = engine.read(TYPE, created.attributes)
        assert read.attributes["description"] == "edited in console"
        assert engine.plan(TYPE, read.attributes, CONFIG).change_set.removed == ["description"]

    def test_invalid_timeouts_keeps_prior(self, engine):
        created = engine.create(TYPE, CONFIG)

        result = engine.read(TYPE, created.attributes, timeouts={"bogus": "1m"})

        [diag] = _errors(result)
        assert diag.field_path == "timeouts"
        assert diag.kind is ErrorKind.INVALID_INPUT
        assert result.attributes == created.attributes


class TestDelete:
    def test_conflict_then_success(self, engine, cloud, clock):
        created = engine.create(TYPE, CONFIG)
        cloud.delete_conflicts = 2

        result = engine.delete(TYPE, created.attributes)

        assert result.attributes == {"id": ""}
        assert not result.has_errors
        assert clock.sleeps[-2:] == [5.0, 5.0]

    def test_conflict_past_deadline(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)
        cloud.delete_conflicts = 100

        result = engine.delete(TYPE, created.attributes, timeouts={"delete": "12s"})

        [diag] = _errors(result)
        assert diag.kind is ErrorKind.CONFLICT
        assert "server is busy" in diag.detail
        assert result.attributes == created.attributes
        assert "srv-1" in cloud.objects

    def test_invalid_timeouts_from_state(self, engine, cloud):
        created = engine.create(TYPE, CONFIG)

        result = engine.delete(TYPE, {**created.attributes, "timeouts": {"delete": "ten minutes"}})

        assert [d.field_path for d in _errors(result)] == ["timeouts"]
        assert result.id == "srv-1"
        assert "srv-1" in cloud.objects

    def test_already_gone(self, engine):
        result = engine.delete(TYPE, {"id": "srv-404", "name": "web", "type": "small"})
        assert result.attributes == {"id": ""}
        assert result.diagnostics == []


class TestImport:
    def test_import_round_trip(self, engine):
        """Test importing a created id reads back every non-sensitive attribute."""
        created = engine.create(TYPE, CONFIG)

        imported = engine.import_resource(TYPE, "srv-1")

        assert imported.id == "srv-1"
        assert imported.attributes["password"] is None
        assert {k: v for k, v in imported.attributes.items() if k != "password"} == {
            k: v for k, v in created.attributes.items() if k != "password"
        }
        [warn] = [d for d in imported.diagnostics if d.severity is Severity.WARNING]
        assert warn.field_path == "password"

    def test_import_by_name_after_invalid_id(self, engine):
        engine.create(TYPE, CONFIG)
        imported = engine.import_resource(TYPE, "web")
        assert imported.id == "srv-1"
        assert imported.attributes["name"] == "web"
        assert not imported.has_errors

    def test_import_ambiguous_name(self, engine):
        engine.create(TYPE, CONFIG)
        engine.create(TYPE, CONFIG)
        imported = engine.import_resource(TYPE, "web")
        assert imported.has_errors
        assert imported.attributes == {"id": ""}

    def test_import_missing(self, engine):
        imported = engine.import_resource(TYPE, "srv-99")
        [diag] = _errors(imported)
        assert diag.summary == "Cannot import non-existent remote object"
        assert diag.kind is ErrorKind.GONE

    def test_import_invalid_timeouts(self, engine):
        engine.create(TYPE, CONFIG)
        imported = engine.import_resource(TYPE, "srv-1", timeouts={"read": "later"})
        assert [d.field_path for d in _errors(imported)] == ["timeouts"]
        assert imported.attributes == {"id": ""}

    def test_import_unknown_name(self, engine):
        imported = engine.import_resource(TYPE, "nobody")
        [diag] = _errors(imported)
        assert diag.kind is ErrorKind.INVALID_INPUT
        assert imported.attributes == {"id": ""}


def test_unknown_type(engine):
    with pytest.raises(UnknownResourceTypeError):
        engine.plan("no_such_type", None, {})
