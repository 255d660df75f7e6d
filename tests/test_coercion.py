"""Tests for coercion between host attribute maps and typed instances."""

import pytest
from otcprovider.engine.coercion import (
    Attribute,
    ResourceInstance,
    apply_remote,
    coerce_attributes,
    coerce_value,
    instance_from_desired,
    instance_from_state,
    merge_computed,
    plain,
    sensitive_hash,
)
from otcprovider.schema import fields as f
from otcprovider.schema.validators import int_between

BILLING = {
    "object_type": f.string(required=True, force_new=True),
    "size": f.integer(required=True, validators=(int_between(1, 100),)),
    "status": f.string(computed=True),
    "used": f.integer(computed=True),
}

SCHEMA = {
    "name": f.string(required=True),
    "description": f.string(optional=True),
    "enabled": f.boolean(optional=True, default=True),
    "count": f.integer(optional=True),
    "email": f.string(optional=True, computed=True),
    "tags": f.tags_field(),
    "zones": f.set_of(f.string(), optional=True),
    "billing": f.block(BILLING, optional=True, max_items=1),
    "secret": f.string(optional=True, sensitive=True),
    "created_at": f.string(computed=True),
}


class TestCoerceValue:
    """Lenient scalar coercion and collection shapes."""

    @pytest.mark.parametrize(
        "spec,raw,expected",
        [
            (f.string(optional=True), 5, "5"),
            (f.string(optional=True), True, "true"),
            (f.integer(optional=True), "42", 42),
            (f.integer(optional=True), 3.0, 3),
            (f.boolean(optional=True), "yes", True),
            (f.boolean(optional=True), 0, False),
        ],
    )
    def test_scalars(self, spec, raw, expected):
        value, diags = coerce_value(spec, raw, "x")
        assert diags == []
        assert value == expected

    def test_bool_is_not_an_int(self):
        _, diags = coerce_value(f.integer(optional=True), True, "count")
        assert diags[0].field_path == "count"

    def test_bad_int(self):
        value, diags = coerce_value(f.integer(optional=True), "many", "count")
        assert value == 0
        assert diags[0].summary == "Incorrect attribute value type"

    def test_set_is_frozenset(self):
        value, _ = coerce_value(f.set_of(f.string(), optional=True), ["b", "a", "a"], "zones")
        assert value == frozenset({"a", "b"})

    def test_string_is_not_a_list(self):
        _, diags = coerce_value(f.list_of(f.string(), optional=True), "abc", "items")
        assert diags

    def test_null_element(self):
        _, diags = coerce_value(f.list_of(f.string(), optional=True), ["a", None], "items")
        assert diags[0].field_path == "items.1"

    def test_block_accepts_single_mapping(self):
        value, diags = coerce_value(SCHEMA["billing"], {"object_type": "server", "size": 10}, "billing")
        assert diags == []
        assert value == [{"object_type": "server", "size": 10, "status": "", "used": 0}]

    def test_block_max_items(self):
        item = {"object_type": "server", "size": 10}
        _, diags = coerce_value(SCHEMA["billing"], [item, item], "billing")
        assert diags[0].summary == "Too many list items"
        assert diags[0].field_path == "billing"

    def test_map_values_coerced(self):
        value, _ = coerce_value(f.tags_field(), {"env": 1}, "tags")
        assert value == {"env": "1"}


class TestCoerceAttributes:
    def test_missing_required(self):
        attrs, diags = coerce_attributes(SCHEMA, {})
        assert [d.field_path for d in diags] == ["name"]
        assert attrs["name"].present is False

    def test_unknown_key(self):
        _, diags = coerce_attributes(SCHEMA, {"name": "a", "colour": "red"})
        assert diags[0].summary == "Unsupported argument"
        assert diags[0].field_path == "colour"

    def test_reserved_keys_allowed(self):
        _, diags = coerce_attributes(SCHEMA, {"name": "a", "id": "x", "timeouts": {"create": "1m"}})
        assert diags == []

    def test_default_counts_as_set(self):
        attrs, _ = coerce_attributes(SCHEMA, {"name": "a"})
        assert attrs["enabled"] == Attribute(True, True)
        assert attrs["description"] == Attribute("", False)

    def test_computed_only_dropped(self):
        attrs, _ = coerce_attributes(SCHEMA, {"name": "a", "created_at": "now"})
        assert "created_at" not in attrs

    def test_nested_validator_path(self):
        _, diags = coerce_attributes(SCHEMA, {"name": "a", "billing": [{"object_type": "disk", "size": 0}]})
        assert [d.field_path for d in diags] == ["billing.0.size"]

    def test_nested_missing_required(self):
        _, diags = coerce_attributes(SCHEMA, {"name": "a", "billing": [{"size": 5}]})
        assert diags[0].field_path == "billing.0.object_type"

    def test_normalize_before_validators(self):
        fields = {
            "code": f.string(
                optional=True,
                normalize=str.upper,
                validators=(lambda v: [] if v.isupper() else [pytest.fail("not normalized")],),
            )
        }
        attrs, diags = coerce_attributes(fields, {"code": "abc"})
        assert diags == []
        assert attrs["code"].value == "ABC"


class TestInstances:
    def test_from_desired_keeps_id(self):
        instance, _ = instance_from_desired("t", SCHEMA, {"id": "abc", "name": "x"})
        assert instance.id == "abc"
        assert instance.exists

    def test_from_state_filters_unknown(self):
        instance = instance_from_state("t", SCHEMA, {"id": "abc", "name": "x", "legacy": 1, "created_at": "now"})
        assert "legacy" not in instance.attributes
        assert instance.get("created_at") == "now"

    def test_from_state_none(self):
        assert instance_from_state("t", SCHEMA, None) is None

    def test_to_dict_unset_is_none(self):
        instance, _ = instance_from_desired("t", SCHEMA, {"name": "x", "zones": ["b", "a"]})
        data = instance.to_dict()
        assert data["description"] is None
        assert data["zones"] == ["a", "b"]
        assert data["id"] == ""


class TestApplyRemote:
    def _base(self):
        instance, _ = instance_from_desired("t", SCHEMA, {"name": "x", "secret": "hunter2"})
        instance.id = "old"
        return instance

    def test_unreported_fields_keep_base(self):
        result, diags = apply_remote(self._base(), SCHEMA, {"name": "y", "created_at": "now"})
        assert diags == []
        assert result.get("secret") == "hunter2"
        assert result.get("name") == "y"

    def test_remote_id_rewrites(self):
        result, _ = apply_remote(self._base(), SCHEMA, {"id": "new"})
        assert result.id == "new"

    def test_unknown_remote_keys_warn(self):
        result, diags = apply_remote(self._base(), SCHEMA, {"name": "x", "flavour": "vanilla"})
        assert "flavour" in diags[0].detail
        assert "flavour" not in result.attributes

    def test_mistyped_value_discarded(self):
        result, diags = apply_remote(self._base(), SCHEMA, {"count": "lots"})
        assert diags[0].field_path == "count"
        assert result.is_set("count") is False

    def test_remote_blocks_skip_validators(self):
        result, diags = apply_remote(self._base(), SCHEMA, {"billing": [{"object_type": "server", "size": 500}]})
        assert diags == []
        assert result.get("billing")[0]["size"] == 500

    def test_null_computed_is_present_zero(self):
        result, _ = apply_remote(self._base(), SCHEMA, {"email": None, "description": None})
        assert result.attributes["email"] == Attribute("", True)
        assert result.attributes["description"] == Attribute("", False)


class TestMergeComputed:
    def test_fills_unset_optional_computed(self):
        prior = instance_from_state("t", SCHEMA, {"id": "1", "name": "x", "email": "a@b.c", "created_at": "now"})
        desired, _ = instance_from_desired("t", SCHEMA, {"name": "x"})
        merged = merge_computed(SCHEMA, prior, desired)
        assert merged.get("email") == "a@b.c"
        assert merged.get("created_at") == "now"
        assert merged.id == "1"

    def test_explicit_value_wins(self):
        prior = instance_from_state("t", SCHEMA, {"id": "1", "name": "x", "email": "a@b.c"})
        desired, _ = instance_from_desired("t", SCHEMA, {"name": "x", "email": "new@b.c"})
        assert merge_computed(SCHEMA, prior, desired).get("email") == "new@b.c"

    def test_block_computed_subfields(self):
        prior = instance_from_state(
            "t",
            SCHEMA,
            {"id": "1", "name": "x", "billing": [{"object_type": "server", "size": 10, "status": "available", "used": 3}]},
        )
        desired, _ = instance_from_desired("t", SCHEMA, {"name": "x", "billing": [{"object_type": "server", "size": 20}]})
        merged = merge_computed(SCHEMA, prior, desired)
        assert merged.get("billing") == [{"object_type": "server", "size": 20, "status": "available", "used": 3}]

    def test_no_prior(self):
        desired, _ = instance_from_desired("t", SCHEMA, {"name": "x"})
        assert merge_computed(SCHEMA, None, desired) == desired


def test_plain_and_hash():
    assert plain({"a": frozenset({2, 1})}) == {"a": [1, 2]}
    digest = sensitive_hash("hunter2")
    assert digest.startswith("sha256:")
    assert digest == sensitive_hash("hunter2")
    assert "hunter2" not in digest


def test_instance_copy_is_independent():
    instance = ResourceInstance("t", id="1")
    clone = instance.copy()
    clone.set("name", "x")
    assert "name" not in instance.attributes
