"""
Coercion between the host's untyped attribute tree and typed instances.

Top-level attributes are held as ``Attribute(value, present)`` pairs so
that "optional and unset" stays distinguishable from "set to the zero
value". Nested block items are plain dicts of typed values.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from otcprovider.diagnostics.models import Diagnostic, error, warning
from otcprovider.schema.fields import FieldKind, FieldSpec
from otcprovider.schema.registry import RESERVED_FIELDS
from otcprovider.schema.timeouts import Timeouts

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


@dataclass(frozen=True)
class Attribute:
    value: Any
    present: bool = True


@dataclass
class ResourceInstance:
    """Runtime view of one resource; an empty ``id`` means it does not exist."""

    type_name: str
    id: str = ""
    attributes: dict[str, Attribute] = field(default_factory=dict)
    private: dict[str, Any] = field(default_factory=dict)
    timeouts: Timeouts | None = None

    @property
    def exists(self) -> bool:
        return bool(self.id)

    def get(self, name: str, default: Any = None) -> Any:
        """Typed value of ``name`` (its zero value when unset)."""
        attr = self.attributes.get(name)
        if attr is None:
            return default
        return attr.value

    def get_set(self, name: str, default: Any = None) -> Any:
        """Value of ``name`` only when it was set, else ``default``."""
        attr = self.attributes.get(name)
        if attr is None or not attr.present:
            return default
        return attr.value

    def is_set(self, name: str) -> bool:
        attr = self.attributes.get(name)
        return attr is not None and attr.present

    def set(self, name: str, value: Any, present: bool = True) -> None:
        self.attributes[name] = Attribute(value, present)

    def values(self) -> dict[str, Any]:
        return {name: attr.value for name, attr in self.attributes.items()}

    def to_dict(self) -> dict[str, Any]:
        """Host-facing attribute map; unset optional fields become ``None``."""
        data: dict[str, Any] = {"id": self.id}
        for name, attr in self.attributes.items():
            data[name] = plain(attr.value) if attr.present else None
        return data

    def copy(self) -> "ResourceInstance":
        return ResourceInstance(
            type_name=self.type_name,
            id=self.id,
            attributes=dict(self.attributes),
            private=dict(self.private),
            timeouts=self.timeouts,
        )


def plain(value: Any) -> Any:
    """Convert typed values into JSON-friendly structures."""
    if isinstance(value, frozenset):
        return sorted((plain(v) for v in value), key=repr)
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(v) for v in value]
    return value


def sensitive_hash(value: Any) -> str:
    """Stable digest used for sensitive values in diffs and logs."""
    encoded = json.dumps(plain(value), sort_keys=True, default=str).encode()
    return "sha256:" + hashlib.sha256(encoded).hexdigest()


def _path(parent: str, name: str | int) -> str:
    return f"{parent}.{name}" if parent else str(name)


def coerce_value(
    spec: FieldSpec, raw: Any, path: str, *, validate: bool = True
) -> tuple[Any, list[Diagnostic]]:
    """Convert ``raw`` into the typed representation of ``spec``.

    ``validate=False`` skips the validators of nested block fields.
    """
    kind = spec.kind
    if kind is FieldKind.STRING:
        return _coerce_string(raw, path)
    if kind is FieldKind.INT:
        return _coerce_int(raw, path)
    if kind is FieldKind.BOOL:
        return _coerce_bool(raw, path)
    if kind in (FieldKind.LIST, FieldKind.SET):
        return _coerce_sequence(spec, raw, path, validate)
    if kind is FieldKind.MAP:
        return _coerce_map(spec, raw, path, validate)
    return _coerce_block(spec, raw, path, validate)


def _type_error(path: str, expected: str, raw: Any) -> Diagnostic:
    return error(
        "Incorrect attribute value type",
        f"expected {expected}, got {type(raw).__name__}",
        field_path=path,
    )


def _coerce_string(raw: Any, path: str) -> tuple[Any, list[Diagnostic]]:
    if isinstance(raw, str):
        return raw, []
    if isinstance(raw, bool):
        return ("true" if raw else "false"), []
    if isinstance(raw, (int, float)):
        return str(raw), []
    return "", [_type_error(path, "string", raw)]


def _coerce_int(raw: Any, path: str) -> tuple[Any, list[Diagnostic]]:
    if isinstance(raw, bool):
        return 0, [_type_error(path, "number", raw)]
    if isinstance(raw, int):
        return raw, []
    if isinstance(raw, float) and raw.is_integer():
        return int(raw), []
    if isinstance(raw, str):
        try:
            return int(raw.strip()), []
        except ValueError:
            pass
    return 0, [_type_error(path, "number", raw)]


def _coerce_bool(raw: Any, path: str) -> tuple[Any, list[Diagnostic]]:
    if isinstance(raw, bool):
        return raw, []
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw), []
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True, []
        if lowered in _FALSE:
            return False, []
    return False, [_type_error(path, "bool", raw)]


def _check_bounds(spec: FieldSpec, count: int, path: str) -> list[Diagnostic]:
    if spec.max_items is not None and count > spec.max_items:
        return [
            error(
                "Too many list items",
                f"attribute supports {spec.max_items} item(s) maximum, {count} given",
                field_path=path,
            )
        ]
    if spec.min_items is not None and count < spec.min_items:
        return [
            error(
                "Not enough list items",
                f"attribute requires {spec.min_items} item(s) minimum, {count} given",
                field_path=path,
            )
        ]
    return []


def _coerce_sequence(spec: FieldSpec, raw: Any, path: str, validate: bool) -> tuple[Any, list[Diagnostic]]:
    assert spec.elem is not None
    is_set = spec.kind is FieldKind.SET
    if isinstance(raw, (str, bytes, Mapping)) or not hasattr(raw, "__iter__"):
        return spec.zero(), [_type_error(path, "set" if is_set else "list", raw)]

    items: list[Any] = []
    diags: list[Diagnostic] = []
    for index, item in enumerate(raw):
        if item is None:
            diags.append(error("Null element", "collections cannot contain null", field_path=_path(path, index)))
            continue
        value, item_diags = coerce_value(spec.elem, item, _path(path, index), validate=validate)
        diags.extend(item_diags)
        items.append(value)

    result: Any = frozenset(items) if is_set else items
    diags.extend(_check_bounds(spec, len(result), path))
    return result, diags


def _coerce_map(spec: FieldSpec, raw: Any, path: str, validate: bool) -> tuple[Any, list[Diagnostic]]:
    assert spec.elem is not None
    if not isinstance(raw, Mapping):
        return {}, [_type_error(path, "map", raw)]
    result: dict[str, Any] = {}
    diags: list[Diagnostic] = []
    for key, item in raw.items():
        value, item_diags = coerce_value(spec.elem, item, _path(path, str(key)), validate=validate)
        diags.extend(item_diags)
        result[str(key)] = value
    return result, diags


def _coerce_block(spec: FieldSpec, raw: Any, path: str, validate: bool) -> tuple[Any, list[Diagnostic]]:
    assert spec.block is not None
    if isinstance(raw, Mapping):
        raw = [raw]
    if isinstance(raw, (str, bytes)) or not hasattr(raw, "__iter__"):
        return [], [_type_error(path, "block list", raw)]

    items: list[dict[str, Any]] = []
    diags: list[Diagnostic] = []
    for index, item in enumerate(raw):
        item_path = _path(path, index)
        if not isinstance(item, Mapping):
            diags.append(_type_error(item_path, "block", item))
            continue
        attrs, item_diags = coerce_attributes(
            spec.block, item, path=item_path, include_computed=True, run_validators=validate
        )
        diags.extend(item_diags)
        items.append({name: attr.value for name, attr in attrs.items()})

    diags.extend(_check_bounds(spec, len(items), path))
    return items, diags


def _run_validators(spec: FieldSpec, value: Any, path: str) -> list[Diagnostic]:
    diags: list[Diagnostic] = []
    for validator in spec.validators:
        diags.extend(d.at(path) for d in validator(value))
    return diags


def coerce_attributes(
    fields: Mapping[str, FieldSpec],
    raw: Mapping[str, Any] | None,
    *,
    path: str = "",
    include_computed: bool = False,
    check_required: bool = True,
    run_validators: bool = True,
) -> tuple[dict[str, Attribute], list[Diagnostic]]:
    """Coerce a raw attribute map against ``fields``.

    Computed-only fields are dropped unless ``include_computed`` is set.
    Keys not present in the schema are rejected, apart from the reserved
    ``id`` and ``timeouts`` at the top level.
    """
    raw = raw or {}
    attrs: dict[str, Attribute] = {}
    diags: list[Diagnostic] = []

    for key in raw:
        if key in fields:
            continue
        if not path and key in RESERVED_FIELDS:
            continue
        diags.append(
            error("Unsupported argument", f"an argument named {key!r} is not expected here", field_path=_path(path, key))
        )

    for name, spec in fields.items():
        if name == "id" and not path:
            continue
        if spec.computed_only and not include_computed:
            continue
        field_path = _path(path, name)
        value = raw.get(name)

        if value is None:
            if spec.required and check_required:
                diags.append(
                    error("Missing required argument", f"the argument {name!r} is required", field_path=field_path)
                )
                attrs[name] = Attribute(spec.zero(), present=False)
            elif spec.has_default:
                typed, default_diags = coerce_value(spec, spec.default, field_path)
                diags.extend(default_diags)
                attrs[name] = Attribute(typed, present=True)
            else:
                attrs[name] = Attribute(spec.zero(), present=False)
            continue

        typed, value_diags = coerce_value(spec, value, field_path, validate=run_validators)
        diags.extend(value_diags)
        if value_diags:
            attrs[name] = Attribute(typed, present=True)
            continue
        if spec.normalize is not None:
            typed = spec.normalize(typed)
        if run_validators:
            diags.extend(_run_validators(spec, typed, field_path))
        attrs[name] = Attribute(typed, present=True)

    return attrs, diags


def instance_from_desired(
    type_name: str,
    fields: Mapping[str, FieldSpec],
    raw: Mapping[str, Any] | None,
    *,
    timeouts: Timeouts | None = None,
) -> tuple[ResourceInstance, list[Diagnostic]]:
    """Desired state from the host: validated, computed-only fields dropped."""
    raw = raw or {}
    attrs, diags = coerce_attributes(fields, raw)
    instance = ResourceInstance(type_name, id=str(raw.get("id") or ""), attributes=attrs, timeouts=timeouts)
    return instance, diags


def instance_from_state(
    type_name: str,
    fields: Mapping[str, FieldSpec],
    raw: Mapping[str, Any] | None,
    *,
    private: Mapping[str, Any] | None = None,
) -> ResourceInstance | None:
    """Prior state persisted by the host; trusted, computed fields kept."""
    if raw is None:
        return None
    known = {k: v for k, v in raw.items() if k in fields or k in RESERVED_FIELDS}
    attrs, _ = coerce_attributes(
        fields, known, include_computed=True, check_required=False, run_validators=False
    )
    return ResourceInstance(
        type_name, id=str(raw.get("id") or ""), attributes=attrs, private=dict(private or {})
    )


def apply_remote(
    base: ResourceInstance,
    fields: Mapping[str, FieldSpec],
    remote: Mapping[str, Any],
) -> tuple[ResourceInstance, list[Diagnostic]]:
    """Build a fresh instance from a Read result layered over ``base``.

    Fields the remote did not report keep their ``base`` values (sensitive
    inputs are never echoed back). Unknown or mistyped remote fields are
    discarded with a warning.
    """
    result = base.copy()
    diags: list[Diagnostic] = []

    unknown = sorted(k for k in remote if k not in fields and k not in RESERVED_FIELDS)
    if unknown:
        diags.append(
            warning(
                "Unexpected remote attributes",
                f"{result.type_name}: discarding attributes not in the schema: {', '.join(unknown)}",
            )
        )

    if remote.get("id"):
        result.id = str(remote["id"])

    for name, spec in fields.items():
        if name == "id" or name not in remote:
            continue
        value = remote[name]
        if value is None:
            result.attributes[name] = Attribute(spec.zero(), present=spec.computed)
            continue
        typed, value_diags = coerce_value(spec, value, name, validate=False)
        if value_diags:
            diags.append(
                warning(
                    "Remote attribute has unexpected type",
                    "; ".join(d.detail for d in value_diags),
                    field_path=name,
                )
            )
            continue
        if spec.normalize is not None:
            typed = spec.normalize(typed)
        result.attributes[name] = Attribute(typed, present=True)
    return result, diags


def merge_computed(
    fields: Mapping[str, FieldSpec],
    prior: ResourceInstance | None,
    desired: ResourceInstance,
) -> ResourceInstance:
    """Carry remote-chosen values from prior into desired before diffing.

    Optional+computed fields the caller left unset take the prior value,
    as do computed-only fields (which are never diffed). Inside blocks the
    same rule applies item by item when both sides have the same length.
    """
    merged = desired.copy()
    if prior is None:
        return merged
    if not merged.id:
        merged.id = prior.id
    merged.private = {**prior.private, **merged.private}

    for name, spec in fields.items():
        prior_attr = prior.attributes.get(name)
        if prior_attr is None:
            continue
        if spec.computed_only:
            merged.attributes[name] = prior_attr
            continue
        current = merged.attributes.get(name)
        if spec.computed and (current is None or not current.present):
            merged.attributes[name] = prior_attr
            continue
        if spec.kind is FieldKind.BLOCK and current is not None and current.present:
            merged.attributes[name] = Attribute(
                _merge_block_items(spec, prior_attr.value, current.value), True
            )
    return merged


def _merge_block_items(spec: FieldSpec, prior_items: Any, desired_items: Any) -> Any:
    assert spec.block is not None
    if not isinstance(prior_items, list) or len(prior_items) != len(desired_items):
        return desired_items
    merged_items = []
    for prior_item, desired_item in zip(prior_items, desired_items):
        item = dict(desired_item)
        for sub_name, sub_spec in spec.block.items():
            if not sub_spec.computed or sub_name not in prior_item:
                continue
            if item.get(sub_name) in (None, sub_spec.zero()):
                item[sub_name] = prior_item[sub_name]
        merged_items.append(item)
    return merged_items
