"""
Per-field change sets between prior and desired state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from otcprovider.engine.coercion import Attribute, ResourceInstance, plain, sensitive_hash
from otcprovider.schema.fields import FieldKind, FieldSpec


@dataclass(frozen=True)
class FieldChange:
    old: Any
    new: Any
    force_new: bool = False
    sensitive: bool = False

    def display(self) -> tuple[Any, Any]:
        """(old, new) safe for rendering; sensitive values appear as hashes."""
        if self.sensitive:
            return sensitive_hash(self.old), sensitive_hash(self.new)
        return plain(self.old), plain(self.new)


@dataclass
class ChangeSet:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: dict[str, FieldChange] = field(default_factory=dict)
    forced: set[str] = field(default_factory=set)  # field paths

    @property
    def changed_fields(self) -> list[str]:
        return [*self.added, *self.removed, *self.modified]

    @property
    def requires_replace(self) -> bool:
        return bool(self.forced)

    def replace_fields(self) -> list[str]:
        """Paths of the changes that force replacement, e.g. ``billing.0.object_type``."""
        return sorted(self.forced)

    def has_change(self, name: str) -> bool:
        return name in self.added or name in self.removed or name in self.modified

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def mark_changed(self, name: str, old: Any, new: Any, *, force_new: bool = False) -> None:
        """Let a custom diff flag a field whose values compare equal."""
        if not self.has_change(name):
            self.modified[name] = FieldChange(old, new, force_new=force_new)
        if force_new:
            self.forced.add(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": {name: list(change.display()) for name, change in self.modified.items()},
            "requires_replace": self.requires_replace,
        }


def _strip_computed_subfields(spec: FieldSpec, value: Any) -> Any:
    if spec.kind is not FieldKind.BLOCK or not isinstance(value, list):
        return value
    assert spec.block is not None
    return [
        {k: v for k, v in item.items() if k in spec.block and not spec.block[k].computed_only}
        for item in value
    ]


def _forced_paths(name: str, spec: FieldSpec, old: Any, new: Any) -> list[str]:
    if spec.force_new:
        return [name]
    if spec.kind is not FieldKind.BLOCK or not isinstance(old, list) or not isinstance(new, list):
        return []
    assert spec.block is not None
    forced_subfields = [sub_name for sub_name, sub_spec in spec.block.items() if sub_spec.force_new]
    paths = []
    for index, (old_item, new_item) in enumerate(zip(old, new)):
        for sub_name in forced_subfields:
            if old_item.get(sub_name) != new_item.get(sub_name):
                paths.append(f"{name}.{index}.{sub_name}")
    # items present on one side only are added or removed as a whole
    longer = old if len(old) > len(new) else new
    for index in range(min(len(old), len(new)), len(longer)):
        paths.extend(f"{name}.{index}.{sub_name}" for sub_name in forced_subfields)
    return paths


def values_equal(spec: FieldSpec, old: Any, new: Any) -> bool:
    if spec.diff_suppress is not None and spec.diff_suppress(old, new):
        return True
    return _strip_computed_subfields(spec, old) == _strip_computed_subfields(spec, new)


def diff_attributes(
    fields: Mapping[str, FieldSpec],
    prior: Mapping[str, Attribute],
    desired: Mapping[str, Attribute],
) -> ChangeSet:
    """Classify each field as unchanged, added, removed or modified.

    Classification depends only on which side has the field set, so
    swapping the arguments swaps added and removed and leaves modified
    unchanged.
    """
    changes = ChangeSet()
    for name, spec in fields.items():
        if name == "id" or spec.computed_only:
            continue
        old = prior.get(name)
        new = desired.get(name)
        old_set = old is not None and old.present
        new_set = new is not None and new.present
        if not old_set and not new_set:
            continue

        old_value = old.value if old is not None else spec.zero()
        new_value = new.value if new is not None else spec.zero()

        # Unset and explicitly zero are the same remote state
        if old_set != new_set and (old_value if old_set else new_value) == spec.zero():
            continue

        if old_set and new_set:
            if values_equal(spec, old_value, new_value):
                continue
            forced = _forced_paths(name, spec, old_value, new_value)
            changes.modified[name] = FieldChange(
                old_value, new_value, force_new=bool(forced), sensitive=spec.sensitive
            )
            changes.forced.update(forced)
            continue

        if new_set:
            changes.added.append(name)
        else:
            changes.removed.append(name)

        changes.forced.update(
            _forced_paths(
                name,
                spec,
                old_value if old_set else spec.zero(),
                new_value if new_set else spec.zero(),
            )
        )
    return changes


def compute_diff(
    fields: Mapping[str, FieldSpec],
    prior: ResourceInstance | None,
    desired: ResourceInstance,
) -> ChangeSet:
    prior_attrs = prior.attributes if prior is not None else {}
    return diff_attributes(fields, prior_attrs, desired.attributes)
