"""
Import identifiers: parsing caller-provided strings into initial state.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence

import structlog

from otcprovider.core.errors import ImportIdError

if TYPE_CHECKING:
    from otcprovider.engine.context import OperationContext

logger = structlog.get_logger()

SEPARATOR = "/"

Lookup = Callable[["OperationContext", str], "list[str]"]


class Importer(Protocol):
    def parse(self, raw: str) -> dict[str, Any]: ...

    def attribute_paths(self) -> list[str]: ...

    def looks_like_id(self, raw: str) -> bool: ...

    def fallback(self, ctx: "OperationContext", raw: str) -> dict[str, Any] | None: ...


def format_id(*parts: str) -> str:
    """Join parts into a composite id; parts may not contain the separator."""
    for part in parts:
        if not part:
            raise ImportIdError("Composite id parts must not be empty", details={"parts": list(parts)})
        if SEPARATOR in part:
            raise ImportIdError(
                f"Composite id part {part!r} contains {SEPARATOR!r}", details={"parts": list(parts)}
            )
    return SEPARATOR.join(parts)


class SimpleIdImporter:
    """The whole input is the remote id.

    When ``lookup`` is given and the input is not a valid id (it does not
    match ``id_pattern``, or the remote rejects it as invalid input) the
    input is treated as the value of ``lookup_field`` and resolved.
    """

    def __init__(
        self,
        lookup: Lookup | None = None,
        *,
        lookup_field: str = "name",
        id_pattern: str | None = None,
    ):
        self.lookup = lookup
        self.lookup_field = lookup_field
        self.id_pattern = re.compile(id_pattern) if id_pattern else None

    def parse(self, raw: str) -> dict[str, Any]:
        raw = raw.strip()
        if not raw:
            raise ImportIdError("Import id must not be empty")
        return {"id": raw}

    def attribute_paths(self) -> list[str]:
        paths = ["id"]
        if self.lookup is not None:
            paths.append(self.lookup_field)
        return paths

    def looks_like_id(self, raw: str) -> bool:
        if self.id_pattern is None:
            return True
        return bool(self.id_pattern.fullmatch(raw.strip()))

    def fallback(self, ctx: "OperationContext", raw: str) -> dict[str, Any] | None:
        if self.lookup is None:
            return None
        key = raw.strip()
        matches = self.lookup(ctx, key)
        logger.debug("import_lookup", field=self.lookup_field, value=key, matches=len(matches))
        if not matches:
            return None
        if len(matches) > 1:
            raise ImportIdError(
                f"{self.lookup_field} {key!r} matches {len(matches)} objects; import by id instead",
                details={"ids": ", ".join(matches)},
            )
        return {"id": matches[0], self.lookup_field: key}


class PathIndexedImporter:
    """Input ``p1/p2/.../pn`` mapped onto a fixed list of attribute paths."""

    def __init__(self, fields: Sequence[str]):
        if not fields:
            raise ValueError("path-indexed importer needs at least one field")
        self.fields = tuple(fields)

    def parse(self, raw: str) -> dict[str, Any]:
        parts = raw.strip().split(SEPARATOR)
        if len(parts) != len(self.fields):
            raise ImportIdError(
                f"Invalid import id {raw!r}: expected format "
                f"{SEPARATOR.join('<' + f + '>' for f in self.fields)}",
                details={"expected_parts": len(self.fields), "got_parts": len(parts)},
            )
        for name, part in zip(self.fields, parts):
            if not part:
                raise ImportIdError(f"Invalid import id {raw!r}: {name} is empty")
        return dict(zip(self.fields, parts))

    def attribute_paths(self) -> list[str]:
        return list(self.fields)

    def looks_like_id(self, raw: str) -> bool:
        return True

    def fallback(self, ctx: "OperationContext", raw: str) -> dict[str, Any] | None:
        return None

    def format(self, values: dict[str, Any]) -> str:
        return format_id(*(str(values[name]) for name in self.fields))
