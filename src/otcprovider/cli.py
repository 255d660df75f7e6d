"""
Introspection CLI for the built-in resource types.

Commands:
    otcprovider resources                    - List resource types and default timeouts
    otcprovider schema <type> [--json]       - Show the field schema of a type
    otcprovider parse-id <type> <id>         - Decode an import id offline
"""

from __future__ import annotations

import argparse
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table

from otcprovider.core.errors import ValidationError, main_with_error_handling
from otcprovider.logging import configure_logging
from otcprovider.resources import default_registry
from otcprovider.schema.fields import FieldSpec
from otcprovider.schema.registry import ResourceTypeDescriptor

console = Console()

FLAGS = ("required", "optional", "computed", "force_new", "sensitive")


def _format_timeout(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m{rest}s" if rest else f"{minutes}m"


def _format_timeouts(descriptor: ResourceTypeDescriptor) -> str:
    timeouts = descriptor.timeouts().to_dict()
    return " ".join(f"{op}={_format_timeout(value)}" for op, value in timeouts.items() if value is not None)


def _schema_rows(fields: dict[str, FieldSpec], prefix: str = "") -> list[tuple[str, str, str]]:
    rows = []
    for name, spec in fields.items():
        path = f"{prefix}{name}"
        flags = ",".join(flag for flag in FLAGS if getattr(spec, flag))
        rows.append((path, str(spec.kind), flags))
        if spec.block is not None:
            rows.extend(_schema_rows(spec.block, prefix=f"{path}.0."))
    return rows


def resources_command() -> int:
    for descriptor in default_registry():
        print(f"{descriptor.name}\t{_format_timeouts(descriptor)}")
    return 0


def schema_command(type_name: str, output_format: str = "table") -> int:
    descriptor = default_registry().get(type_name)
    if output_format == "json":
        console.print_json(data=descriptor.describe())
        return 0

    table = Table(title=descriptor.name)
    table.add_column("Field")
    table.add_column("Kind")
    table.add_column("Flags")
    for row in _schema_rows(dict(descriptor.fields())):
        table.add_row(*row)
    console.print(table)
    return 0


def parse_id_command(type_name: str, import_id: str) -> int:
    descriptor = default_registry().get(type_name)
    importer = descriptor.importer()
    if importer is None:
        raise ValidationError(f"{type_name} does not support import")
    attributes: dict[str, Any] = importer.parse(import_id)
    console.print_json(data=attributes)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="otcprovider", description="Open Telekom Cloud resource tooling")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("resources", help="List registered resource types")

    schema_parser = subparsers.add_parser("schema", help="Show the schema of a resource type")
    schema_parser.add_argument("type_name", help="Resource type name")
    schema_parser.add_argument("--json", action="store_true", help="Output as JSON")

    parse_parser = subparsers.add_parser("parse-id", help="Decode an import id without contacting the cloud")
    parse_parser.add_argument("type_name", help="Resource type name")
    parse_parser.add_argument("import_id", help="Import id")
    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper(), json_output=False)

    if args.command == "resources":
        return resources_command()
    if args.command == "schema":
        return schema_command(args.type_name, "json" if args.json else "table")
    if args.command == "parse-id":
        return parse_id_command(args.type_name, args.import_id)

    parser.print_help()
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via module entrypoint
    raise SystemExit(main())
