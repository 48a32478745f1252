"""Backend discovery CLI command."""

from __future__ import annotations

import json

import click
from rich.table import Table

from dbscope.cli.utils import console, get_config, handle_errors
from dbscope.db import create_default_registry


@click.command(name="backends")
@click.option("--json", "as_json", is_flag=True, help="Print adapter descriptors as JSON")
@click.pass_context
@handle_errors
def backends_command(ctx: click.Context, as_json: bool) -> None:
    """🧩 List supported database backends and their capabilities."""
    registry = create_default_registry(get_config(ctx).queries)
    descriptors = registry.describe_all()

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in descriptors], indent=2))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Language", style="yellow")
    table.add_column("Schema", style="white")
    table.add_column("Keyspaces", justify="center")
    table.add_column("Indexes", justify="center")
    table.add_column("Aggregation", justify="center")
    table.add_column("Transactions", justify="center")

    def flag(value: bool) -> str:
        return "✓" if value else ""

    for descriptor in descriptors:
        caps = descriptor.capabilities
        table.add_row(
            descriptor.backend_type,
            f"{descriptor.icon} {descriptor.display_name}".strip(),
            caps.query_language.value.upper(),
            caps.schema_type.value,
            flag(caps.supports_keyspaces),
            flag(caps.supports_indexes),
            flag(caps.supports_aggregation),
            flag(caps.supports_transactions),
        )

    console.print(table)
