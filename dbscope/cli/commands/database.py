"""Database exploration CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from dbscope.cli.utils import (
    build_manager,
    connection_options,
    console,
    format_value,
    get_config,
    handle_errors,
    open_session,
    resolve_connection,
)
from dbscope.db import QueryRequest, QueryResult


@click.group(name="db")
@click.pass_context
def db_group(ctx: click.Context) -> None:
    """🗄️  Explore keyspaces, tables and schemas."""
    pass


@db_group.command(name="test")
@connection_options
@click.pass_context
@handle_errors
def test_connection_command(ctx: click.Context, **params) -> None:
    """Test a connection without opening a session."""
    backend_type, settings = resolve_connection(get_config(ctx), params)
    manager = build_manager(ctx)
    try:
        result = manager.test_connection(backend_type, settings)
    finally:
        manager.close_all()

    console.print("[bold blue]Testing Database Connection[/bold blue]\n")
    status_color = "green" if result.success else "red"
    console.print(f"Backend: [cyan]{backend_type}[/cyan]")
    console.print(f"Status: [{status_color}]{result.status.upper()}[/{status_color}]")
    console.print(f"Message: {result.message}")
    console.print(f"Response Time: {result.execution_time_ms} ms")
    if not result.success:
        raise SystemExit(1)


@db_group.command(name="databases")
@connection_options
@click.pass_context
@handle_errors
def databases_command(ctx: click.Context, **params) -> None:
    """List keyspaces (system keyspaces are hidden)."""
    with open_session(ctx, params) as (manager, session_id):
        databases = manager.list_databases(session_id)

    if not databases:
        console.print("[yellow]No databases found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Name", style="cyan")
    table.add_column("Collections", style="green", justify="right")
    for i, database in enumerate(databases, start=1):
        table.add_row(str(i), database.name, str(database.collections_count or 0))
    console.print(table)
    console.print(f"\n[dim]Total: {len(databases)} database(s)[/dim]")


@db_group.command(name="collections")
@click.argument("database")
@connection_options
@click.pass_context
@handle_errors
def collections_command(ctx: click.Context, database: str, **params) -> None:
    """List the tables of DATABASE."""
    with open_session(ctx, params) as (manager, session_id):
        collections = manager.list_collections(session_id, database)

    console.print(f"[bold blue]Collections in {database}[/bold blue]\n")
    if not collections:
        console.print("[yellow]No collections found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Name", style="cyan")
    table.add_column("Columns", style="green", justify="right")
    for i, collection in enumerate(collections, start=1):
        table.add_row(str(i), collection.name, str(collection.columns_count or 0))
    console.print(table)
    console.print(f"\n[dim]Total: {len(collections)} collection(s)[/dim]")


@db_group.command(name="schema")
@click.argument("database")
@click.argument("collection")
@connection_options
@click.pass_context
@handle_errors
def schema_command(ctx: click.Context, database: str, collection: str, **params) -> None:
    """Describe the columns and indexes of DATABASE.COLLECTION."""
    with open_session(ctx, params) as (manager, session_id):
        schema = manager.get_schema(session_id, database, collection)

    console.print(f"[bold blue]Table Structure: {database}.{collection}[/bold blue]\n")
    console.print("[bold cyan]Column Details[/bold cyan]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Native Type", style="white")
    table.add_column("Key", style="blue")
    table.add_column("Order", style="yellow")

    for column in schema.columns:
        key = "partition" if column.partition_key else ("clustering" if column.primary_key else "")
        table.add_row(
            column.name,
            column.type,
            format_value(column.native_type),
            key,
            column.clustering_order or "",
        )
    console.print(table)

    if schema.indexes:
        console.print("\n[bold cyan]Indexes[/bold cyan]")
        _print_indexes(schema.indexes)


@db_group.command(name="indexes")
@click.argument("database")
@click.argument("collection")
@connection_options
@click.pass_context
@handle_errors
def indexes_command(ctx: click.Context, database: str, collection: str, **params) -> None:
    """List secondary indexes of DATABASE.COLLECTION."""
    with open_session(ctx, params) as (manager, session_id):
        indexes = manager.list_indexes(session_id, database, collection)

    if not indexes:
        console.print("[yellow]No indexes found[/yellow]")
        return
    _print_indexes(indexes)


@db_group.command(name="info")
@connection_options
@click.pass_context
@handle_errors
def info_command(ctx: click.Context, **params) -> None:
    """Show backend version and topology."""
    with open_session(ctx, params) as (manager, session_id):
        info = manager.get_system_info(session_id)

    console.print("[bold blue]Database Information[/bold blue]\n")
    table = Table(show_header=False, box=None)
    table.add_column("Property", style="cyan", width=15)
    table.add_column("Value", style="green")
    values = {
        'version': info.version,
        'cluster_name': info.cluster_name,
        'nodes_count': info.nodes_count,
        **info.extra,
    }
    for key, value in values.items():
        if value is not None:
            table.add_row(f"{key.replace('_', ' ').title()}:", str(value))
    console.print(table)


@click.command(name="query")
@click.argument("statement")
@click.option("--page-size", type=int, help="Rows per page (default from configuration)")
@click.option("--page-state", help="Page state returned by a previous page")
@click.option("--export", "export_path", type=click.Path(dir_okay=False), help="Write the page to a .csv or .json file")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@connection_options
@click.pass_context
@handle_errors
def query_command(
    ctx: click.Context,
    statement: str,
    page_size: Optional[int],
    page_state: Optional[str],
    export_path: Optional[str],
    as_json: bool,
    **params,
) -> None:
    """🔎 Run a read-only STATEMENT and show one page of results."""
    request = QueryRequest(text=statement, page_size=page_size, page_state=page_state)
    with open_session(ctx, params) as (manager, session_id):
        result = manager.execute_query(session_id, request)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    elif result.success:
        _print_result(result)

    if not result.success:
        if not as_json:
            console.print(f"[red]Query failed: {result.error}[/red]")
        raise SystemExit(1)

    if export_path:
        _export_result(result, Path(export_path))


def _print_indexes(indexes) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Column", style="green")
    table.add_column("Target", style="yellow")
    table.add_column("Kind", style="white")
    for index in indexes:
        table.add_row(index.name, index.column, index.kind or "", index.type or "")
    console.print(table)


def _print_result(result: QueryResult) -> None:
    if result.is_empty:
        console.print("[yellow]No rows returned[/yellow]")
    else:
        table = Table(show_header=True, header_style="bold magenta")
        for column in result.columns:
            table.add_column(f"{column.name}\n[dim]{column.type}[/dim]")
        for row in result.rows:
            table.add_row(*[format_value(row.get(column.name)) for column in result.columns])
        console.print(table)

    console.print(f"\n[dim]{result.row_count} row(s) in {result.execution_time_ms} ms[/dim]")
    if result.page_state:
        console.print(f"[dim]Next page: --page-state {result.page_state}[/dim]")


def _export_result(result: QueryResult, path: Path) -> None:
    frame = result.to_dataframe()
    if path.suffix.lower() == '.json':
        frame.to_json(path, orient='records', date_format='iso', default_handler=str, indent=2)
    else:
        frame.to_csv(path, index=False)
    console.print(f"[green]✅ Exported {len(frame)} row(s) to {path}[/green]")
