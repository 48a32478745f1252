"""Main CLI entry point for DBScope."""

from __future__ import annotations

import logging

import click
from rich.panel import Panel
from rich.text import Text

from dbscope import __version__
from dbscope.cli.commands import register_commands
from dbscope.cli.commands.backends import backends_command
from dbscope.cli.commands.configuration import config_group
from dbscope.cli.commands.database import db_group, query_command
from dbscope.cli.utils import console
from dbscope.config import EnvironmentSettings


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    config: str,
    verbose: bool,
) -> None:
    """DBScope - Explore NoSQL databases from one interface."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "config": config,
            "verbose": verbose,
        }
    )
    configure_logging(verbose)

    if version:
        console.print(f"DBScope v{__version__}")
        return

    if ctx.invoked_subcommand is None:
        show_dashboard()


# Commands are registered in workflow order:
# 1) Discovery, 2) Exploration and queries, 3) Environment tools.
COMMAND_REGISTRY = [
    backends_command,
    db_group,
    query_command,
    config_group,
]

register_commands(cli, COMMAND_REGISTRY)


def configure_logging(verbose: bool) -> None:
    """Route library logging to stderr at the configured level."""
    env_settings = EnvironmentSettings()
    level = logging.DEBUG if verbose or env_settings.debug else env_settings.log_level.upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def show_dashboard() -> None:
    """Display the main interactive dashboard."""
    title = Text("DBScope", style="bold blue")
    subtitle = Text("Explore NoSQL databases from one interface", style="italic")

    dashboard_content = Text()
    dashboard_content.append("🧩 Supported Backends\n", style="bold")
    dashboard_content.append("🔌 Test Connections\n", style="bold")
    dashboard_content.append("🗄️  Browse Keyspaces and Tables\n", style="bold")
    dashboard_content.append("📐 Inspect Schemas and Indexes\n", style="bold")
    dashboard_content.append("🔎 Run Paginated Queries\n", style="bold")
    dashboard_content.append("⚙️  Configure Profiles\n", style="bold")
    dashboard_content.append("\nRun 'dbscope --help' for available commands", style="dim")

    panel = Panel(
        dashboard_content,
        title=title,
        subtitle=subtitle,
        border_style="blue",
        padding=(1, 2),
    )

    console.print(panel)


if __name__ == "__main__":
    cli()
