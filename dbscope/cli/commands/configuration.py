"""Configuration management CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from dbscope.cli.utils import console
from dbscope.config import create_sample_config, load_config
from dbscope.exceptions import ConfigurationError


@click.group(name="config")
def config_group() -> None:
    """⚙️  Configuration management."""
    pass


@config_group.command(name="validate")
@click.argument("config_file", type=click.Path(exists=True))
def validate_command(config_file: str) -> None:
    """Validate configuration file."""
    try:
        config = load_config(config_file, required=True)
        console.print(f"[green]✅ Configuration file '{config_file}' is valid[/green]")
        console.print(f"Found {len(config.profiles)} profile(s): {', '.join(config.profiles.keys())}")
        console.print(f"Default profile: [cyan]{config.default_profile}[/cyan]")
        console.print(f"History backend: [cyan]{config.history.backend if config.history.enabled else 'disabled'}[/cyan]")
    except ConfigurationError as exc:
        console.print(f"[red]❌ Configuration validation failed: {exc}[/red]")
        raise SystemExit(1) from exc
    except Exception as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise SystemExit(1) from exc


@config_group.command(name="sample")
@click.argument("output_file", type=click.Path())
def sample_command(output_file: str) -> None:
    """Create sample configuration file."""
    try:
        output_path = Path(output_file)
        if output_path.exists():
            click.confirm(f"File '{output_file}' exists. Overwrite?", abort=True)

        create_sample_config(output_path)
        console.print(f"[green]✅ Sample configuration created: {output_file}[/green]")
        console.print("\n[yellow]Next steps:[/yellow]")
        console.print("1. Edit the profiles to match your clusters")
        console.print("2. Set required environment variables (e.g., SCYLLA_PASSWORD)")
        console.print(f"3. Validate: [cyan]dbscope config validate {output_file}[/cyan]")
    except click.Abort:
        raise
    except Exception as exc:
        console.print(f"[red]Error creating sample configuration: {exc}[/red]")
        raise SystemExit(1) from exc
