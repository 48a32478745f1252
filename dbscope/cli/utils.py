"""Shared CLI utilities for DBScope."""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape

from dbscope.config import ConnectionConfig, DBScopeConfig, load_config
from dbscope.db import SessionManager, create_session_manager
from dbscope.exceptions import ConfigurationError

# Single console instance reused across CLI modules
console = Console()


def print_exception(message: str, error: Exception, verbose: bool = False) -> None:
    """Render a formatted exception message.

    Args:
        message: Friendly context message to display before the exception.
        error: Original exception instance.
        verbose: When True, render the full traceback for debugging.
    """
    console.print(f"[red]{message}: {error}[/red]")
    if verbose:
        import traceback

        console.print(f"[dim]{traceback.format_exc()}[/dim]")


def connection_options(func: Callable) -> Callable:
    """Add the profile and inline connection options to a command."""
    options = [
        click.option("--profile", "-p", help="Connection profile from the configuration file"),
        click.option("--type", "backend_type", help="Backend type for an inline connection (e.g. cassandra)"),
        click.option("--host", help="Host or comma separated contact points"),
        click.option("--port", type=int, help="Port"),
        click.option("--username", "-u", help="Username"),
        click.option("--password", help="Password", envvar="DBSCOPE_PASSWORD"),
        click.option("--keyspace", "-k", help="Keyspace to use for the session"),
        click.option("--local-dc", help="Local data center"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def get_config(ctx: click.Context) -> DBScopeConfig:
    """Load (once) the configuration named by ``--config`` or the default locations."""
    if 'loaded_config' not in ctx.obj:
        ctx.obj['loaded_config'] = load_config(ctx.obj.get('config'))
    return ctx.obj['loaded_config']


def resolve_connection(config: DBScopeConfig, params: Dict[str, Any]) -> Tuple[str, ConnectionConfig]:
    """Backend type and connection settings from a profile, overridden by inline options.

    Raises:
        ConfigurationError: If no backend type can be determined.
    """
    profile_name = params.get('profile')
    inline = {
        'host': params.get('host'),
        'port': params.get('port'),
        'username': params.get('username'),
        'password': params.get('password'),
        'keyspace': params.get('keyspace'),
        'local_data_center': params.get('local_dc'),
    }
    inline = {key: value for key, value in inline.items() if value is not None}

    if profile_name is None and not params.get('backend_type'):
        profile_name = config.default_profile

    if profile_name is not None:
        if profile_name not in config.profiles:
            available = ', '.join(config.profiles) or 'none'
            raise ConfigurationError(f"Profile '{profile_name}' not found. Available: {available}")
        profile = config.profiles[profile_name]
        backend_type = params.get('backend_type') or profile.type
        settings = profile.connection_fields().model_copy(update=inline)
        return backend_type, settings

    if not params.get('backend_type'):
        raise ConfigurationError("No connection profile configured; pass --profile or --type and --host")
    return params['backend_type'], ConnectionConfig(**inline)


def build_manager(ctx: click.Context) -> SessionManager:
    return create_session_manager(get_config(ctx))


@contextmanager
def open_session(ctx: click.Context, params: Dict[str, Any]) -> Iterator[Tuple[SessionManager, str]]:
    """Connect for the duration of one command and close everything on exit."""
    config = get_config(ctx)
    backend_type, settings = resolve_connection(config, params)
    manager = build_manager(ctx)
    try:
        result = manager.connect(backend_type, settings)
        if ctx.obj.get('verbose'):
            console.print(f"[dim]Connected ({result.connection_id}) in {result.execution_time_ms} ms[/dim]")
        yield manager, result.connection_id
    finally:
        manager.close_all()


def handle_errors(func: Callable) -> Callable:
    """Turn DBScope and unexpected errors into a red message and exit code 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        verbose = bool(ctx.obj and ctx.obj.get('verbose'))
        try:
            return func(*args, **kwargs)
        except (click.exceptions.Exit, click.Abort, click.ClickException):
            raise
        except ConfigurationError as exc:
            print_exception("Configuration Error", exc, verbose)
            raise SystemExit(1) from exc
        except Exception as exc:
            print_exception("Error", exc, verbose)
            raise SystemExit(1) from exc

    return wrapper


def format_value(value: Optional[Any]) -> str:
    """Cell text for a result value."""
    if value is None:
        return "[dim]null[/dim]"
    return escape(str(value))
