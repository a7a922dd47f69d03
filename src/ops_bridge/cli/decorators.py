"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
and other common CLI patterns.
"""

import functools
from collections.abc import Callable

import click

from ops_bridge.cli.context import BridgeContext
from ops_bridge.exceptions import (
    ComparisonError,
    ConfigurationError,
    ConnectionFailedError,
    ConnectorError,
    EmptySelectionError,
    InvalidStateError,
    StateError,
    TaskNotFoundError,
)
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass BridgeContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: BridgeContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        bridge_ctx: BridgeContext = click_ctx.obj
        return f(bridge_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error
        2: Configuration or selection error
        3: Connection error
        4: Discovery or comparison error
        5: Task state error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except (click.exceptions.Exit, click.ClickException):
            raise

        except (ConfigurationError, EmptySelectionError) as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        except ConnectionFailedError as e:
            logger.error("connection_error", error=str(e))
            click.echo(f"Connection Error: {e}", err=True)
            click.echo("\nPlease verify the address and credentials of the connection.", err=True)
            raise click.exceptions.Exit(3) from e

        except ComparisonError as e:
            logger.error("comparison_error", collection=e.collection, error=str(e))
            click.echo(f"Comparison Error: {e}", err=True)
            if e.partial:
                click.echo(f"\nCompared before the failure: {', '.join(e.partial)}", err=True)
            raise click.exceptions.Exit(4) from e

        except ConnectorError as e:
            logger.error("discovery_error", error=str(e))
            click.echo(f"Discovery Error: {e}", err=True)
            raise click.exceptions.Exit(4) from e

        except (StateError, InvalidStateError, TaskNotFoundError) as e:
            logger.error("state_error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            raise click.exceptions.Exit(5) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """
    Decorator to ensure a configuration file is given and loads cleanly.
    """

    @functools.wraps(f)
    def wrapper(ctx: BridgeContext, *args, **kwargs):
        if ctx.config_path is None:
            click.echo(
                "Error: Configuration file required. Use --config option or set OPS_BRIDGE_CONFIG.",
                err=True,
            )
            raise click.exceptions.Exit(2)

        try:
            _ = ctx.config
        except ConfigurationError as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    Skipped when the command was invoked with ``--yes``.
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator
