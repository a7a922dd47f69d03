"""
Configuration management commands.

This module provides commands for validating and displaying the
Ops Bridge configuration.
"""

from pathlib import Path

import click

from ops_bridge.cli.context import BridgeContext
from ops_bridge.cli.decorators import handle_errors, pass_context, requires_config
from ops_bridge.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from ops_bridge.config import BridgeConfig
from ops_bridge.exceptions import ConnectionFailedError, StateError
from ops_bridge.migration.database import validate_database_connection
from ops_bridge.utils.logging import get_logger, sanitize_payload

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and display Ops Bridge configuration files.
    """
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Test connectivity to every configured connection",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: BridgeContext, check_connectivity: bool) -> None:
    """Validate the configuration file.

    This command checks that the file parses, that every named connection
    is well formed and that the state database is reachable. With
    --check-connectivity it also connects to each configured system.

    Examples:

        # Basic validation
        ops-bridge --config config.yaml config validate

        # Validate and test connectivity
        ops-bridge --config config.yaml config validate --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")
    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    echo_info("Validating state database...")
    _validate_state_database(config)

    if not config.connections:
        echo_warning("No named connections configured")

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        _test_connectivity(ctx)

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: BridgeConfig) -> None:
    """Display configuration summary."""
    rows = [
        ["State Database", config.state.database_url],
        ["Default Batch Size", config.performance.batch_size],
        ["Connect Attempts", config.performance.retry_attempts],
        ["kubectl Timeout (s)", config.performance.kubectl_timeout],
        ["API Address", f"{config.server.host}:{config.server.port}"],
    ]
    for name, connection in sorted(config.connections.items()):
        rows.append([f"Connection '{name}'", f"{connection.system_type.value} {connection.display_name}"])

    print_table(
        "Configuration Summary",
        ["Setting", "Value"],
        rows,
    )


def _validate_state_database(config: BridgeConfig) -> None:
    url = config.state.database_url
    if url.startswith("sqlite:///"):
        db_dir = Path(url.removeprefix("sqlite:///")).parent
        if not db_dir.is_dir():
            echo_error(f"Database directory does not exist: {db_dir}")
            raise StateError(f"Invalid database directory: {db_dir}")

    if not validate_database_connection(url):
        echo_error(f"Cannot open state database: {url}")
        raise StateError(f"State database unreachable: {url}")

    echo_success("State database is reachable")


def _test_connectivity(ctx: BridgeContext) -> None:
    """Test every named connection, failing after all were tried."""
    failures = []
    for name, connection in sorted(ctx.config.connections.items()):
        connector = ctx.service.connector_factory(connection)
        ok, message = connector.test_connection(connection)
        if ok:
            echo_success(f"{name}: {message}")
        else:
            echo_error(f"{name}: {message}")
            failures.append(name)

    if failures:
        raise ConnectionFailedError(
            f"Unreachable connections: {', '.join(failures)}", system="config"
        )


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: BridgeContext) -> None:
    """Display current configuration.

    Shows the loaded configuration with credentials masked.

    Examples:

        ops-bridge --config config.yaml config show
    """
    config = ctx.config

    _display_config_summary(config)

    click.echo("\nConnections:")
    for name, connection in sorted(config.connections.items()):
        click.echo(f"  {name}:")
        for key, value in sanitize_payload(connection.model_dump(mode="json")).items():
            click.echo(f"    {key}: {value}")

    click.echo("\nLogging Configuration:")
    click.echo(f"  Level: {config.logging.level}")
    click.echo(f"  File: {config.logging.file or 'disabled'}")
