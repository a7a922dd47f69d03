"""
Main CLI entry point for Ops Bridge.

This module provides the command-line interface for migrating Kubernetes
namespaces and MySQL tables between systems.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from ops_bridge import __version__
from ops_bridge.cli.commands import compare as compare_commands
from ops_bridge.cli.commands import config as config_commands
from ops_bridge.cli.commands import connections as connections_commands
from ops_bridge.cli.commands import migrate as migrate_commands
from ops_bridge.cli.commands import serve as serve_commands
from ops_bridge.cli.context import BridgeContext
from ops_bridge.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="ops-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="OPS_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="OPS_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Also write JSON logs to this file",
    envvar="OPS_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """Ops Bridge - Migrate Kubernetes namespaces and MySQL tables between systems.

    Connections are referenced by their name in the configuration file or
    by the path of a YAML/JSON file holding a single connection.

    Examples:

        # Validate configuration
        ops-bridge -c config.yaml config validate --check-connectivity

        # Copy two tables and wait for the result
        ops-bridge -c config.yaml migrate run -s prod-db -t staging-db \\
            --collection shop --unit users --unit orders

        # Compare a namespace between clusters
        ops-bridge -c config.yaml compare -s old -t new --collection web --type deployments

        # Serve the HTTP API
        ops-bridge -c config.yaml serve
    """
    configure_logging(level=log_level, log_file=str(log_file) if log_file else None)

    ctx.obj = BridgeContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )
    ctx.call_on_close(ctx.obj.cleanup)

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(config_commands.config)
cli.add_command(connections_commands.connections)
cli.add_command(migrate_commands.migrate)

# Register standalone commands
cli.add_command(compare_commands.compare)
cli.add_command(serve_commands.serve)


def main() -> int:
    """Main entry point for CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
