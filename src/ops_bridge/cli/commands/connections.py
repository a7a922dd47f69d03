"""
Connection inspection commands.

This module provides commands for testing connections and browsing the
collections and units they expose.
"""

import click

from ops_bridge.cli.context import BridgeContext
from ops_bridge.cli.decorators import handle_errors, pass_context
from ops_bridge.cli.utils import echo_error, echo_json, echo_success, print_table
from ops_bridge.exceptions import ConnectionFailedError
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="connections")
def connections() -> None:
    """Connection inspection commands.

    CONNECTION is the name of a configured connection or the path of a
    YAML/JSON file holding one.
    """
    pass


@connections.command(name="test")
@click.argument("connection")
@pass_context
@handle_errors
def test(ctx: BridgeContext, connection: str) -> None:
    """Test that a connection is reachable.

    Examples:

        ops-bridge --config config.yaml connections test prod-db
    """
    config = ctx.resolve_connection(connection)
    ok, message = ctx.service.connector_factory(config).test_connection(config)
    if not ok:
        echo_error(f"{config.display_name}: {message}")
        raise ConnectionFailedError(message, system=config.system_type.value)
    echo_success(f"{config.display_name}: {message}")


@connections.command(name="collections")
@click.argument("connection")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_context
@handle_errors
def collections(ctx: BridgeContext, connection: str, as_json: bool) -> None:
    """List the namespaces or databases of a connection."""
    config = ctx.resolve_connection(connection)
    connector = ctx.service.connector_factory(config)
    conn = connector.connect(config)
    try:
        names = connector.list_collections(conn)
    finally:
        connector.close(conn)

    if as_json:
        echo_json(names)
        return
    print_table(f"Collections on {config.display_name}", ["Name"], [[name] for name in names])


@connections.command(name="units")
@click.argument("connection")
@click.argument("collection")
@click.option(
    "--type",
    "-T",
    "unit_types",
    multiple=True,
    help="Unit type to list (repeatable; defaults to all)",
)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_context
@handle_errors
def units(
    ctx: BridgeContext,
    connection: str,
    collection: str,
    unit_types: tuple[str, ...],
    as_json: bool,
) -> None:
    """List the units in one collection of a connection.

    Examples:

        ops-bridge connections units cluster.yaml web --type deployments --type services
    """
    config = ctx.resolve_connection(connection)
    connector = ctx.service.connector_factory(config)
    conn = connector.connect(config)
    try:
        found = connector.list_units(conn, collection, list(unit_types) or None)
    finally:
        connector.close(conn)

    if as_json:
        echo_json([unit.to_dict() for unit in found])
        return
    print_table(
        f"Units in {collection}",
        ["Type", "Name"],
        [[unit.unit_type, unit.name] for unit in found],
    )
