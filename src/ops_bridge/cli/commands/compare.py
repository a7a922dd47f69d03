"""
Source/target comparison command.
"""

import click

from ops_bridge.cli.context import BridgeContext
from ops_bridge.cli.decorators import handle_errors, pass_context
from ops_bridge.cli.utils import echo_json, echo_success, echo_warning, print_table
from ops_bridge.migration.comparator import ComparisonResult
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="compare")
@click.option("--source", "-s", required=True, help="Source connection name or file")
@click.option("--target", "-t", required=True, help="Target connection name or file")
@click.option("--collection", required=True, help="Namespace or database to compare")
@click.option("--unit", "-u", "unit_names", multiple=True, help="Unit to compare (repeatable)")
@click.option(
    "--type",
    "-T",
    "unit_type",
    default="table",
    show_default=True,
    help="Unit type to compare",
)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.option(
    "--fail-on-divergence",
    is_flag=True,
    help="Exit with status 1 when any unit differs",
)
@pass_context
@handle_errors
def compare(
    ctx: BridgeContext,
    source: str,
    target: str,
    collection: str,
    unit_names: tuple[str, ...],
    unit_type: str,
    as_json: bool,
    fail_on_divergence: bool,
) -> None:
    """Compare unit existence and row counts between two systems.

    Without --unit, every unit of the given type in the source collection
    is compared. Divergent units are listed first.

    Examples:

        ops-bridge -c config.yaml compare -s prod-db -t staging-db --collection shop

        ops-bridge -c config.yaml compare -s old -t new --collection web -T deployments
    """
    result = ctx.comparison_engine.compare(
        ctx.resolve_connection(source),
        ctx.resolve_connection(target),
        collection,
        list(unit_names),
        unit_type=unit_type,
    )

    if as_json:
        echo_json(result.to_dict())
    else:
        display_comparison(result)
        if result.divergent:
            echo_warning(f"{len(result.divergent)} unit(s) differ between source and target")
        else:
            echo_success("Source and target match")

    if result.divergent and fail_on_divergence:
        raise click.exceptions.Exit(1)


def display_comparison(result: ComparisonResult) -> None:
    """Print a comparison as a table."""
    rows = []
    for comparison in result.units:
        rows.append(
            [
                comparison.unit.name,
                comparison.row_count_source if comparison.exists_in_source else "missing",
                comparison.row_count_target if comparison.exists_in_target else "missing",
                "[red]yes[/red]" if comparison.divergent else "",
            ]
        )
    print_table(
        f"{result.collection}: {result.source_count} source / {result.target_count} target",
        ["Unit", "Source", "Target", "Divergent"],
        rows,
    )
