"""
Migration task commands.

This module provides commands for creating, running and inspecting
migration tasks.
"""

import functools
from collections.abc import Callable
from pathlib import Path

import click
from pydantic import TypeAdapter, ValidationError

from ops_bridge.cli.context import BridgeContext
from ops_bridge.cli.decorators import confirm_action, handle_errors, pass_context
from ops_bridge.cli.utils import (
    echo_error,
    echo_info,
    echo_json,
    echo_success,
    echo_warning,
    format_count,
    load_json_or_yaml,
    print_stats,
    print_table,
)
from ops_bridge.config import CopyOptions, ResourceSelector
from ops_bridge.exceptions import ComparisonError, ConfigurationError
from ops_bridge.migration.comparator import ComparisonResult
from ops_bridge.migration.task import MigrationTask, TaskStatus
from ops_bridge.reporting import TaskProgressDisplay, generate_migration_report
from ops_bridge.reporting.colors import status_markup
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

_selectors_adapter = TypeAdapter(list[ResourceSelector])


def selection_options(f: Callable) -> Callable:
    """Options shared by ``migrate create`` and ``migrate run``."""
    options = [
        click.option("--source", "-s", required=True, help="Source connection name or file"),
        click.option("--target", "-t", required=True, help="Target connection name or file"),
        click.option("--collection", help="Namespace or database to migrate from"),
        click.option(
            "--type",
            "-T",
            "unit_types",
            multiple=True,
            help="Unit type to migrate, e.g. deployments (repeatable)",
        ),
        click.option("--unit", "-u", "units", multiple=True, help="Unit to migrate (repeatable)"),
        click.option("--all", "all_units", is_flag=True, help="Migrate every unit in the collection"),
        click.option("--target-collection", help="Destination namespace or database"),
        click.option(
            "--selectors-file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="YAML/JSON list of selectors (combined with the options above)",
        ),
        click.option("--batch-size", type=int, help="Rows per batch"),
        click.option(
            "--no-create-schema",
            is_flag=True,
            help="Fail units whose namespace, database or table is missing on the target",
        ),
        click.option("--truncate", is_flag=True, help="Recreate existing target tables"),
        click.option("--schema-only", is_flag=True, help="Copy structure only, skip rows"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _build_selectors(
    collection: str | None,
    unit_types: tuple[str, ...],
    units: tuple[str, ...],
    all_units: bool,
    target_collection: str | None,
    selectors_file: Path | None,
) -> list[ResourceSelector]:
    selectors = []
    if collection:
        selectors.append(
            ResourceSelector(
                collection=collection,
                unit_types=unit_types,
                units=units,
                all_units=all_units,
                target_collection=target_collection,
            )
        )
    elif unit_types or units or all_units or target_collection:
        raise ConfigurationError("--collection is required with --type, --unit, --all and --target-collection")

    if selectors_file:
        data = load_json_or_yaml(selectors_file)
        if isinstance(data, dict):
            data = data.get("selectors", [])
        try:
            selectors.extend(_selectors_adapter.validate_python(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid selectors file {selectors_file}: {e}") from e

    if not selectors:
        raise ConfigurationError("Give --collection or --selectors-file")
    return selectors


def _create(ctx: BridgeContext, params: dict) -> str:
    source = ctx.resolve_connection(params["source"])
    target = ctx.resolve_connection(params["target"])
    selectors = _build_selectors(
        params["collection"],
        params["unit_types"],
        params["units"],
        params["all_units"],
        params["target_collection"],
        params["selectors_file"],
    )
    options = CopyOptions(
        batch_size=params["batch_size"] or ctx.config.performance.batch_size,
        create_schema=not params["no_create_schema"],
        truncate_target=params["truncate"],
        only_sync_schema=params["schema_only"],
    )
    return ctx.service.create_task(source, target, selectors, options)


def _collect_params(f: Callable) -> Callable:
    """Gather the selection options into a single ``params`` dict."""
    names = [
        "source",
        "target",
        "collection",
        "unit_types",
        "units",
        "all_units",
        "target_collection",
        "selectors_file",
        "batch_size",
        "no_create_schema",
        "truncate",
        "schema_only",
    ]

    @functools.wraps(f)
    def wrapper(ctx: BridgeContext, *args, **kwargs):
        params = {name: kwargs.pop(name) for name in names}
        return f(ctx, params, *args, **kwargs)

    return wrapper


@click.group(name="migrate")
def migrate() -> None:
    """Migration task commands.

    Create tasks from a source, a target and one or more selectors, run
    them and inspect their progress and per-unit outcomes.
    """
    pass


@migrate.command(name="create")
@selection_options
@pass_context
@handle_errors
@_collect_params
def create(ctx: BridgeContext, params: dict) -> None:
    """Create a pending migration task.

    The selection is checked against the source; a selection matching
    no units is rejected and nothing is stored.

    Examples:

        ops-bridge -c config.yaml migrate create -s old -t new \\
            --collection web --type deployments --type services
    """
    task_id = _create(ctx, params)
    echo_success(f"Created task {task_id}")
    click.echo(task_id)


@migrate.command(name="start")
@click.argument("task_id")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar")
@pass_context
@handle_errors
def start(ctx: BridgeContext, task_id: str, no_progress: bool) -> None:
    """Start a pending task and wait for it to finish.

    The task runs in this process. Use ``serve`` to run tasks in the
    background.
    """
    ctx.service.start_task(task_id)
    echo_info(f"Started task {task_id}")

    task = TaskProgressDisplay(enabled=not no_progress).follow(ctx.service, task_id)
    _display_task(task)
    _exit_for(task)


@migrate.command(name="run")
@selection_options
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Write JSON and Markdown reports to this directory",
)
@click.option("--verify", is_flag=True, help="Compare source and target after the run")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar")
@pass_context
@handle_errors
@_collect_params
def run(
    ctx: BridgeContext,
    params: dict,
    report_dir: Path | None,
    verify: bool,
    no_progress: bool,
) -> None:
    """Create a task, run it and wait for the result.

    Examples:

        ops-bridge -c config.yaml migrate run -s prod-db -t staging-db \\
            --collection shop --unit users --unit orders --verify --report-dir reports
    """
    task_id = _create(ctx, params)
    echo_info(f"Created task {task_id}")

    ctx.service.start_task(task_id)
    task = TaskProgressDisplay(enabled=not no_progress).follow(ctx.service, task_id)
    _display_task(task)

    comparisons: dict[str, ComparisonResult] = {}
    verify_error: ComparisonError | None = None
    if verify and task.outcomes:
        try:
            comparisons = _verify(ctx, task)
        except ComparisonError as e:
            comparisons = dict(e.partial)
            verify_error = e

    if report_dir:
        files = generate_migration_report(task, str(report_dir), comparisons=comparisons)
        for fmt, path in files.items():
            echo_info(f"{fmt} report: {path}")

    if verify_error is not None:
        raise verify_error
    _exit_for(task)


def _verify(ctx: BridgeContext, task: MigrationTask) -> dict[str, ComparisonResult]:
    """Compare the migrated units, grouped by collection and unit type."""
    renamed = {s.collection for s in task.selectors if s.destination != s.collection}
    groups: dict[tuple[str, str], list[str]] = {}
    for outcome in task.outcomes:
        unit = outcome.unit
        if unit.collection in renamed:
            continue
        groups.setdefault((unit.collection, unit.unit_type), []).append(unit.name)
    if renamed:
        echo_warning(f"Skipping verification of renamed collections: {', '.join(sorted(renamed))}")

    results: dict[str, ComparisonResult] = {}
    for (collection, unit_type), names in groups.items():
        key = f"{collection}/{unit_type}"
        try:
            result = ctx.comparison_engine.compare(
                task.source, task.target, collection, names, unit_type=unit_type
            )
        except ComparisonError as e:
            raise ComparisonError(str(e), collection=key, partial=results) from e
        results[key] = result
        if result.divergent:
            echo_warning(f"{key}: {len(result.divergent)} unit(s) differ")
        else:
            echo_success(f"{key}: source and target match")
    return results


@migrate.command(name="status")
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, help="Print the progress document as JSON")
@pass_context
@handle_errors
def status(ctx: BridgeContext, task_id: str, as_json: bool) -> None:
    """Show the progress of a task."""
    if as_json:
        echo_json(ctx.service.get_progress(task_id))
        return
    _display_task(ctx.service.get_task(task_id))


@migrate.command(name="list")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_context
@handle_errors
def list_tasks(ctx: BridgeContext, as_json: bool) -> None:
    """List tasks, newest first."""
    tasks = ctx.service.list_tasks()
    if as_json:
        echo_json([task.summary() for task in tasks])
        return

    rows = [
        [
            task.task_id,
            status_markup(task.status),
            f"{task.progress:.1f}%",
            f"{task.source.display_name} -> {task.target.display_name}",
            ", ".join(selector.collection for selector in task.selectors),
            task.created_at.strftime("%Y-%m-%d %H:%M:%S") if task.created_at else "",
        ]
        for task in tasks
    ]
    print_table("Migration Tasks", ["Task", "Status", "Progress", "Route", "Collections", "Created"], rows)


@migrate.command(name="cancel")
@click.argument("task_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@handle_errors
@confirm_action("Cancel this task?")
def cancel(ctx: BridgeContext, task_id: str, yes: bool) -> None:
    """Cancel a pending or running task."""
    new_status = ctx.service.cancel_task(task_id)
    if new_status == TaskStatus.CANCELLED:
        echo_success(f"Task {task_id} cancelled")
    else:
        echo_info(f"Cancellation requested; task {task_id} stops after the current batch")


@migrate.command(name="outcomes")
@click.argument("task_id")
@click.option("--failed-only", is_flag=True, help="Only show failed units")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_context
@handle_errors
def outcomes(ctx: BridgeContext, task_id: str, failed_only: bool, as_json: bool) -> None:
    """Show the per-unit outcomes of a task."""
    results = ctx.service.get_outcomes(task_id)
    if failed_only:
        results = [outcome for outcome in results if not outcome.success]

    if as_json:
        echo_json([outcome.to_dict() for outcome in results])
        return

    rows = [
        [
            outcome.unit.key,
            "[green]ok[/green]" if outcome.success else "[red]failed[/red]",
            format_count(outcome.rows_migrated),
            format_count(outcome.rows_failed),
            outcome.error_message or "",
        ]
        for outcome in results
    ]
    print_table(f"Outcomes of {task_id}", ["Unit", "Result", "Rows", "Failed Rows", "Error"], rows)


def _display_task(task: MigrationTask) -> None:
    print_stats(
        {
            "task_id": task.task_id,
            "status": task.status.value,
            "progress": f"{task.progress:.1f}%",
            "units": f"{task.succeeded} succeeded, {task.failed} failed of {len(task.units)}",
            "rows_migrated": format_count(task.migrated_rows),
            "rows_failed": format_count(task.failed_rows),
            "current_unit": task.current_unit or "-",
        },
        title="Task Status",
    )
    if task.error_message:
        echo_error(task.error_message)


def _exit_for(task: MigrationTask) -> None:
    if task.status == TaskStatus.COMPLETED:
        if task.failed:
            echo_warning(f"Completed with {task.failed} failed unit(s)")
        else:
            echo_success("Migration completed")
        return
    raise click.exceptions.Exit(1)
