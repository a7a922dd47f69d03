"""Migration executor.

Runs one task from ``running`` to a terminal state: opens one connection per
side, resolves the task's selectors against the source, then migrates each
unit in order. Unit failures are recorded and iteration continues; only
connection, discovery and empty-selection errors fail the task as a whole.
A connection lost in the middle of a unit fails the task too.
"""

import threading
from datetime import datetime, timezone

from ops_bridge.config import CopyOptions, ResourceSelector
from ops_bridge.connectors.base import (
    Connection,
    Connector,
    MigrationUnit,
    UnitDefinition,
    WriteOptions,
)
from ops_bridge.exceptions import (
    ConnectionFailedError,
    DiscoveryError,
    EmptySelectionError,
    NotFoundError,
    WriteError,
)
from ops_bridge.migration.selector import resolve_selectors
from ops_bridge.migration.state import TaskStore
from ops_bridge.migration.task import MigrationTask, TaskStatus, UnitOutcome
from ops_bridge.utils.logging import get_logger, log_migration_progress

logger = get_logger(__name__)


class _CancelRequested(Exception):
    """Raised between batches when the task's cancel flag is set."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def write_options_for(
    unit: MigrationUnit, selectors: list[ResourceSelector], options: CopyOptions
) -> WriteOptions:
    """Build write options for a unit, taking the destination from its selector."""
    target_collection = next(
        (s.target_collection for s in selectors if s.collection == unit.collection), None
    )
    return WriteOptions(
        create_schema=options.create_schema,
        truncate_target=options.truncate_target,
        only_sync_schema=options.only_sync_schema,
        target_collection=target_collection,
    )


class MigrationExecutor:
    """Executes migration tasks between a source and a target connector."""

    def __init__(self, source: Connector, target: Connector, store: TaskStore):
        """Initialize migration executor.

        Args:
            source: Connector for the source system
            target: Connector for the target system
            store: Task store receiving progress and outcomes
        """
        self.source = source
        self.target = target
        self.store = store

    def run(self, task_id: str, cancel_event: threading.Event | None = None) -> MigrationTask:
        """Move a pending task to running and execute it.

        Raises:
            InvalidStateError: If the task is not pending
        """
        self.store.transition(task_id, TaskStatus.RUNNING, allowed_from={TaskStatus.PENDING})
        return self.execute(task_id, cancel_event)

    def execute(self, task_id: str, cancel_event: threading.Event | None = None) -> MigrationTask:
        """Execute a task that is already running and return its final snapshot.

        A task that is no longer running (for example cancelled before its
        worker got here) is returned untouched.
        """
        cancel_event = cancel_event or threading.Event()
        task = self.store.get(task_id)
        if task.status != TaskStatus.RUNNING:
            logger.warning("task_not_running", task_id=task_id, status=task.status.value)
            return task

        logger.info(
            "task_started",
            task_id=task_id,
            source=task.source.display_name,
            target=task.target.display_name,
        )

        source_conn: Connection | None = None
        target_conn: Connection | None = None
        try:
            source_conn = self.source.connect(task.source)
            target_conn = self.target.connect(task.target)
            units = resolve_selectors(self.source, source_conn, task.selectors)
            self.store.set_units(task_id, units)
            status, error = self._migrate_units(
                task, units, source_conn, target_conn, cancel_event
            )
        except (ConnectionFailedError, DiscoveryError, EmptySelectionError) as e:
            logger.error("task_failed", task_id=task_id, error=str(e))
            status, error = TaskStatus.FAILED, str(e)
        finally:
            if source_conn is not None:
                self.source.close(source_conn)
            if target_conn is not None:
                self.target.close(target_conn)

        final = self.store.transition(
            task_id, status, allowed_from={TaskStatus.RUNNING}, error_message=error
        )
        logger.info(
            "task_finished",
            task_id=task_id,
            status=final.status.value,
            succeeded=final.succeeded,
            failed=final.failed,
        )
        return final

    def _migrate_units(
        self,
        task: MigrationTask,
        units: list[MigrationUnit],
        source_conn: Connection,
        target_conn: Connection,
        cancel_event: threading.Event,
    ) -> tuple[TaskStatus, str | None]:
        total = len(units)
        succeeded = 0
        processed = 0
        cancelled = False

        for position, unit in enumerate(units):
            if cancel_event.is_set():
                cancelled = True
                break

            options = write_options_for(unit, task.selectors, task.options)
            self.store.set_current_unit(task.task_id, unit)
            try:
                outcome = self._migrate_unit(
                    task, unit, options, source_conn, target_conn, cancel_event
                )
            except _CancelRequested:
                logger.info("unit_interrupted", task_id=task.task_id, unit=unit.key)
                cancelled = True
                break

            processed += 1
            succeeded += outcome.success
            self.store.record_outcome(task.task_id, position, outcome, processed / total * 100)
            log_migration_progress(logger, task.task_id, processed, total, unit=unit.key)

        if cancelled:
            return TaskStatus.CANCELLED, None
        if succeeded == 0:
            return TaskStatus.FAILED, f"all {total} units failed"
        return TaskStatus.COMPLETED, None

    def _migrate_unit(
        self,
        task: MigrationTask,
        unit: MigrationUnit,
        options: WriteOptions,
        source_conn: Connection,
        target_conn: Connection,
        cancel_event: threading.Event,
    ) -> UnitOutcome:
        outcome = UnitOutcome(unit=unit, success=False, started_at=_now())
        try:
            definition = self.source.fetch_definition(source_conn, unit)
            self.target.write_definition(target_conn, unit, definition, options)
            if not options.only_sync_schema and definition.has_rows:
                self._copy_rows(
                    task, definition, options, source_conn, target_conn, cancel_event, outcome
                )
        except (NotFoundError, WriteError, DiscoveryError) as e:
            outcome.error_message = str(e)
        outcome.finished_at = _now()

        outcome.success = outcome.error_message is None and outcome.rows_failed == 0
        if outcome.success:
            logger.info("unit_migrated", task_id=task.task_id, unit=unit.key, rows=outcome.rows_migrated)
        else:
            logger.warning(
                "unit_failed", task_id=task.task_id, unit=unit.key, error=outcome.error_message
            )
        return outcome

    def _copy_rows(
        self,
        task: MigrationTask,
        definition: UnitDefinition,
        options: WriteOptions,
        source_conn: Connection,
        target_conn: Connection,
        cancel_event: threading.Event,
        outcome: UnitOutcome,
    ) -> None:
        """Copy a unit's rows in batches, recording totals on the outcome and task."""
        unit = definition.unit
        batch_size = task.options.batch_size
        outcome.rows_total = definition.row_count
        self.store.add_rows(task.task_id, total=definition.row_count)

        offset = 0
        while offset < definition.row_count:
            if cancel_event.is_set():
                raise _CancelRequested()

            try:
                batch = self.source.read_rows(source_conn, unit, offset, batch_size)
            except DiscoveryError as e:
                remaining = definition.row_count - offset
                outcome.rows_failed += remaining
                outcome.error_message = str(e)
                self.store.add_rows(task.task_id, failed=remaining)
                return
            if not batch:
                break

            try:
                written = self.target.write_rows(target_conn, unit, batch, options)
            except WriteError as e:
                outcome.rows_failed += len(batch)
                outcome.error_message = str(e)
                self.store.add_rows(task.task_id, failed=len(batch))
                logger.warning(
                    "batch_failed", task_id=task.task_id, unit=unit.key, offset=offset, error=str(e)
                )
            else:
                outcome.rows_migrated += written
                self.store.add_rows(task.task_id, migrated=written)

            offset += len(batch)
