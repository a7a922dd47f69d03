"""
Migration task persistence.

This module provides the TaskStore class, the single place where task
records and unit outcomes are read and written. Pollers and worker threads
share one store; every operation runs in its own short session under the
store's lock.
"""

import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from pydantic import TypeAdapter
from sqlalchemy import select

from ops_bridge.config import (
    ConnectionConfig,
    CopyOptions,
    KubernetesConfig,
    MySQLConfig,
    ResourceSelector,
    StateConfig,
)
from ops_bridge.connectors.base import MigrationUnit
from ops_bridge.exceptions import InvalidStateError, TaskNotFoundError
from ops_bridge.migration.database import get_session, init_database
from ops_bridge.migration.models import MigrationTaskRecord, UnitOutcomeRecord
from ops_bridge.migration.task import MigrationTask, TaskStatus, UnitOutcome
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

_connection_adapter: TypeAdapter[KubernetesConfig | MySQLConfig] = TypeAdapter(ConnectionConfig)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored times are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _unit_from_dict(data: dict) -> MigrationUnit:
    return MigrationUnit(data["collection"], data["unit_type"], data["name"])


def _outcome_from_record(record: UnitOutcomeRecord) -> UnitOutcome:
    return UnitOutcome(
        unit=MigrationUnit(record.collection, record.unit_type, record.name),
        success=record.success,
        error_message=record.error_message,
        rows_total=record.rows_total,
        rows_migrated=record.rows_migrated,
        rows_failed=record.rows_failed,
        started_at=_aware(record.started_at),
        finished_at=_aware(record.finished_at),
    )


def _task_from_record(record: MigrationTaskRecord, with_outcomes: bool = True) -> MigrationTask:
    return MigrationTask(
        task_id=record.task_id,
        source=_connection_adapter.validate_python(record.source_config),
        target=_connection_adapter.validate_python(record.target_config),
        selectors=[ResourceSelector.model_validate(s) for s in record.selectors],
        options=CopyOptions.model_validate(record.options),
        status=TaskStatus(record.status),
        progress=record.progress,
        error_message=record.error_message,
        units=[_unit_from_dict(u) for u in record.units or []],
        outcomes=[_outcome_from_record(o) for o in record.outcomes] if with_outcomes else [],
        total_rows=record.total_rows,
        migrated_rows=record.migrated_rows,
        failed_rows=record.failed_rows,
        current_unit=record.current_unit,
        created_at=_aware(record.created_at),
        started_at=_aware(record.started_at),
        finished_at=_aware(record.finished_at),
    )


class TaskStore:
    """
    Thread-safe store for migration tasks and their unit outcomes.

    Usage:
        store = TaskStore(StateConfig(db_path="./state.db"))
        store.create(task)
        store.transition(task.task_id, TaskStatus.RUNNING, allowed_from={TaskStatus.PENDING})
    """

    def __init__(self, config: StateConfig | None = None):
        """
        Initialize the task store.

        Args:
            config: State configuration (defaults to a local SQLite file)

        Raises:
            ConfigurationError: If the database cannot be initialized
        """
        self.config = config or StateConfig()
        self._lock = threading.RLock()
        self.database_url = self.config.database_url

        init_database(
            self.database_url,
            pool_size=self.config.db_pool_size,
            max_overflow=self.config.db_max_overflow,
            pool_timeout=self.config.db_pool_timeout,
            pool_recycle=self.config.db_pool_recycle,
        )
        logger.debug("task_store_initialized", database_url=self.database_url)

    def create(self, task: MigrationTask) -> None:
        """Persist a new task in its initial state."""
        with self._lock, get_session(self.database_url) as session:
            session.add(
                MigrationTaskRecord(
                    task_id=task.task_id,
                    source_type=task.source.system_type.value,
                    target_type=task.target.system_type.value,
                    source_config=task.source.model_dump(mode="json"),
                    target_config=task.target.model_dump(mode="json"),
                    selectors=[s.model_dump(mode="json") for s in task.selectors],
                    options=task.options.model_dump(mode="json"),
                    units=[u.to_dict() for u in task.units],
                    status=task.status.value,
                    progress=task.progress,
                    created_at=task.created_at or _now(),
                )
            )
        logger.info("task_created", task_id=task.task_id, selectors=len(task.selectors))

    def get(self, task_id: str) -> MigrationTask:
        """
        Load a task with its outcomes.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        with self._lock, get_session(self.database_url) as session:
            return _task_from_record(self._load(session, task_id))

    def list_tasks(self) -> list[MigrationTask]:
        """Return all tasks, most recently created first (outcomes not loaded)."""
        with self._lock, get_session(self.database_url) as session:
            records = session.scalars(
                select(MigrationTaskRecord).order_by(
                    MigrationTaskRecord.created_at.desc(), MigrationTaskRecord.id.desc()
                )
            ).all()
            return [_task_from_record(record, with_outcomes=False) for record in records]

    def get_outcomes(self, task_id: str) -> list[UnitOutcome]:
        """Return a task's outcomes in resolution order."""
        with self._lock, get_session(self.database_url) as session:
            return [_outcome_from_record(o) for o in self._load(session, task_id).outcomes]

    def transition(
        self,
        task_id: str,
        status: TaskStatus,
        allowed_from: Iterable[TaskStatus],
        error_message: str | None = None,
    ) -> MigrationTask:
        """
        Move a task to a new status if its current status allows it.

        Entering ``running`` stamps ``started_at``; entering a terminal status
        stamps ``finished_at`` and clears ``current_unit``. ``completed``
        pins progress to 100.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidStateError: If the current status is not in allowed_from
        """
        allowed = {TaskStatus(s).value for s in allowed_from}
        with self._lock, get_session(self.database_url) as session:
            record = self._load(session, task_id)
            if record.status not in allowed:
                raise InvalidStateError(
                    f"Task {task_id} is {record.status}; cannot move to {status.value}"
                )

            record.status = status.value
            if status == TaskStatus.RUNNING:
                record.started_at = _now()
            if status.is_terminal:
                record.finished_at = _now()
                record.current_unit = None
                record.error_message = error_message
            if status == TaskStatus.COMPLETED:
                record.progress = 100.0

            logger.debug("task_transition", task_id=task_id, status=status.value)
            return _task_from_record(record)

    def set_units(self, task_id: str, units: list[MigrationUnit]) -> None:
        """Store the units resolved when the task started."""
        with self._lock, get_session(self.database_url) as session:
            record = self._load(session, task_id)
            record.units = [u.to_dict() for u in units]

    def set_current_unit(self, task_id: str, unit: MigrationUnit | None) -> None:
        with self._lock, get_session(self.database_url) as session:
            record = self._load(session, task_id)
            record.current_unit = unit.key if unit else None

    def add_rows(self, task_id: str, total: int = 0, migrated: int = 0, failed: int = 0) -> None:
        """Accumulate row totals for the task."""
        with self._lock, get_session(self.database_url) as session:
            record = self._load(session, task_id)
            record.total_rows += total
            record.migrated_rows += migrated
            record.failed_rows += failed

    def record_outcome(
        self, task_id: str, position: int, outcome: UnitOutcome, progress: float
    ) -> None:
        """
        Append a unit outcome and advance progress.

        Progress never decreases; a lower value than the stored one is ignored.

        Raises:
            InvalidStateError: If the task is no longer running
        """
        with self._lock, get_session(self.database_url) as session:
            record = self._load(session, task_id)
            if record.status != TaskStatus.RUNNING.value:
                raise InvalidStateError(
                    f"Task {task_id} is {record.status}; outcomes can only be recorded while running"
                )
            session.add(
                UnitOutcomeRecord(
                    task_id=task_id,
                    position=position,
                    collection=outcome.unit.collection,
                    unit_type=outcome.unit.unit_type,
                    name=outcome.unit.name,
                    success=outcome.success,
                    error_message=outcome.error_message,
                    rows_total=outcome.rows_total,
                    rows_migrated=outcome.rows_migrated,
                    rows_failed=outcome.rows_failed,
                    started_at=outcome.started_at,
                    finished_at=outcome.finished_at,
                )
            )
            record.progress = min(100.0, max(record.progress, progress))

    @staticmethod
    def _load(session, task_id: str) -> MigrationTaskRecord:
        record = session.scalars(
            select(MigrationTaskRecord).where(MigrationTaskRecord.task_id == task_id)
        ).first()
        if record is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return record
