"""Migration task lifecycle.

``MigrationService`` is what the API and CLI talk to. It validates and
persists new tasks, runs each started task on its own worker thread, and
answers progress queries from the task store.
"""

import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from ops_bridge.config import (
    CopyOptions,
    KubernetesConfig,
    MySQLConfig,
    PerformanceConfig,
    ResourceSelector,
)
from ops_bridge.connectors.base import Connector
from ops_bridge.connectors.factory import create_connector
from ops_bridge.exceptions import (
    ConfigurationError,
    EmptySelectionError,
    InvalidStateError,
    OpsBridgeError,
)
from ops_bridge.migration.executor import MigrationExecutor
from ops_bridge.migration.selector import resolve_selectors
from ops_bridge.migration.state import TaskStore
from ops_bridge.migration.task import MigrationTask, TaskStatus, UnitOutcome
from ops_bridge.utils.logging import get_logger, log_error

logger = get_logger(__name__)

ConnectorFactory = Callable[[KubernetesConfig | MySQLConfig], Connector]


class MigrationService:
    """Creates, starts, cancels and reports on migration tasks."""

    def __init__(
        self,
        store: TaskStore,
        connector_factory: ConnectorFactory | None = None,
        performance: PerformanceConfig | None = None,
    ):
        """Initialize migration service.

        Args:
            store: Task store shared by all workers
            connector_factory: Builds a connector for a config (defaults to the
                system-type factory tuned by ``performance``)
            performance: Retry and timeout tuning for the default factory
        """
        self.store = store
        self.performance = performance or PerformanceConfig()
        self.connector_factory = connector_factory or (
            lambda config: create_connector(config, self.performance)
        )
        self._workers: dict[str, threading.Thread] = {}
        self._cancel_events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def create_task(
        self,
        source: KubernetesConfig | MySQLConfig,
        target: KubernetesConfig | MySQLConfig,
        selectors: Iterable[ResourceSelector],
        options: CopyOptions | None = None,
    ) -> str:
        """Validate and persist a new pending task.

        The selectors are resolved against the source once so that a selection
        matching nothing is rejected before anything is stored. They are
        resolved again when the task starts.

        Returns:
            The new task's identifier

        Raises:
            ConfigurationError: If source and target are different system types
            EmptySelectionError: If the selectors match no units
            ConnectionFailedError: If the source is unreachable
            DiscoveryError: If the source cannot be listed
        """
        selectors = list(selectors)
        if source.system_type != target.system_type:
            raise ConfigurationError(
                f"Cannot migrate from {source.system_type.value} to {target.system_type.value}"
            )
        if not selectors:
            raise EmptySelectionError("At least one unit type or unit must be selected")

        connector = self.connector_factory(source)
        conn = connector.connect(source)
        try:
            units = resolve_selectors(connector, conn, selectors)
        finally:
            connector.close(conn)

        task = MigrationTask(
            task_id=str(uuid.uuid4()),
            source=source,
            target=target,
            selectors=selectors,
            options=options or CopyOptions(batch_size=self.performance.batch_size),
            created_at=datetime.now(timezone.utc),
        )
        self.store.create(task)
        logger.info("task_accepted", task_id=task.task_id, units=len(units))
        return task.task_id

    def start_task(self, task_id: str) -> TaskStatus:
        """Start a pending task on a dedicated worker thread.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidStateError: If the task is not pending
        """
        task = self.store.get(task_id)
        executor = MigrationExecutor(
            self.connector_factory(task.source), self.connector_factory(task.target), self.store
        )
        cancel_event = threading.Event()
        worker = threading.Thread(
            target=self._run_worker,
            args=(executor, task_id, cancel_event),
            name=f"migration-{task_id[:8]}",
            daemon=True,
        )
        # A task is never running without its cancel event registered
        with self._lock:
            self.store.transition(task_id, TaskStatus.RUNNING, allowed_from={TaskStatus.PENDING})
            self._cancel_events[task_id] = cancel_event
            self._workers[task_id] = worker
        worker.start()
        return TaskStatus.RUNNING

    def _run_worker(
        self, executor: MigrationExecutor, task_id: str, cancel_event: threading.Event
    ) -> None:
        try:
            executor.execute(task_id, cancel_event)
        except Exception as e:
            log_error(logger, e, "migration_worker", task_id=task_id)
            try:
                self.store.transition(
                    task_id,
                    TaskStatus.FAILED,
                    allowed_from={TaskStatus.RUNNING},
                    error_message=f"Unexpected error: {e}",
                )
            except OpsBridgeError as state_error:
                logger.error("task_fail_not_recorded", task_id=task_id, error=str(state_error))
        finally:
            with self._lock:
                self._cancel_events.pop(task_id, None)
                self._workers.pop(task_id, None)

    def cancel_task(self, task_id: str) -> TaskStatus:
        """Request cancellation of a task.

        Pending tasks are cancelled immediately. Running tasks stop at the
        next unit or batch boundary; their status stays ``running`` until the
        worker notices. A running task with no worker in this process (for
        example after a restart) is cancelled directly.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidStateError: If the task already finished
        """
        task = self.store.get(task_id)
        if task.status.is_terminal:
            raise InvalidStateError(f"Task {task_id} is already {task.status.value}")

        if task.status == TaskStatus.PENDING:
            self.store.transition(task_id, TaskStatus.CANCELLED, allowed_from={TaskStatus.PENDING})
            logger.info("task_cancelled", task_id=task_id)
            return TaskStatus.CANCELLED

        with self._lock:
            cancel_event = self._cancel_events.get(task_id)
        if cancel_event is None:
            self.store.transition(task_id, TaskStatus.CANCELLED, allowed_from={TaskStatus.RUNNING})
            logger.warning("orphaned_task_cancelled", task_id=task_id)
            return TaskStatus.CANCELLED

        cancel_event.set()
        logger.info("task_cancel_requested", task_id=task_id)
        return TaskStatus.RUNNING

    def get_task(self, task_id: str) -> MigrationTask:
        return self.store.get(task_id)

    def get_progress(self, task_id: str) -> dict:
        """Return the progress document of a task.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        return self.store.get(task_id).progress_document()

    def get_outcomes(self, task_id: str) -> list[UnitOutcome]:
        return self.store.get_outcomes(task_id)

    def list_tasks(self) -> list[MigrationTask]:
        return self.store.list_tasks()

    def wait(self, task_id: str, timeout: float | None = None) -> MigrationTask:
        """Block until the task's worker finishes (or the timeout expires).

        Returns:
            The task's latest snapshot
        """
        with self._lock:
            worker = self._workers.get(task_id)
        if worker is not None:
            worker.join(timeout)
        return self.store.get(task_id)

    def shutdown(self, timeout: float | None = None) -> None:
        """Ask every running task to stop and wait for the workers."""
        with self._lock:
            events = list(self._cancel_events.values())
            workers = list(self._workers.values())
        for event in events:
            event.set()
        for worker in workers:
            worker.join(timeout)
