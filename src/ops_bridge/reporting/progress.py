"""Live task progress display using Rich.

Polls a task's progress document and renders it as a single progress bar
until the task reaches a terminal state.
"""

import time

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ops_bridge.migration.service import MigrationService
from ops_bridge.migration.task import MigrationTask, TaskStatus
from ops_bridge.reporting.colors import MigrationColors
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


class TaskProgressDisplay:
    """Follows one task and renders its progress.

    Disabled displays still wait for the task, without drawing anything
    (for CI/automation).
    """

    def __init__(self, console: Console | None = None, enabled: bool = True, poll_interval: float = 0.5):
        self.console = console or Console(stderr=True)
        self.enabled = enabled
        self.poll_interval = poll_interval

    def follow(self, service: MigrationService, task_id: str) -> MigrationTask:
        """Block until the task finishes, updating the bar from each poll.

        Returns:
            Final task snapshot
        """
        if not self.enabled:
            return self._wait(service, task_id)

        progress = Progress(
            SpinnerColumn(style=MigrationColors.PROGRESS),
            TextColumn("[bold]{task.description}"),
            BarColumn(complete_style=MigrationColors.COMPLETE),
            TaskProgressColumn(),
            TextColumn("[{task.fields[color]}]{task.fields[status]}"),
            TextColumn("{task.fields[unit]}", style=MigrationColors.UNIT),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        with progress:
            bar = progress.add_task(
                f"Task {task_id[:8]}", total=100.0, status="pending", color="dim", unit=""
            )
            while True:
                document = service.get_progress(task_id)
                status = TaskStatus(document["status"])
                progress.update(
                    bar,
                    completed=document["progress"],
                    status=status.value,
                    color=MigrationColors.FAILED if status == TaskStatus.FAILED else MigrationColors.INFO,
                    unit=document["current_unit"] or "",
                )
                if status.is_terminal:
                    break
                time.sleep(self.poll_interval)

        return service.get_task(task_id)

    def _wait(self, service: MigrationService, task_id: str) -> MigrationTask:
        task = service.wait(task_id)
        while not task.status.is_terminal:
            time.sleep(self.poll_interval)
            task = service.get_task(task_id)
        logger.debug("task_followed", task_id=task_id, status=task.status.value)
        return task
