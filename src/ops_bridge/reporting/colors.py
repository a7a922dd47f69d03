"""Color definitions for console output.

Rich color names shared by the CLI tables and the progress display.
"""

from ops_bridge.migration.task import TaskStatus


class MigrationColors:
    """Centralized color palette for Ops Bridge console output.

    Reference: https://rich.readthedocs.io/en/stable/appendix/colors.html
    """

    # Semantic colors for messages
    INFO = "cyan"
    SUCCESS = "green"
    WARNING = "yellow"
    ERROR = "red"

    # Component-specific colors
    PROGRESS = "blue"
    UNIT = "magenta"

    # Status colors
    RUNNING = "yellow"
    COMPLETE = "green"
    FAILED = "red"
    PENDING = "dim"
    CANCELLED = "dark_orange"

    # UI elements
    HEADER = "bold bright_white"


STATUS_COLORS = {
    TaskStatus.PENDING: MigrationColors.PENDING,
    TaskStatus.RUNNING: MigrationColors.RUNNING,
    TaskStatus.COMPLETED: MigrationColors.COMPLETE,
    TaskStatus.FAILED: MigrationColors.FAILED,
    TaskStatus.CANCELLED: MigrationColors.CANCELLED,
}


def status_markup(status: TaskStatus | str) -> str:
    """Wrap a task status in Rich markup for its color."""
    status = TaskStatus(status)
    return f"[{STATUS_COLORS[status]}]{status.value}[/{STATUS_COLORS[status]}]"
