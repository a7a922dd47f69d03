"""Migration task and unit outcome types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ops_bridge.config import CopyOptions, KubernetesConfig, MySQLConfig, ResourceSelector
from ops_bridge.connectors.base import MigrationUnit


class TaskStatus(str, Enum):
    """Lifecycle states of a migration task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class UnitOutcome:
    """Result of migrating one unit."""

    unit: MigrationUnit
    success: bool
    error_message: str | None = None
    rows_total: int = 0
    rows_migrated: int = 0
    rows_failed: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.unit.to_dict(),
            "success": self.success,
            "error_message": self.error_message,
            "rows_total": self.rows_total,
            "rows_migrated": self.rows_migrated,
            "rows_failed": self.rows_failed,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }


@dataclass
class MigrationTask:
    """Snapshot of a migration task as stored in the task store.

    Attributes:
        task_id: UUID assigned at creation
        source: Source connection config
        target: Target connection config
        selectors: Ordered selectors resolved against the source
        options: Copy options
        status: Current lifecycle state
        progress: Percent of resolved units processed (0-100)
        units: Units resolved when the task started
        outcomes: One outcome per processed unit, in resolution order
    """

    task_id: str
    source: KubernetesConfig | MySQLConfig
    target: KubernetesConfig | MySQLConfig
    selectors: list[ResourceSelector]
    options: CopyOptions
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    error_message: str | None = None
    units: list[MigrationUnit] = field(default_factory=list)
    outcomes: list[UnitOutcome] = field(default_factory=list)
    total_rows: int = 0
    migrated_rows: int = 0
    failed_rows: int = 0
    current_unit: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    def progress_document(self) -> dict[str, Any]:
        """Read-only progress view served to pollers."""
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "progress": self.progress,
            "error_message": self.error_message,
            "total_rows": self.total_rows,
            "migrated_rows": self.migrated_rows,
            "failed_rows": self.failed_rows,
            "current_unit": self.current_unit,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }

    def summary(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "progress": self.progress,
            "source": self.source.display_name,
            "source_type": self.source.system_type.value,
            "target": self.target.display_name,
            "target_type": self.target.system_type.value,
            "collections": [selector.collection for selector in self.selectors],
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }
