"""Reporting and progress display for migration tasks."""

from ops_bridge.reporting.progress import TaskProgressDisplay
from ops_bridge.reporting.report import MigrationReport, generate_migration_report

__all__ = [
    "MigrationReport",
    "TaskProgressDisplay",
    "generate_migration_report",
]
