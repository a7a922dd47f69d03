"""
Migration module for Ops Bridge.

This module provides task state management, selector resolution, the
migration executor and the comparison engine.
"""

# Comparison
from ops_bridge.migration.comparator import ComparisonEngine, ComparisonResult, UnitComparison

# Database utilities
from ops_bridge.migration.database import (
    create_database_engine,
    dispose_database,
    get_session,
    init_database,
    validate_database_connection,
)

# Execution
from ops_bridge.migration.executor import MigrationExecutor
from ops_bridge.migration.models import Base, MigrationTaskRecord, UnitOutcomeRecord
from ops_bridge.migration.selector import resolve_selector, resolve_selectors
from ops_bridge.migration.service import MigrationService

# State management
from ops_bridge.migration.state import TaskStore
from ops_bridge.migration.task import MigrationTask, TaskStatus, UnitOutcome

__all__ = [
    # Models
    "Base",
    "MigrationTaskRecord",
    "UnitOutcomeRecord",
    # Database utilities
    "init_database",
    "get_session",
    "create_database_engine",
    "dispose_database",
    "validate_database_connection",
    # Tasks and state
    "MigrationTask",
    "TaskStatus",
    "UnitOutcome",
    "TaskStore",
    # Execution
    "resolve_selector",
    "resolve_selectors",
    "MigrationExecutor",
    "MigrationService",
    # Comparison
    "ComparisonEngine",
    "ComparisonResult",
    "UnitComparison",
]
