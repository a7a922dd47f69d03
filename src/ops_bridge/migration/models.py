"""
SQLAlchemy models for migration task tracking.

This module defines the database schema for migration tasks and the
per-unit outcomes recorded while a task runs.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MigrationTaskRecord(Base):
    """
    One migration task from creation to its terminal state.

    Connection configs, selectors and copy options are stored as JSON so a
    task created by one process can be started by another.
    """

    __tablename__ = "migration_tasks"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    task_id: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, index=True, comment="Task UUID"
    )

    # Task definition
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Source system type (kubernetes, mysql)"
    )
    target_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Target system type (kubernetes, mysql)"
    )
    source_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    target_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    selectors: Mapped[list] = mapped_column(JSON, nullable=False, comment="Ordered selectors")
    options: Mapped[dict] = mapped_column(JSON, nullable=False, comment="Copy options")
    units: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list, comment="Units resolved when the task started"
    )

    # Task state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="Task status: pending, running, completed, failed, cancelled",
    )
    progress: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, comment="Percent of units processed"
    )
    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Task-level failure reason"
    )
    current_unit: Mapped[str | None] = mapped_column(
        String(512), nullable=True, comment="Key of the unit being processed"
    )

    # Row totals (tabular units)
    total_rows: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    migrated_rows: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, comment="When task was created"
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="When task entered running"
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="When task reached a terminal state"
    )

    # Relationships
    outcomes: Mapped[list["UnitOutcomeRecord"]] = relationship(
        "UnitOutcomeRecord",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="UnitOutcomeRecord.position",
    )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_migration_tasks_status",
        ),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_migration_tasks_progress"),
        Index("idx_tasks_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MigrationTaskRecord(task_id='{self.task_id}', status='{self.status}', "
            f"progress={self.progress})>"
        )


class UnitOutcomeRecord(Base):
    """
    Result of migrating one unit within a task.

    Appended once per unit, in resolution order; never updated.
    """

    __tablename__ = "unit_outcomes"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    task_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("migration_tasks.task_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Index of the unit in resolution order"
    )

    # Unit identification
    collection: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)

    # Result
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rows_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rows_migrated: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rows_failed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    task: Mapped["MigrationTaskRecord"] = relationship(
        "MigrationTaskRecord", back_populates="outcomes"
    )

    __table_args__ = (UniqueConstraint("task_id", "position", name="uq_unit_outcomes_position"),)

    def __repr__(self) -> str:
        return (
            f"<UnitOutcomeRecord(task_id='{self.task_id}', position={self.position}, "
            f"name='{self.name}', success={self.success})>"
        )
