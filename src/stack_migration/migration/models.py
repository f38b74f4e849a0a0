"""
SQLAlchemy models for migration state persistence.

This module defines the database schema holding historical migration state
records, the current-migration pointer, pause records, and the checkpoint
execution audit trail. State itself is stored as the JSON document produced
by the pydantic schemas; indexed columns duplicate the fields used for
listing and cleanup.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MigrationRecord(Base):
    """
    Historical, id-keyed copy of a migration state.

    The record for a migration id is authoritative for resume; it is
    overwritten on every save.
    """

    __tablename__ = "migration_records"

    id: Mapped[str] = mapped_column(String(100), primary_key=True, comment="Migration id")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment="Overall migration status"
    )
    current_phase: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="Phase the migration is at"
    )
    stack_name: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Source stack name from the configuration"
    )
    state_json: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Serialized MigrationState document"
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="When the migration started"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True, comment="When the record was saved"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'PAUSED', 'COMPLETED', 'FAILED', 'ROLLED_BACK')",
            name="ck_migration_records_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<MigrationRecord(id={self.id}, status={self.status}, "
            f"phase={self.current_phase})>"
        )


class CurrentMigration(Base):
    """
    Single-row pointer to the most recently saved migration.

    Stores a full copy of the state so the current migration can be loaded
    without knowing its id.
    """

    __tablename__ = "current_migration"

    slot: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    migration_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("migration_records.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Id of the most recently saved migration",
    )
    state_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (CheckConstraint("slot = 1", name="ck_current_migration_single_row"),)


class PausedStateRecord(Base):
    """State bundle captured when a checkpoint paused a migration."""

    __tablename__ = "paused_states"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="checkpoint-<migration id>-<checkpoint id>-<timestamp>",
    )
    migration_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    checkpoint_id: Mapped[str] = mapped_column(String(100), nullable=False)
    paused_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload_json: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Serialized PausedMigration document"
    )

    __table_args__ = (Index("idx_paused_states_migration_time", "migration_id", "paused_at"),)

    def __repr__(self) -> str:
        return f"<PausedStateRecord(id={self.id}, checkpoint={self.checkpoint_id})>"


class CheckpointExecutionRecord(Base):
    """Append-only audit entry for one checkpoint handler run."""

    __tablename__ = "checkpoint_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    migration_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    checkpoint_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    phase: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="continue, pause or abort"
    )
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload_json: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Serialized CheckpointExecution document"
    )

    __table_args__ = (
        CheckConstraint(
            "action IN ('continue', 'pause', 'abort')", name="ck_checkpoint_executions_action"
        ),
    )
