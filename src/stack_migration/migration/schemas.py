"""Pydantic schemas for migration state and its audit records.

Everything in this module is serialized to JSON by the state store, so field
types are limited to what round-trips cleanly: strings, enums, timezone-aware
datetimes and plain JSON payloads.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stack_migration.config import MigrationConfig
from stack_migration.migration.phases import MigrationPhase, MigrationStatus, first_phase


def utcnow() -> datetime:
    return datetime.now(UTC)


class StepError(BaseModel):
    """Serializable description of an error; exceptions are never persisted."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Exception class name")
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: BaseException, **details: Any) -> "StepError":
        """Build from an exception, keeping structured attributes where present."""
        extra: dict[str, Any] = dict(details)
        for attr in ("phase", "errors", "cycle", "failures", "details"):
            value = getattr(error, attr, None)
            if value:
                extra.setdefault(attr, value.value if isinstance(value, Enum) else value)
        return cls(type=type(error).__name__, message=str(error), details=extra)


class CheckSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationCheck(BaseModel):
    """One named post-condition of a phase."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    message: str = ""
    severity: CheckSeverity = CheckSeverity.ERROR


class VerificationResult(BaseModel):
    """Aggregated outcome of a phase's validation checks."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    checks: list[ValidationCheck] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_checks(cls, checks: list[ValidationCheck]) -> "VerificationResult":
        """Passed iff no error-severity check failed."""
        errors = [
            f"{c.name}: {c.message}" if c.message else c.name
            for c in checks
            if not c.passed and c.severity == CheckSeverity.ERROR
        ]
        warnings = [
            f"{c.name}: {c.message}" if c.message else c.name
            for c in checks
            if not c.passed and c.severity == CheckSeverity.WARNING
        ]
        return cls(passed=not errors, checks=checks, errors=errors, warnings=warnings)


class StepResult(BaseModel):
    """Immutable outcome of one executed phase."""

    model_config = ConfigDict(frozen=True)

    phase: MigrationPhase
    status: MigrationStatus
    started_at: datetime
    completed_at: datetime
    data: dict[str, Any] = Field(default_factory=dict, description="Opaque phase payload")
    error: StepError | None = None
    validation: VerificationResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == MigrationStatus.COMPLETED

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


class MigrationState(BaseModel):
    """Root aggregate persisted after every phase transition."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    current_phase: MigrationPhase = Field(default_factory=first_phase)
    status: MigrationStatus = MigrationStatus.PENDING
    config: MigrationConfig
    step_results: dict[MigrationPhase, StepResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: StepError | None = None
    skipped_phases: list[MigrationPhase] = Field(default_factory=list)
    context: dict[str, Any] = Field(
        default_factory=dict, description="Decision data merged in by checkpoints"
    )

    def result_for(self, phase: MigrationPhase) -> StepResult | None:
        return self.step_results.get(phase)

    def is_phase_completed(self, phase: MigrationPhase) -> bool:
        result = self.step_results.get(phase)
        return result is not None and result.succeeded

    def phase_data(self, phase: MigrationPhase) -> dict[str, Any]:
        """Payload of a completed phase, empty when the phase has not completed."""
        result = self.step_results.get(phase)
        if result is None or not result.succeeded:
            return {}
        return result.data

    def completed_phases(self) -> list[MigrationPhase]:
        return [phase for phase in MigrationPhase if self.is_phase_completed(phase)]

    def touch(self) -> None:
        self.updated_at = utcnow()


class CheckpointAction(str, Enum):
    CONTINUE = "continue"
    PAUSE = "pause"
    ABORT = "abort"


class CheckpointResult(BaseModel):
    """Decision returned by a checkpoint handler."""

    model_config = ConfigDict(frozen=True)

    action: CheckpointAction
    modifications: dict[str, Any] = Field(
        default_factory=dict, description="Merged into MigrationState.context on continue"
    )
    message: str | None = None
    context: dict[str, Any] = Field(
        default_factory=dict, description="Decision context persisted with a pause"
    )

    @classmethod
    def proceed(cls, message: str | None = None, **modifications: Any) -> "CheckpointResult":
        return cls(action=CheckpointAction.CONTINUE, message=message, modifications=modifications)

    @classmethod
    def pause(cls, message: str, **context: Any) -> "CheckpointResult":
        return cls(action=CheckpointAction.PAUSE, message=message, context=context)

    @classmethod
    def abort(cls, message: str, **context: Any) -> "CheckpointResult":
        return cls(action=CheckpointAction.ABORT, message=message, context=context)


class CheckpointExecution(BaseModel):
    """Audit entry for one checkpoint handler run."""

    model_config = ConfigDict(frozen=True)

    checkpoint_id: str
    migration_id: str
    phase: MigrationPhase
    executed_at: datetime = Field(default_factory=utcnow)
    result: CheckpointResult
    state_snapshot: dict[str, Any] = Field(default_factory=dict)


class PausedMigration(BaseModel):
    """State bundle written when a checkpoint pauses a migration."""

    record_id: str
    state: MigrationState
    checkpoint_id: str
    paused_at: datetime = Field(default_factory=utcnow)
    context: dict[str, Any] = Field(default_factory=dict)
    resumable: bool = True
