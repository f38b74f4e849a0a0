"""
Checkpoint registry for human decision points.

Checkpoints are bound to a pipeline phase and evaluated before that phase
runs. A checkpoint whose condition holds runs its handler, which decides to
continue (optionally adding decision data to the state), pause the migration
for review, or abort it.

Usage:
    registry = CheckpointRegistry(recorder=state_store)
    register_default_checkpoints(registry)

    checkpoint = await registry.should_trigger(state, MigrationPhase.COMPARISON)
    if checkpoint:
        result = await registry.execute(checkpoint, state)
"""

import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from stack_migration.exceptions import CheckpointError
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import (
    CheckpointExecution,
    CheckpointResult,
    MigrationState,
)
from stack_migration.utils.logging import get_logger, log_checkpoint

logger = get_logger(__name__)

Condition = Callable[[MigrationState], bool | Awaitable[bool]]
Handler = Callable[[MigrationState], CheckpointResult | Awaitable[CheckpointResult]]


@dataclass(frozen=True)
class Checkpoint:
    """A registered decision point. Condition and handler may be async."""

    id: str
    phase: MigrationPhase
    name: str
    description: str
    condition: Condition
    handler: Handler


class ExecutionRecorder(Protocol):
    """Durable sink for checkpoint audit entries."""

    def append_checkpoint_execution(self, execution: CheckpointExecution) -> None: ...


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CheckpointRegistry:
    """
    Id-keyed registry of checkpoints with an append-only execution log.

    Checkpoints are evaluated in registration order. Evaluation never raises:
    a failing condition counts as "not triggered", a failing handler becomes
    an abort result.
    """

    def __init__(self, recorder: ExecutionRecorder | None = None):
        """
        Initialize checkpoint registry.

        Args:
            recorder: Optional durable recorder (the state store) that receives
                every execution in addition to the in-memory log
        """
        self._checkpoints: dict[str, Checkpoint] = {}
        self._history: list[CheckpointExecution] = []
        self.recorder = recorder

    def register(self, checkpoint: Checkpoint) -> None:
        """
        Register a checkpoint.

        Args:
            checkpoint: Checkpoint to add

        Raises:
            CheckpointError: If a checkpoint with the same id is already registered
        """
        if checkpoint.id in self._checkpoints:
            raise CheckpointError(f"Checkpoint already registered: {checkpoint.id}")

        self._checkpoints[checkpoint.id] = checkpoint
        logger.debug("checkpoint_registered", checkpoint_id=checkpoint.id, phase=checkpoint.phase.value)

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        return self._checkpoints.get(checkpoint_id)

    def checkpoints(self, phase: MigrationPhase | None = None) -> list[Checkpoint]:
        """Registered checkpoints in registration order, optionally for one phase."""
        return [cp for cp in self._checkpoints.values() if phase is None or cp.phase == phase]

    async def should_trigger(
        self,
        state: MigrationState,
        phase: MigrationPhase,
        exclude: Iterable[str] = (),
    ) -> Checkpoint | None:
        """
        Find the first checkpoint bound to ``phase`` whose condition holds.

        Args:
            state: Migration state the conditions are evaluated against
            phase: Phase about to run
            exclude: Checkpoint ids to skip (used when resuming from a pause)

        Returns:
            The triggered checkpoint, or None
        """
        excluded = set(exclude)

        for checkpoint in self.checkpoints(phase):
            if checkpoint.id in excluded:
                continue
            try:
                if await _resolve(checkpoint.condition(state)):
                    logger.info(
                        "checkpoint_triggered",
                        checkpoint_id=checkpoint.id,
                        phase=phase.value,
                        migration_id=state.id,
                    )
                    return checkpoint
            except Exception as e:
                logger.error(
                    "checkpoint_condition_failed",
                    checkpoint_id=checkpoint.id,
                    phase=phase.value,
                    error=str(e),
                )

        return None

    async def execute(self, checkpoint: Checkpoint, state: MigrationState) -> CheckpointResult:
        """
        Run a checkpoint handler and record the execution.

        Args:
            checkpoint: Checkpoint to run
            state: Current migration state

        Returns:
            CheckpointResult: Handler result, or an abort result if the handler failed
        """
        try:
            result = await _resolve(checkpoint.handler(state))
            if not isinstance(result, CheckpointResult):
                raise CheckpointError(
                    f"Handler returned {type(result).__name__}, expected CheckpointResult"
                )
        except Exception as e:
            logger.error(
                "checkpoint_handler_failed",
                checkpoint_id=checkpoint.id,
                migration_id=state.id,
                error=str(e),
            )
            result = CheckpointResult.abort(
                f"Checkpoint '{checkpoint.name}' failed: {e}", error_type=type(e).__name__
            )

        self._record(checkpoint, state, result)
        log_checkpoint(
            logger,
            checkpoint.id,
            checkpoint.phase.value,
            result.action.value,
            migration_id=state.id,
            message=result.message,
        )
        return result

    def _record(self, checkpoint: Checkpoint, state: MigrationState, result: CheckpointResult) -> None:
        execution = CheckpointExecution(
            checkpoint_id=checkpoint.id,
            migration_id=state.id,
            phase=checkpoint.phase,
            result=result,
            state_snapshot={"phase": state.current_phase.value, "status": state.status.value},
        )
        self._history.append(execution)

        if self.recorder is None:
            return

        # The in-memory entry stands even when the durable write fails
        try:
            self.recorder.append_checkpoint_execution(execution)
        except Exception as e:
            logger.error(
                "checkpoint_execution_not_persisted",
                checkpoint_id=checkpoint.id,
                migration_id=state.id,
                error=str(e),
            )

    @property
    def history(self) -> tuple[CheckpointExecution, ...]:
        """All executions recorded by this registry, oldest first."""
        return tuple(self._history)

    def history_for(self, migration_id: str) -> tuple[CheckpointExecution, ...]:
        return tuple(e for e in self._history if e.migration_id == migration_id)


# Predefined checkpoints


def _missing_physical_ids(state: MigrationState) -> list[str]:
    return list(state.phase_data(MigrationPhase.DISCOVERY).get("missing_physical_ids", []))


def _critical_differences(state: MigrationState) -> list[dict[str, Any]]:
    report = state.phase_data(MigrationPhase.COMPARISON).get("report", {})
    return [d for d in report.get("differences", []) if d.get("severity") == "critical"]


def _physical_id_handler(state: MigrationState) -> CheckpointResult:
    unresolved = _missing_physical_ids(state)
    logger.warning(
        "physical_ids_unresolved",
        migration_id=state.id,
        count=len(unresolved),
        resources=unresolved,
    )
    return CheckpointResult.proceed(
        f"{len(unresolved)} stateful resource(s) need physical id resolution; "
        "continuing with manual review",
        unresolved_physical_ids=unresolved,
    )


def _critical_differences_handler(state: MigrationState) -> CheckpointResult:
    critical = _critical_differences(state)
    return CheckpointResult.pause(
        f"Paused for review of {len(critical)} critical difference(s)",
        critical_differences=critical[:5],
        critical_count=len(critical),
    )


def _drift_handler(state: MigrationState) -> CheckpointResult:
    return CheckpointResult.proceed(
        "Drift detection skipped: no deployed stack to compare against",
        drift_check="skipped",
    )


def _pre_import_handler(state: MigrationState) -> CheckpointResult:
    required = [
        MigrationPhase.CLASSIFICATION,
        MigrationPhase.TEMPLATE_MODIFICATION,
        MigrationPhase.CODE_GENERATION,
    ]
    missing = [phase.value for phase in required if not state.is_phase_completed(phase)]
    if missing:
        return CheckpointResult.abort(
            f"Pre-import verification failed; incomplete phases: {', '.join(missing)}",
            missing_phases=missing,
        )
    return CheckpointResult.proceed("All pre-import checks passed", pre_import_verified=True)


def default_checkpoints() -> list[Checkpoint]:
    """The predefined checkpoints, in registration order."""
    return [
        Checkpoint(
            id="physical-id-resolution",
            phase=MigrationPhase.CLASSIFICATION,
            name="Physical ID Resolution",
            description="Verify physical ids for all stateful resources",
            condition=lambda state: bool(_missing_physical_ids(state)),
            handler=_physical_id_handler,
        ),
        Checkpoint(
            id="critical-differences",
            phase=MigrationPhase.TEMPLATE_MODIFICATION,
            name="Critical Differences Review",
            description="Review critical template differences before modifying the template",
            condition=lambda state: bool(_critical_differences(state)),
            handler=_critical_differences_handler,
        ),
        Checkpoint(
            id="drift-detection",
            phase=MigrationPhase.TEMPLATE_MODIFICATION,
            name="Drift Detection",
            description="Check for manual modifications of the deployed stack",
            condition=lambda state: not state.config.dry_run,
            handler=_drift_handler,
        ),
        Checkpoint(
            id="pre-import-verification",
            phase=MigrationPhase.IMPORT_PREPARATION,
            name="Pre-Import Verification",
            description="Verify all prerequisites before preparing the import",
            condition=lambda state: True,
            handler=_pre_import_handler,
        ),
    ]


def register_default_checkpoints(registry: CheckpointRegistry) -> CheckpointRegistry:
    """Register the predefined checkpoints on ``registry``."""
    for checkpoint in default_checkpoints():
        registry.register(checkpoint)
    return registry

