"""Migration orchestrator.

This module provides the top-level driver of a stack migration. It creates
the migration state, walks the fixed phase sequence, evaluates checkpoints
before each phase, takes backups before critical phases, runs the phase
executors and persists every transition through the state store.

State machine::

    PENDING -> IN_PROGRESS -> COMPLETED | FAILED | PAUSED | ROLLED_BACK
    PAUSED | ROLLED_BACK | FAILED --resume--> IN_PROGRESS
"""

import inspect
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from stack_migration.config import MigrationConfig, build_migration_config
from stack_migration.exceptions import (
    InvalidRollbackError,
    MigrationError,
    RollbackError,
    StateNotFoundError,
)
from stack_migration.migration.checkpoint import CheckpointRegistry, register_default_checkpoints
from stack_migration.migration.executor import ExecutorRegistry
from stack_migration.migration.phases import (
    PHASE_ORDER,
    MigrationPhase,
    MigrationStatus,
    is_critical,
    last_phase,
    next_phase,
    phase_index,
    phases_between,
)
from stack_migration.migration.schemas import (
    CheckpointAction,
    CheckpointExecution,
    MigrationState,
    StepError,
    StepResult,
    utcnow,
)
from stack_migration.migration.state import StateStore
from stack_migration.migration.steps import build_default_registry
from stack_migration.utils.logging import get_logger, log_error, log_phase_progress

logger = get_logger(__name__)

ProgressCallback = Callable[[MigrationState, dict[str, Any]], Any]
StepCallback = Callable[[MigrationState, StepResult], Any]


@dataclass
class OrchestratorOptions:
    """Per-run options supplied by the caller.

    Callbacks may be plain or async; they only observe, and their errors
    are logged and ignored.
    """

    skip_phases: Iterable[MigrationPhase | str] = field(default_factory=tuple)
    on_progress: ProgressCallback | None = None
    on_step_complete: StepCallback | None = None

    def skipped(self) -> set[MigrationPhase]:
        return {MigrationPhase(p) for p in self.skip_phases}


class MigrationOrchestrator:
    """Drives migrations through the phase pipeline.

    Usage:
        store = StateStore(StateConfig(work_dir=".migration-state"))
        orchestrator = MigrationOrchestrator(store)
        state = await orchestrator.start_migration(config)
        if state.status == MigrationStatus.PAUSED:
            state = await orchestrator.resume_migration(state.id)
    """

    def __init__(
        self,
        store: StateStore,
        executors: ExecutorRegistry | None = None,
        checkpoints: CheckpointRegistry | None = None,
    ):
        """Initialize orchestrator.

        Args:
            store: State store used for every read and write
            executors: Phase executor registry (defaults to the built-in executors)
            checkpoints: Checkpoint registry (defaults to the predefined
                checkpoints, recording executions into ``store``)
        """
        self.store = store
        self.executors = executors if executors is not None else build_default_registry()
        if checkpoints is None:
            checkpoints = register_default_checkpoints(CheckpointRegistry(recorder=store))
        self.checkpoints = checkpoints

        logger.debug(
            "orchestrator_initialized",
            executors=[p.value for p in self.executors.phases()],
            checkpoints=[cp.id for cp in self.checkpoints.checkpoints()],
        )

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def start_migration(
        self,
        config: MigrationConfig | dict[str, Any],
        options: OrchestratorOptions | None = None,
    ) -> MigrationState:
        """Create a migration and run it until it completes, fails or pauses.

        Args:
            config: Migration configuration
            options: Skip list and callbacks

        Returns:
            MigrationState: Final state of this run

        Raises:
            ConfigurationError: If the configuration is invalid (no state is created)
            StateError: If the initial state cannot be persisted
        """
        migration_config = build_migration_config(config)
        state = self.store.initialize_state(migration_config)

        logger.info(
            "migration_started",
            migration_id=state.id,
            stack_name=migration_config.stack_name,
            dry_run=migration_config.dry_run,
        )
        return await self._run(state, options or OrchestratorOptions(), initial_backup=True)

    async def resume_migration(
        self,
        migration_id: str | None = None,
        options: OrchestratorOptions | None = None,
    ) -> MigrationState:
        """Continue a paused, rolled back or failed migration.

        A paused migration continues from its latest pause record, and the
        checkpoint that paused it is not evaluated again for that phase. A
        failed migration has its error cleared and retries its current phase.
        A completed migration is returned unchanged.

        Args:
            migration_id: Migration to resume (the current migration when omitted)
            options: Skip list and callbacks

        Returns:
            MigrationState: Final state of this run

        Raises:
            StateNotFoundError: If the migration does not exist
            StateCorruptedError: If its record cannot be parsed
        """
        state = self.store.load_state(migration_id)

        if state.status == MigrationStatus.COMPLETED:
            logger.info("migration_already_completed", migration_id=state.id)
            return state

        excluded: dict[MigrationPhase, str] = {}
        if state.status == MigrationStatus.PAUSED:
            try:
                paused = self.store.load_paused_state(migration_id=state.id)
            except StateNotFoundError:
                logger.warning("pause_record_missing", migration_id=state.id)
            else:
                if paused.state.current_phase == state.current_phase:
                    state = paused.state
                    excluded[state.current_phase] = paused.checkpoint_id
                logger.info(
                    "resuming_from_checkpoint",
                    migration_id=state.id,
                    checkpoint_id=paused.checkpoint_id,
                    paused_at=paused.paused_at.isoformat(),
                )

        if state.status == MigrationStatus.FAILED:
            logger.info(
                "clearing_failure_for_retry",
                migration_id=state.id,
                error=state.error.message if state.error else None,
            )
            state.error = None

        logger.info(
            "migration_resumed",
            migration_id=state.id,
            phase=state.current_phase.value,
            previous_status=state.status.value,
        )
        return await self._run(state, options or OrchestratorOptions(), excluded=excluded)

    async def rollback(self, migration_id: str, target: MigrationPhase | str) -> MigrationState:
        """Undo phases after ``target`` and roll the state back to it.

        Executors of the phases after ``target`` up to and including the
        current phase are rolled back in reverse pipeline order. Phases
        without a registered executor are skipped. If any executor rollback
        fails, the state is left untouched.

        Args:
            migration_id: Migration to roll back
            target: Phase to return to

        Returns:
            MigrationState: Rolled back state

        Raises:
            InvalidRollbackError: If ``target`` is not before the current phase
            RollbackError: If an executor rollback failed
        """
        target = MigrationPhase(target)
        state = self.store.load_state(migration_id)

        if phase_index(target) >= phase_index(state.current_phase):
            raise InvalidRollbackError(
                f"Cannot roll back to {target.value}: current phase is {state.current_phase.value}"
            )

        failures: dict[str, str] = {}
        for phase in reversed(phases_between(target, state.current_phase)):
            executor = self.executors.get(phase)
            if executor is None:
                logger.debug("rollback_executor_missing", phase=phase.value)
                continue
            try:
                await executor.rollback(state)
            except Exception as e:
                log_error(logger, e, "phase_rollback", migration_id=state.id, phase=phase.value)
                failures[phase.value] = str(e)

        if failures:
            raise RollbackError(
                f"Rollback to {target.value} failed for: {', '.join(failures)}", failures=failures
            )

        state = self.store.rollback_to_step(state, target)
        logger.info("migration_rolled_back", migration_id=state.id, target_phase=target.value)
        return state

    def get_progress(self, migration_id: str | None = None) -> dict[str, Any]:
        """State of a migration together with its progress summary."""
        state = self.store.load_state(migration_id)
        return {"state": state, "progress": self.store.get_progress(state)}

    def list_migrations(self) -> list[dict[str, Any]]:
        """All stored migrations, most recently modified first."""
        return self.store.list_states()

    def checkpoint_history(self, migration_id: str) -> list[CheckpointExecution]:
        return self.store.load_checkpoint_history(migration_id)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self,
        state: MigrationState,
        options: OrchestratorOptions,
        excluded: dict[MigrationPhase, str] | None = None,
        initial_backup: bool = False,
    ) -> MigrationState:
        """Run the pipeline; any unexpected error becomes a FAILED migration."""
        try:
            if initial_backup and state.config.backup_enabled:
                self.store.create_backup(state, "initial")

            state.status = MigrationStatus.IN_PROGRESS
            self.store.save_state(state)
            return await self._execute_migration(state, options, dict(excluded or {}))

        except Exception as e:
            log_error(logger, e, "migration_pipeline", migration_id=state.id)
            state.status = MigrationStatus.FAILED
            state.error = StepError.from_exception(e, phase=state.current_phase.value)
            try:
                self.store.save_state(state)
            except Exception as save_error:
                logger.critical(
                    "failed_migration_not_persisted",
                    migration_id=state.id,
                    error=str(save_error),
                )
            return state

    async def _execute_migration(
        self,
        state: MigrationState,
        options: OrchestratorOptions,
        excluded: dict[MigrationPhase, str],
    ) -> MigrationState:
        skipped = options.skipped()

        for phase in PHASE_ORDER:
            # Phases before the pointer have already been passed
            if phase_index(phase) < phase_index(state.current_phase):
                continue

            if phase == last_phase():
                return self._finalize(state, options)

            if state.is_phase_completed(phase):
                self._advance_pointer(state, phase)
                continue

            if phase in skipped:
                logger.info("phase_skipped", migration_id=state.id, phase=phase.value)
                if phase not in state.skipped_phases:
                    state.skipped_phases = [*state.skipped_phases, phase]
                self._advance_pointer(state, phase)
                continue

            if not await self._run_checkpoint(state, phase, excluded.pop(phase, None)):
                return state

            if is_critical(phase) and state.config.backup_enabled:
                self.store.create_backup(state, f"pre-{phase.value}")

            executor = self.executors.get(phase)
            if executor is None:
                raise MigrationError(f"No executor registered for phase {phase.value}")

            result = await executor.execute(state)
            state = self.store.update_step_result(
                state, result, advance_on_failure=state.config.dry_run
            )
            await self._notify(options, state, result)

            if not result.succeeded and not state.config.dry_run:
                logger.warning(
                    "migration_halted",
                    migration_id=state.id,
                    phase=phase.value,
                    error=result.error.message if result.error else None,
                )
                return state

        return state

    async def _run_checkpoint(
        self,
        state: MigrationState,
        phase: MigrationPhase,
        excluded_checkpoint: str | None,
    ) -> bool:
        """Evaluate checkpoints for ``phase``. Returns False when the run must stop."""
        exclude = (excluded_checkpoint,) if excluded_checkpoint else ()
        checkpoint = await self.checkpoints.should_trigger(state, phase, exclude=exclude)
        if checkpoint is None:
            return True

        result = await self.checkpoints.execute(checkpoint, state)

        if result.action == CheckpointAction.PAUSE:
            state.status = MigrationStatus.PAUSED
            self.store.save_state(state)
            self.store.save_paused_state(state, checkpoint.id, result.context)
            logger.info(
                "migration_paused",
                migration_id=state.id,
                phase=phase.value,
                checkpoint_id=checkpoint.id,
                message=result.message,
            )
            return False

        if result.action == CheckpointAction.ABORT:
            state.status = MigrationStatus.FAILED
            state.error = StepError(
                type="CheckpointAborted",
                message=result.message or f"Checkpoint {checkpoint.id} aborted the migration",
                details={"checkpoint_id": checkpoint.id, "phase": phase.value, **result.context},
            )
            self.store.save_state(state)
            logger.warning(
                "migration_aborted",
                migration_id=state.id,
                phase=phase.value,
                checkpoint_id=checkpoint.id,
            )
            return False

        if result.modifications:
            state.context = {**state.context, **result.modifications}
            self.store.save_state(state)
        return True

    def _advance_pointer(self, state: MigrationState, phase: MigrationPhase) -> None:
        following = next_phase(phase)
        if following is not None:
            state.current_phase = following
            self.store.save_state(state)

    def _finalize(self, state: MigrationState, options: OrchestratorOptions) -> MigrationState:
        failed = [p.value for p, r in state.step_results.items() if not r.succeeded]

        # Dry runs reach this point with failed phases; their results and error stay recorded
        if failed and state.error is None:
            state.error = StepError(
                type="PhaseFailures",
                message=f"{len(failed)} phase(s) failed: {', '.join(failed)}",
                details={"phases": failed},
            )
        state.status = MigrationStatus.COMPLETED
        state.completed_at = utcnow()
        self.store.save_state(state)

        logger.info(
            "migration_completed" if not failed else "migration_finished_with_failures",
            migration_id=state.id,
            completed=[p.value for p in state.completed_phases()],
            failed=failed,
        )
        return state

    async def _notify(
        self, options: OrchestratorOptions, state: MigrationState, result: StepResult
    ) -> None:
        progress = self.store.get_progress(state)
        log_phase_progress(
            logger,
            state.id,
            result.phase.value,
            progress["completed_steps"],
            progress["total_steps"],
            result_status=result.status.value,
        )

        callbacks: list[tuple[str, Callable[..., Any] | None, tuple[Any, ...]]] = [
            ("on_step_complete", options.on_step_complete, (state, result)),
            ("on_progress", options.on_progress, (state, progress)),
        ]
        for name, callback, args in callbacks:
            if callback is None:
                continue
            try:
                outcome = callback(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("callback_failed", callback=name, migration_id=state.id, error=str(e))
