"""
Step executor framework.

Each pipeline phase is handled by one executor bound to that phase. The
orchestrator only talks to the uniform contract defined here and never
branches on phase identity; executors are looked up in an ExecutorRegistry
built once at startup.

Concrete executors implement four hooks:

- ``validate_prerequisites``: unmet phase-specific prerequisites
- ``execute_step``: the phase logic, returning the result payload
- ``execute_rollback``: best-effort, idempotent undo
- ``run_validation_checks``: named post-conditions of the phase
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from stack_migration.exceptions import MigrationError, PrerequisiteError, StepValidationError
from stack_migration.migration.phases import MigrationPhase, MigrationStatus
from stack_migration.migration.schemas import (
    CheckSeverity,
    MigrationState,
    StepError,
    StepResult,
    ValidationCheck,
    VerificationResult,
    utcnow,
)
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)


def check(
    name: str,
    passed: bool,
    message: str = "",
    severity: CheckSeverity = CheckSeverity.ERROR,
) -> ValidationCheck:
    """Shorthand for building a ValidationCheck."""
    return ValidationCheck(name=name, passed=passed, message=message, severity=severity)


def require_phases(state: MigrationState, *phases: MigrationPhase) -> list[str]:
    """Messages for each of ``phases`` that has not completed."""
    return [f"{phase.value} must be completed first" for phase in phases if not state.is_phase_completed(phase)]


class BaseStepExecutor(ABC):
    """
    Base class for phase executors.

    ``execute`` never raises: prerequisite failures, validation failures and
    errors from the phase logic are all returned as a FAILED StepResult.
    """

    def __init__(self, phase: MigrationPhase):
        self.phase = phase
        self.logger = logger.bind(phase=phase.value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(phase={self.phase.value})>"

    def prerequisite_errors(self, state: MigrationState) -> list[str]:
        """All reasons this executor cannot run against ``state``."""
        if state.current_phase != self.phase:
            return [f"Current phase is {state.current_phase.value}, not {self.phase.value}"]
        if state.is_phase_completed(self.phase):
            return [f"Phase {self.phase.value} is already completed"]
        return list(self.validate_prerequisites(state))

    def can_execute(self, state: MigrationState) -> bool:
        """True iff the state is at this phase, it has not completed, and prerequisites hold."""
        return not self.prerequisite_errors(state)

    async def execute(self, state: MigrationState) -> StepResult:
        """
        Run the phase and validate its outcome.

        Args:
            state: Current migration state (not modified)

        Returns:
            StepResult: COMPLETED with the payload, or FAILED with the error
        """
        started_at = utcnow()
        data: dict[str, Any] = {}
        validation: VerificationResult | None = None

        try:
            problems = self.prerequisite_errors(state)
            if problems:
                raise PrerequisiteError(
                    f"Prerequisites not met for {self.phase.value}: {'; '.join(problems)}",
                    phase=self.phase.value,
                )

            self.logger.info("step_started", migration_id=state.id)
            data = await self.execute_step(state) or {}

            validation = await self.validate(state, data)
            if not validation.passed:
                raise StepValidationError(
                    f"Validation failed for {self.phase.value}: {'; '.join(validation.errors)}",
                    errors=validation.errors,
                )

            for warning in validation.warnings:
                self.logger.warning("step_validation_warning", migration_id=state.id, warning=warning)

        except Exception as e:
            self.logger.error(
                "step_failed",
                migration_id=state.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return StepResult(
                phase=self.phase,
                status=MigrationStatus.FAILED,
                started_at=started_at,
                completed_at=utcnow(),
                data=data,
                error=StepError.from_exception(e),
                validation=validation,
            )

        result = StepResult(
            phase=self.phase,
            status=MigrationStatus.COMPLETED,
            started_at=started_at,
            completed_at=utcnow(),
            data=data,
            validation=validation,
        )
        self.logger.info(
            "step_completed",
            migration_id=state.id,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def rollback(self, state: MigrationState) -> None:
        """
        Undo whatever ``execute`` did. Safe to call on a phase that never completed.

        Raises:
            MigrationError: If the undo fails
        """
        self.logger.info("step_rollback_started", migration_id=state.id)
        try:
            await self.execute_rollback(state)
        except MigrationError:
            raise
        except Exception as e:
            self.logger.error("step_rollback_failed", migration_id=state.id, error=str(e))
            raise MigrationError(f"Rollback of {self.phase.value} failed: {e}") from e
        self.logger.info("step_rollback_completed", migration_id=state.id)

    async def validate(
        self, state: MigrationState, data: dict[str, Any] | None = None
    ) -> VerificationResult:
        """
        Run the phase's validation checks.

        Args:
            state: Current migration state
            data: Payload just produced by ``execute_step``; falls back to the
                stored result of this phase

        Returns:
            VerificationResult: ``passed`` is True iff no error-severity check failed
        """
        payload = data if data is not None else self._stored_payload(state)
        try:
            checks = list(await self.run_validation_checks(state, payload))
        except Exception as e:
            checks = [check("validation_checks", False, f"Validation raised {type(e).__name__}: {e}")]
        return VerificationResult.from_checks(checks)

    def _stored_payload(self, state: MigrationState) -> dict[str, Any]:
        result = state.result_for(self.phase)
        return dict(result.data) if result else {}

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        """Unmet phase-specific prerequisites; empty when the phase may run."""
        return []

    @abstractmethod
    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        """Run the phase logic and return its JSON payload."""

    async def execute_rollback(self, state: MigrationState) -> None:
        """Undo side effects of ``execute_step``. Default: nothing to undo."""
        return None

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> Iterable[ValidationCheck]:
        """Post-conditions of the phase. Default: none."""
        return []


class ExecutorRegistry:
    """Explicit phase -> executor map, built once and passed by reference."""

    def __init__(self, executors: Iterable[BaseStepExecutor] = ()):
        self._executors: dict[MigrationPhase, BaseStepExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: BaseStepExecutor) -> None:
        """
        Register an executor for its phase.

        Raises:
            MigrationError: If the phase already has an executor
        """
        if executor.phase in self._executors:
            raise MigrationError(f"Executor already registered for phase {executor.phase.value}")
        self._executors[executor.phase] = executor

    def get(self, phase: MigrationPhase) -> BaseStepExecutor | None:
        return self._executors.get(phase)

    def __contains__(self, phase: object) -> bool:
        return phase in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    def phases(self) -> list[MigrationPhase]:
        return [phase for phase in MigrationPhase if phase in self._executors]
