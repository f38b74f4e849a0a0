"""Terminal phase.

The orchestrator marks a migration COMPLETED on reaching this phase without
executing anything; the executor exists so rollback and direct callers see
a uniform contract for every phase.
"""

from typing import Any

from stack_migration.migration.executor import BaseStepExecutor
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import MigrationState


class CompletionExecutor(BaseStepExecutor):
    def __init__(self) -> None:
        super().__init__(MigrationPhase.COMPLETE)

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        return {
            "completed_phases": [p.value for p in state.completed_phases()],
            "skipped_phases": [p.value for p in state.skipped_phases],
        }
