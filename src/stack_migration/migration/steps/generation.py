"""Target stack generation."""

from pathlib import Path
from typing import Any

from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import (
    MigrationToolkit,
    classifications_from_state,
    collection_from_state,
)


class CodeGenerationExecutor(BaseStepExecutor):
    """Has the generator collaborator write the target stack."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.CODE_GENERATION)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(
            state, MigrationPhase.CLASSIFICATION, MigrationPhase.TEMPLATE_MODIFICATION
        )

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        collection = collection_from_state(state)
        result = self.toolkit.generator.generate(
            collection,
            classifications_from_state(state),
            Path(state.config.target_dir),
            state.config.stack_name,
        )
        data = result.model_dump(mode="json")
        data["target_language"] = state.config.target_language
        data["source_resource_count"] = len(collection)
        return data

    async def execute_rollback(self, state: MigrationState) -> None:
        result = state.result_for(self.phase)
        if result is None:
            return
        for file_name in result.data.get("files", []):
            Path(file_name).unlink(missing_ok=True)

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        missing = [f for f in data.get("files", []) if not Path(f).is_file()]
        generated = data.get("resource_count", 0)
        expected = data.get("source_resource_count", generated)
        return [
            check("files_written", bool(data.get("files")) and not missing, f"missing: {missing}"),
            check(
                "all_resources_generated",
                generated == expected,
                f"generated {generated} of {expected} resource(s)",
                CheckSeverity.WARNING,
            ),
        ]
