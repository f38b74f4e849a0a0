"""Initial scan of the source stack template."""

from typing import Any

from stack_migration.migration.executor import BaseStepExecutor, check
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import MigrationToolkit


class ScanExecutor(BaseStepExecutor):
    """Reads the source template and records what it contains."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.INITIAL_SCAN)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        template_path = state.config.resolved_template_path
        if not template_path.exists():
            return [f"Source template not found: {template_path}"]
        return []

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        template_path = state.config.resolved_template_path
        collection = self.toolkit.scanner.scan(template_path)
        return {
            "template_path": str(template_path),
            "resource_count": len(collection),
            "resource_types": collection.type_counts(),
            "stateful_count": sum(1 for r in collection.values() if r.is_stateful),
        }

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        count = data.get("resource_count", 0)
        return [check("resources_found", count > 0, f"{count} resource(s) in template")]
