"""Structural comparison of the source resources with the target description."""

from typing import Any

from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import (
    MigrationToolkit,
    classifications_from_state,
    collection_from_state,
)


class ComparisonExecutor(BaseStepExecutor):
    """Compares discovered resources against what the generator would produce."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.COMPARISON)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(state, MigrationPhase.CLASSIFICATION)

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        collection = collection_from_state(state)
        target = self.toolkit.generator.describe_target(collection, classifications_from_state(state))
        report = self.toolkit.comparator.compare(collection, target)
        return {
            "report": report.model_dump(mode="json"),
            "critical_count": report.critical_count,
            "compatible": report.compatible,
        }

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        critical = data.get("critical_count", 0)
        return [
            check("report_generated", "report" in data, "comparison report missing"),
            check(
                "no_critical_differences",
                critical == 0,
                f"{critical} critical difference(s) need review",
                CheckSeverity.WARNING,
            ),
        ]
