"""Resource discovery: full resource collection with physical ids."""

from typing import Any

from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import MigrationToolkit


class DiscoveryExecutor(BaseStepExecutor):
    """
    Discovers resources and their deployed identifiers.

    The collection is stored in the result payload; later phases rebuild it
    from there instead of re-reading the template, so a resumed migration
    sees exactly what was discovered.
    """

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.DISCOVERY)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(state, MigrationPhase.INITIAL_SCAN)

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        template_path = state.config.resolved_template_path
        collection = self.toolkit.scanner.discover_resources(template_path)

        missing = [r.id for r in collection.values() if r.is_stateful and not r.physical_id]
        return {
            "template_path": str(template_path),
            "resource_count": len(collection),
            "resources": {r.id: r.model_dump(mode="json") for r in collection.values()},
            "physical_ids": {r.id: r.physical_id for r in collection.values() if r.physical_id},
            "missing_physical_ids": missing,
        }

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        count = data.get("resource_count", 0)
        scanned = state.phase_data(MigrationPhase.INITIAL_SCAN).get("resource_count")
        missing = data.get("missing_physical_ids", [])
        return [
            check("resources_discovered", count > 0, f"{count} resource(s) discovered"),
            check(
                "matches_scan",
                scanned is None or scanned == count,
                f"scan found {scanned}, discovery found {count}",
                CheckSeverity.WARNING,
            ),
            check(
                "physical_ids_resolved",
                not missing,
                f"missing for: {', '.join(missing)}" if missing else "",
                CheckSeverity.WARNING,
            ),
        ]
