"""Classification of resources into imported and recreated ones."""

from typing import Any

from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import MigrationToolkit, collection_from_state
from stack_migration.resources import ResourceAction


class ClassificationExecutor(BaseStepExecutor):
    """Asks the classifier collaborator what happens to each discovered resource."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.CLASSIFICATION)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(state, MigrationPhase.DISCOVERY)

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        collection = collection_from_state(state)
        classifications = {
            resource.id: ResourceAction(self.toolkit.classifier.classify(resource)).value
            for resource in collection.values()
        }
        imported = [rid for rid, action in classifications.items() if action == ResourceAction.IMPORT.value]
        return {
            "classifications": classifications,
            "import": imported,
            "import_count": len(imported),
            "recreate_count": len(classifications) - len(imported),
        }

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        discovered = set(state.phase_data(MigrationPhase.DISCOVERY).get("resources", {}))
        classified = set(data.get("classifications", {}))
        unclassified = sorted(discovered - classified)
        return [
            check(
                "all_resources_classified",
                not unclassified,
                f"unclassified: {', '.join(unclassified)}" if unclassified else "",
            ),
            check(
                "import_candidates",
                True,
                f"{data.get('import_count', 0)} to import, {data.get('recreate_count', 0)} to recreate",
                CheckSeverity.INFO,
            ),
        ]
