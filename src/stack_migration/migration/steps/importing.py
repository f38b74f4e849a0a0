"""Preparation of the resource import mapping."""

import json
from pathlib import Path
from typing import Any

from stack_migration.exceptions import TemplateError
from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import (
    classifications_from_state,
    collection_from_state,
    import_mapping_path,
)
from stack_migration.resources import PHYSICAL_ID_PROPERTIES, ResourceAction

DEFAULT_IDENTIFIER_KEY = "PhysicalId"


class ImportPreparationExecutor(BaseStepExecutor):
    """
    Writes ``import-resources.json`` mapping each imported logical id to its
    deployed identifier. Resources without a physical id are skipped and
    reported.
    """

    def __init__(self) -> None:
        super().__init__(MigrationPhase.IMPORT_PREPARATION)

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(
            state, MigrationPhase.TEMPLATE_MODIFICATION, MigrationPhase.CODE_GENERATION
        )

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        collection = collection_from_state(state)
        classifications = classifications_from_state(state)

        mapping: dict[str, dict[str, str]] = {}
        skipped: list[str] = []
        for resource in collection.values():
            if classifications.get(resource.id) != ResourceAction.IMPORT:
                continue
            if not resource.physical_id:
                skipped.append(resource.id)
                continue
            key = PHYSICAL_ID_PROPERTIES.get(resource.type, DEFAULT_IDENTIFIER_KEY)
            mapping[resource.id] = {key: resource.physical_id}

        path = import_mapping_path(state.config)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(mapping, indent=2, sort_keys=True))
        except OSError as e:
            raise TemplateError(f"Cannot write import mapping {path}: {e}") from e

        return {
            "mapping_path": str(path),
            "importable": sorted(mapping),
            "skipped": skipped,
        }

    async def execute_rollback(self, state: MigrationState) -> None:
        import_mapping_path(state.config).unlink(missing_ok=True)

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        skipped = data.get("skipped", [])
        return [
            check(
                "mapping_written",
                Path(data.get("mapping_path", "")).is_file(),
                "import mapping file missing",
            ),
            check(
                "all_imports_identified",
                not skipped,
                f"no physical id for: {', '.join(skipped)}" if skipped else "",
                CheckSeverity.WARNING,
            ),
        ]
