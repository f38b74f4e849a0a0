"""Verification of the generated target stack."""

import json
from pathlib import Path
from typing import Any

from stack_migration.exceptions import TemplateError
from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import MigrationToolkit, collection_from_state


class VerificationExecutor(BaseStepExecutor):
    """Re-compares the written target with the source and checks every import is retained."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.VERIFICATION)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        return require_phases(
            state, MigrationPhase.CODE_GENERATION, MigrationPhase.IMPORT_PREPARATION
        )

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        target_path = Path(state.phase_data(MigrationPhase.CODE_GENERATION).get("target_path", ""))
        try:
            target = json.loads(target_path.read_text())
        except (OSError, ValueError) as e:
            raise TemplateError(f"Cannot read generated target {target_path}: {e}") from e

        report = self.toolkit.comparator.compare(collection_from_state(state), target)

        imports = state.phase_data(MigrationPhase.IMPORT_PREPARATION).get("importable", [])
        target_resources = target.get("resources", {})
        unprotected = [
            rid
            for rid in imports
            if target_resources.get(rid, {}).get("deletion_policy") != "Retain"
        ]
        return {
            "target_path": str(target_path),
            "report": report.model_dump(mode="json"),
            "critical_count": report.critical_count,
            "verified_imports": [rid for rid in imports if rid not in unprotected],
            "unprotected_imports": unprotected,
        }

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        critical = data.get("critical_count", 0)
        unprotected = data.get("unprotected_imports", [])
        return [
            check("no_critical_differences", critical == 0, f"{critical} critical difference(s)"),
            check(
                "imports_retained",
                not unprotected,
                f"not retained in target: {', '.join(unprotected)}" if unprotected else "",
            ),
        ]
