"""Structural modification of the source template.

Resources that the target stack adopts are removed from the source template
so the source stack releases them. The removal order comes from the
dependency graph: dependents go before what they depend on, and a cycle in
the affected part of the graph fails the phase before anything is removed.
"""

import json
from pathlib import Path
from typing import Any

from stack_migration.migration.dependencies import (
    DependencyGraph,
    advisory_cycle_warnings,
    plan_removal,
)
from stack_migration.migration.executor import BaseStepExecutor, check, require_phases
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import CheckSeverity, MigrationState, ValidationCheck
from stack_migration.migration.steps.toolkit import (
    MigrationToolkit,
    classifications_from_state,
    modified_template_path,
)
from stack_migration.resources import ResourceAction


class TemplateModificationExecutor(BaseStepExecutor):
    """Removes imported resources from a copy of the source template."""

    def __init__(self, toolkit: MigrationToolkit):
        super().__init__(MigrationPhase.TEMPLATE_MODIFICATION)
        self.toolkit = toolkit

    def validate_prerequisites(self, state: MigrationState) -> list[str]:
        problems = require_phases(state, MigrationPhase.CLASSIFICATION, MigrationPhase.COMPARISON)
        template_path = state.config.resolved_template_path
        if not template_path.exists():
            problems.append(f"Source template not found: {template_path}")
        return problems

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        editor = self.toolkit.editor_factory()
        collection = editor.load(state.config.resolved_template_path)

        # Rebuilt from the template as it is now, never from stored results
        graph = DependencyGraph.build(collection)
        cycle_warnings = advisory_cycle_warnings(graph)

        classifications = classifications_from_state(state)
        removal = [
            rid
            for rid in collection.ids()
            if classifications.get(rid) == ResourceAction.IMPORT
        ]
        plan = plan_removal(graph, removal)

        updated: dict[str, list[str]] = {}
        for resource_id in plan.order:
            rewritten = editor.remove_resource(resource_id)
            if rewritten:
                updated[resource_id] = rewritten

        output_path = editor.save(modified_template_path(state.config))
        self.logger.info(
            "template_modified",
            migration_id=state.id,
            removed=plan.order,
            output_path=str(output_path),
        )

        return {
            "removed": plan.order,
            "updated_dependencies": updated,
            "external_dependents": plan.external_dependents,
            "warnings": plan.warnings + cycle_warnings,
            "output_path": str(output_path),
            "remaining_count": len(editor.collection()),
        }

    async def execute_rollback(self, state: MigrationState) -> None:
        # The source template itself is never written; dropping the copy undoes the phase
        modified_template_path(state.config).unlink(missing_ok=True)

    async def run_validation_checks(
        self, state: MigrationState, data: dict[str, Any]
    ) -> list[ValidationCheck]:
        output_path = Path(data.get("output_path", ""))
        if not output_path.is_file():
            return [check("modified_template_written", False, f"not found: {output_path}")]

        remaining = json.loads(output_path.read_text()).get("Resources", {})
        still_present = [rid for rid in data.get("removed", []) if rid in remaining]
        external = data.get("external_dependents", {})
        return [
            check("modified_template_written", True),
            check(
                "removed_resources_absent",
                not still_present,
                f"still present: {', '.join(still_present)}" if still_present else "",
            ),
            check(
                "no_external_dependents",
                not external,
                f"{len(external)} removed resource(s) still referenced",
                CheckSeverity.WARNING,
            ),
            check(
                "no_advisory_cycles",
                not any(w.startswith("Circular dependency") for w in data.get("warnings", [])),
                "template contains circular dependencies",
                CheckSeverity.WARNING,
            ),
        ]
