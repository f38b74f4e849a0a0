"""Collaborators and shared helpers for the phase executors."""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from stack_migration.config import MigrationConfig
from stack_migration.exceptions import StateError
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import MigrationState
from stack_migration.resources import (
    ResourceAction,
    ResourceClassifier,
    ResourceCollection,
    ResourceScanner,
    TargetGenerator,
    TemplateComparator,
    TemplateEditor,
)
from stack_migration.template import (
    JsonTemplateEditor,
    ManifestGenerator,
    ResourceComparator,
    TemplateScanner,
    TypeBasedClassifier,
)

MODIFIED_TEMPLATE_NAME = "source-template.modified.json"
IMPORT_MAPPING_NAME = "import-resources.json"


@dataclass
class MigrationToolkit:
    """External collaborators the executors call. Defaults work on JSON templates."""

    scanner: ResourceScanner = field(default_factory=TemplateScanner)
    classifier: ResourceClassifier = field(default_factory=TypeBasedClassifier)
    generator: TargetGenerator = field(default_factory=ManifestGenerator)
    comparator: TemplateComparator = field(default_factory=ResourceComparator)
    # A fresh editor per run; the template is re-read every time
    editor_factory: Callable[[], TemplateEditor] = JsonTemplateEditor


def modified_template_path(config: MigrationConfig) -> Path:
    return Path(config.target_dir) / MODIFIED_TEMPLATE_NAME


def import_mapping_path(config: MigrationConfig) -> Path:
    return Path(config.target_dir) / IMPORT_MAPPING_NAME


def collection_from_state(state: MigrationState) -> ResourceCollection:
    """Rebuild the discovered resource collection from the discovery payload."""
    data = state.phase_data(MigrationPhase.DISCOVERY)
    if "resources" not in data:
        raise StateError("Discovery results are not available")
    return ResourceCollection.model_validate(
        {"resources": data["resources"], "source": data.get("template_path")}
    )


def classifications_from_state(state: MigrationState) -> dict[str, ResourceAction]:
    data = state.phase_data(MigrationPhase.CLASSIFICATION)
    if "classifications" not in data:
        raise StateError("Classification results are not available")
    return {rid: ResourceAction(action) for rid, action in data["classifications"].items()}
