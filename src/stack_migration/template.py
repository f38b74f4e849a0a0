"""Default collaborators operating on a JSON stack template.

The template is a CloudFormation-shaped document::

    {
        "Resources": {
            "<LogicalId>": {
                "Type": "...",
                "Properties": {...},
                "DependsOn": "<Id>" | ["<Id>", ...],
                "Metadata": {...}
            }
        },
        "Outputs": {...}
    }

These implementations are intentionally small. They give the pipeline a
working end-to-end path; richer scanners, generators and comparators plug in
through the protocols in ``stack_migration.resources``.
"""

import copy
import json
from pathlib import Path
from typing import Any

from stack_migration.exceptions import TemplateError
from stack_migration.resources import (
    PHYSICAL_ID_PROPERTIES,
    STATEFUL_TYPES,
    ComparisonReport,
    Difference,
    GenerationResult,
    Resource,
    ResourceAction,
    ResourceCollection,
)
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Properties whose change breaks adoption of an existing resource
CRITICAL_PROPERTIES: dict[str, tuple[str, ...]] = {
    "AWS::DynamoDB::Table": ("TableName", "KeySchema", "AttributeDefinitions", "BillingMode"),
    "AWS::Logs::LogGroup": ("LogGroupName",),
    "AWS::S3::Bucket": ("BucketName",),
    "AWS::RDS::DBInstance": ("DBInstanceIdentifier", "Engine"),
    "AWS::RDS::DBCluster": ("DBClusterIdentifier", "Engine"),
}

# Properties never compared
IGNORED_PROPERTIES = frozenset({"UpdateReplacePolicy", "DeletionPolicy", "Metadata"})


def normalize_depends_on(value: Any) -> list[str]:
    """DependsOn may be a single id or a list of ids."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    raise TemplateError(f"Invalid DependsOn value: {value!r}")


def read_template(template_path: str | Path) -> dict[str, Any]:
    """
    Read and minimally validate a template file.

    Raises:
        TemplateError: If the file is missing, not JSON, or has no Resources map
    """
    template_path = Path(template_path)
    if not template_path.exists():
        raise TemplateError(f"Template not found: {template_path}", {"path": str(template_path)})

    try:
        document = json.loads(template_path.read_text())
    except (OSError, ValueError) as e:
        raise TemplateError(f"Cannot read template {template_path}: {e}", {"path": str(template_path)}) from e

    if not isinstance(document, dict) or not isinstance(document.get("Resources"), dict):
        raise TemplateError(
            f"Template has no Resources section: {template_path}", {"path": str(template_path)}
        )
    return document


def resource_from_template(logical_id: str, body: dict[str, Any]) -> Resource:
    """Build a Resource from one entry of the Resources map."""
    if not isinstance(body, dict) or "Type" not in body:
        raise TemplateError(f"Resource {logical_id} has no Type", {"resource_id": logical_id})

    metadata = dict(body.get("Metadata") or {})
    for key in ("DeletionPolicy", "UpdateReplacePolicy", "Condition"):
        if key in body:
            metadata[key] = body[key]

    return Resource(
        id=logical_id,
        type=body["Type"],
        properties=dict(body.get("Properties") or {}),
        dependencies=normalize_depends_on(body.get("DependsOn")),
        metadata=metadata,
    )


def collection_from_document(document: dict[str, Any], source: str | None = None) -> ResourceCollection:
    resources = [resource_from_template(rid, body) for rid, body in document["Resources"].items()]
    return ResourceCollection.from_resources(resources, source=source)


class TemplateScanner:
    """Reads resources from a template file and resolves physical ids from it."""

    def scan(self, template_path: Path) -> ResourceCollection:
        document = read_template(template_path)
        collection = collection_from_document(document, source=str(template_path))
        logger.info("template_scanned", path=str(template_path), resources=len(collection))
        return collection

    def discover_resources(self, template_path: Path) -> ResourceCollection:
        """Scan and attach physical ids where the template reveals them."""
        collection = self.scan(template_path)
        resolved = 0
        for resource in collection.values():
            physical_id = self.resolve_physical_id(resource)
            if physical_id:
                resource.physical_id = physical_id
                resolved += 1

        logger.info("resources_discovered", resources=len(collection), physical_ids=resolved)
        return collection

    @staticmethod
    def resolve_physical_id(resource: Resource) -> str | None:
        """
        Physical id from ``Metadata.PhysicalResourceId`` or the type's name property.

        Only literal strings count; intrinsic functions cannot be resolved offline.
        """
        explicit = resource.metadata.get("PhysicalResourceId")
        if isinstance(explicit, str) and explicit:
            return explicit

        name_property = PHYSICAL_ID_PROPERTIES.get(resource.type)
        value = resource.properties.get(name_property) if name_property else None
        return value if isinstance(value, str) and value else None


class TypeBasedClassifier:
    """Imports stateful resource types, recreates everything else."""

    def __init__(self, stateful_types: frozenset[str] | None = None):
        self.stateful_types = stateful_types if stateful_types is not None else STATEFUL_TYPES

    def classify(self, resource: Resource) -> ResourceAction:
        if resource.type in self.stateful_types:
            return ResourceAction.IMPORT
        return ResourceAction.RECREATE


class ManifestGenerator:
    """
    Writes a JSON description of the target stack.

    Imported resources keep their logical id and get a Retain deletion
    policy; recreated resources are carried over as-is.
    """

    def describe_target(
        self, collection: ResourceCollection, classifications: dict[str, ResourceAction]
    ) -> dict[str, Any]:
        resources: dict[str, Any] = {}
        for resource in collection.values():
            action = classifications.get(resource.id, ResourceAction.RECREATE)
            entry: dict[str, Any] = {
                "type": resource.type,
                "properties": copy.deepcopy(resource.properties),
                "action": action.value,
            }
            if action == ResourceAction.IMPORT:
                entry["deletion_policy"] = "Retain"
                entry["physical_id"] = resource.physical_id
            resources[resource.id] = entry
        return {"resources": resources}

    def generate(
        self,
        collection: ResourceCollection,
        classifications: dict[str, ResourceAction],
        output_dir: Path,
        stack_name: str,
    ) -> GenerationResult:
        output_dir = Path(output_dir)
        target_path = output_dir / f"{stack_name}.target.json"
        description = self.describe_target(collection, classifications)
        description["stack_name"] = stack_name

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            target_path.write_text(json.dumps(description, indent=2, sort_keys=True))
        except OSError as e:
            raise TemplateError(f"Cannot write target description {target_path}: {e}") from e

        logger.info("target_generated", path=str(target_path), resources=len(description["resources"]))
        return GenerationResult(
            files=[str(target_path)],
            target_path=str(target_path),
            resource_count=len(description["resources"]),
        )


class ResourceComparator:
    """Compares source resources with a target description, property by property."""

    def __init__(self, critical_properties: dict[str, tuple[str, ...]] | None = None):
        self.critical_properties = (
            critical_properties if critical_properties is not None else CRITICAL_PROPERTIES
        )

    def compare(self, source: ResourceCollection, target: dict[str, Any]) -> ComparisonReport:
        target_resources: dict[str, Any] = target.get("resources", {})
        report = ComparisonReport()

        for resource in source.values():
            counterpart = target_resources.get(resource.id)
            if counterpart is None:
                report.missing_in_target.append(resource.id)
                report.differences.append(
                    Difference(
                        resource_id=resource.id,
                        severity="critical" if resource.is_stateful else "warning",
                        message=f"{resource.type} is missing from the target",
                    )
                )
                continue

            report.matched.append(resource.id)
            report.differences.extend(self._compare_resource(resource, counterpart))

        for resource_id in target_resources:
            if resource_id not in source:
                report.extra_in_target.append(resource_id)
                report.differences.append(
                    Difference(resource_id=resource_id, severity="info", message="Added in target")
                )

        logger.info(
            "comparison_finished",
            matched=len(report.matched),
            missing=len(report.missing_in_target),
            critical=report.critical_count,
        )
        return report

    def _compare_resource(self, resource: Resource, counterpart: dict[str, Any]) -> list[Difference]:
        if counterpart.get("type") != resource.type:
            return [
                Difference(
                    resource_id=resource.id,
                    severity="critical",
                    message=f"Type changed from {resource.type} to {counterpart.get('type')}",
                )
            ]

        differences = []
        critical = set(self.critical_properties.get(resource.type, ()))
        target_properties = counterpart.get("properties", {})
        for name in sorted(set(resource.properties) | set(target_properties)):
            if name in IGNORED_PROPERTIES:
                continue
            if resource.properties.get(name) == target_properties.get(name):
                continue
            differences.append(
                Difference(
                    resource_id=resource.id,
                    severity="critical" if name in critical else "warning",
                    message=f"Property {name} differs",
                )
            )
        return differences


class JsonTemplateEditor:
    """Holds a template in memory while resources are removed from it."""

    def __init__(self) -> None:
        self._document: dict[str, Any] | None = None
        self._source: str | None = None

    @property
    def document(self) -> dict[str, Any]:
        if self._document is None:
            raise TemplateError("No template loaded")
        return self._document

    def load(self, template_path: Path) -> ResourceCollection:
        self._document = copy.deepcopy(read_template(template_path))
        self._source = str(template_path)
        return self.collection()

    def collection(self) -> ResourceCollection:
        return collection_from_document(self.document, source=self._source)

    def remove_resource(self, resource_id: str) -> list[str]:
        """
        Remove a resource and drop it from every DependsOn list.

        Returns:
            Ids of resources whose DependsOn was rewritten

        Raises:
            TemplateError: If the resource is not in the template
        """
        resources = self.document["Resources"]
        if resource_id not in resources:
            raise TemplateError(
                f"Resource {resource_id} not found in template", {"resource_id": resource_id}
            )

        del resources[resource_id]

        updated = []
        for other_id, body in resources.items():
            before = normalize_depends_on(body.get("DependsOn"))
            after = [dep for dep in before if dep != resource_id]
            if len(after) == len(before):
                continue
            if not after:
                del body["DependsOn"]
            elif len(after) == 1:
                body["DependsOn"] = after[0]
            else:
                body["DependsOn"] = after
            updated.append(other_id)

        logger.debug("resource_removed", resource_id=resource_id, updated_dependents=updated)
        return updated

    def save(self, output_path: Path) -> Path:
        output_path = Path(output_path)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(json.dumps(self.document, indent=2))
        except OSError as e:
            raise TemplateError(f"Cannot write template {output_path}: {e}") from e
        return output_path
