"""Resource model and collaborator interfaces.

This module is the single place that defines what a stack resource looks like
to the migration engine and which external collaborators the engine talks to:

- ResourceScanner: reads the source stack definition into a ResourceCollection
- ResourceClassifier: decides whether a resource is imported or recreated
- TargetGenerator: describes and writes the generated target stack
- TemplateComparator: compares the source collection with a target description
- TemplateEditor: mutates the source template (removal, dependency rewrite)

Concrete implementations live in ``stack_migration.template``; tests supply
their own stand-ins.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

# Types that hold data and must be adopted by the target stack rather than recreated
STATEFUL_TYPES: frozenset[str] = frozenset(
    {
        "AWS::DynamoDB::Table",
        "AWS::S3::Bucket",
        "AWS::Logs::LogGroup",
        "AWS::RDS::DBInstance",
        "AWS::RDS::DBCluster",
        "AWS::EFS::FileSystem",
        "AWS::Backup::BackupVault",
    }
)

# Property that carries the physical name of a stateful resource, per type
PHYSICAL_ID_PROPERTIES: dict[str, str] = {
    "AWS::DynamoDB::Table": "TableName",
    "AWS::S3::Bucket": "BucketName",
    "AWS::Logs::LogGroup": "LogGroupName",
    "AWS::RDS::DBInstance": "DBInstanceIdentifier",
    "AWS::RDS::DBCluster": "DBClusterIdentifier",
    "AWS::Backup::BackupVault": "BackupVaultName",
}


class ResourceAction(str, Enum):
    """What the target stack does with a source resource."""

    IMPORT = "IMPORT"
    RECREATE = "RECREATE"


class Resource(BaseModel):
    """A single resource of the source stack."""

    id: str = Field(..., description="Logical id, unique within the stack")
    type: str = Field(..., description="Provider resource type")
    properties: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(
        default_factory=list, description="Explicitly declared dependencies"
    )
    physical_id: str | None = Field(default=None, description="Deployed identifier, if known")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_stateful(self) -> bool:
        return self.type in STATEFUL_TYPES


class ResourceCollection(BaseModel):
    """Id-keyed collection of resources, in template order."""

    resources: dict[str, Resource] = Field(default_factory=dict)
    source: str | None = Field(default=None, description="Where the collection was read from")

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources

    def ids(self) -> list[str]:
        return list(self.resources)

    def get(self, resource_id: str) -> Resource | None:
        return self.resources.get(resource_id)

    def values(self) -> list[Resource]:
        return list(self.resources.values())

    def type_counts(self) -> dict[str, int]:
        """Number of resources per resource type."""
        counts: dict[str, int] = {}
        for resource in self.resources.values():
            counts[resource.type] = counts.get(resource.type, 0) + 1
        return counts

    @classmethod
    def from_resources(cls, resources: list[Resource], source: str | None = None):
        return cls(resources={r.id: r for r in resources}, source=source)


class Difference(BaseModel):
    """One structural difference found by a comparator."""

    resource_id: str
    severity: str = Field(..., description="critical, warning or info")
    message: str


class ComparisonReport(BaseModel):
    """Outcome of comparing the source collection with a target description."""

    matched: list[str] = Field(default_factory=list)
    missing_in_target: list[str] = Field(default_factory=list)
    extra_in_target: list[str] = Field(default_factory=list)
    differences: list[Difference] = Field(default_factory=list)

    @property
    def critical_count(self) -> int:
        return sum(1 for d in self.differences if d.severity == "critical")

    @property
    def compatible(self) -> bool:
        return self.critical_count == 0


class GenerationResult(BaseModel):
    """Files written by a target generator."""

    files: list[str] = Field(default_factory=list)
    target_path: str = Field(..., description="Path of the generated target description")
    resource_count: int = 0


@runtime_checkable
class ResourceScanner(Protocol):
    """Reads the source stack definition."""

    def scan(self, template_path: Path) -> ResourceCollection: ...

    def discover_resources(self, template_path: Path) -> ResourceCollection: ...


@runtime_checkable
class ResourceClassifier(Protocol):
    """Decides how each resource reaches the target stack."""

    def classify(self, resource: Resource) -> ResourceAction: ...


@runtime_checkable
class TargetGenerator(Protocol):
    """Produces the target stack from classified resources."""

    def describe_target(
        self, collection: ResourceCollection, classifications: dict[str, ResourceAction]
    ) -> dict[str, Any]: ...

    def generate(
        self,
        collection: ResourceCollection,
        classifications: dict[str, ResourceAction],
        output_dir: Path,
        stack_name: str,
    ) -> GenerationResult: ...


@runtime_checkable
class TemplateComparator(Protocol):
    """Compares the source collection with a target description."""

    def compare(self, source: ResourceCollection, target: dict[str, Any]) -> ComparisonReport: ...


@runtime_checkable
class TemplateEditor(Protocol):
    """Owns the mutable source template during structural modification."""

    def load(self, template_path: Path) -> ResourceCollection: ...

    def collection(self) -> ResourceCollection: ...

    def remove_resource(self, resource_id: str) -> list[str]: ...

    def save(self, output_path: Path) -> Path: ...
