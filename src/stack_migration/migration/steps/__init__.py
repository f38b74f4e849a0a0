"""
Concrete phase executors.

``build_default_registry`` wires one executor per phase to a toolkit of
collaborators; the orchestrator receives the registry by reference.
"""

from stack_migration.migration.executor import ExecutorRegistry
from stack_migration.migration.steps.classification import ClassificationExecutor
from stack_migration.migration.steps.comparison import ComparisonExecutor
from stack_migration.migration.steps.completion import CompletionExecutor
from stack_migration.migration.steps.discovery import DiscoveryExecutor
from stack_migration.migration.steps.generation import CodeGenerationExecutor
from stack_migration.migration.steps.importing import ImportPreparationExecutor
from stack_migration.migration.steps.modification import TemplateModificationExecutor
from stack_migration.migration.steps.scan import ScanExecutor
from stack_migration.migration.steps.toolkit import MigrationToolkit
from stack_migration.migration.steps.verification import VerificationExecutor


def build_default_registry(toolkit: MigrationToolkit | None = None) -> ExecutorRegistry:
    """Registry with one executor for every phase."""
    toolkit = toolkit or MigrationToolkit()
    return ExecutorRegistry(
        [
            ScanExecutor(toolkit),
            DiscoveryExecutor(toolkit),
            ClassificationExecutor(toolkit),
            ComparisonExecutor(toolkit),
            TemplateModificationExecutor(toolkit),
            CodeGenerationExecutor(toolkit),
            ImportPreparationExecutor(),
            VerificationExecutor(toolkit),
            CompletionExecutor(),
        ]
    )


__all__ = [
    "ClassificationExecutor",
    "CodeGenerationExecutor",
    "ComparisonExecutor",
    "CompletionExecutor",
    "DiscoveryExecutor",
    "ImportPreparationExecutor",
    "MigrationToolkit",
    "ScanExecutor",
    "TemplateModificationExecutor",
    "VerificationExecutor",
    "build_default_registry",
]
