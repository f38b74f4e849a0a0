"""
Migration engine for Stack Bridge.

This module provides the dependency graph resolver, checkpoint registry,
state store, phase executors and the orchestrator that drives a stack
migration through its phases.
"""

# Checkpoints
from stack_migration.migration.checkpoint import (
    Checkpoint,
    CheckpointRegistry,
    register_default_checkpoints,
)

# Orchestration
from stack_migration.migration.coordinator import MigrationOrchestrator, OrchestratorOptions

# Dependency graph
from stack_migration.migration.dependencies import (
    DependencyGraph,
    OrderResult,
    RemovalPlan,
    advisory_cycle_warnings,
    detect_cycles,
    find_all_dependencies,
    find_dependents,
    plan_removal,
    resolve_order,
    topological_order,
)

# Executors
from stack_migration.migration.executor import BaseStepExecutor, ExecutorRegistry

# Phases and schemas
from stack_migration.migration.phases import MigrationPhase, MigrationStatus
from stack_migration.migration.schemas import (
    CheckpointAction,
    CheckpointExecution,
    CheckpointResult,
    MigrationState,
    PausedMigration,
    StepError,
    StepResult,
    ValidationCheck,
    VerificationResult,
)

# State management
from stack_migration.migration.state import StateStore
from stack_migration.migration.steps import MigrationToolkit, build_default_registry

__all__ = [
    # Phases and schemas
    "MigrationPhase",
    "MigrationStatus",
    "MigrationState",
    "StepResult",
    "StepError",
    "ValidationCheck",
    "VerificationResult",
    "CheckpointAction",
    "CheckpointResult",
    "CheckpointExecution",
    "PausedMigration",
    # Dependency graph
    "DependencyGraph",
    "OrderResult",
    "RemovalPlan",
    "topological_order",
    "resolve_order",
    "find_dependents",
    "find_all_dependencies",
    "detect_cycles",
    "advisory_cycle_warnings",
    "plan_removal",
    # Checkpoints
    "Checkpoint",
    "CheckpointRegistry",
    "register_default_checkpoints",
    # State management
    "StateStore",
    # Executors
    "BaseStepExecutor",
    "ExecutorRegistry",
    "MigrationToolkit",
    "build_default_registry",
    # Orchestration
    "MigrationOrchestrator",
    "OrchestratorOptions",
]
