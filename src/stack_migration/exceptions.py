"""Custom exceptions for Stack Bridge.

This module defines exception classes for the error conditions that can
occur while configuring, persisting, and executing a stack migration.
"""

from typing import Any


class StackMigrationError(Exception):
    """Base exception for all stack migration tool errors."""

    pass


class ConfigurationError(StackMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(StackMigrationError):
    """Raised when state management errors occur."""

    pass


class StateNotFoundError(StateError):
    """Raised when a requested migration state record does not exist."""

    pass


class StateCorruptedError(StateError):
    """Raised when a persisted state record cannot be parsed."""

    pass


class InvalidRollbackError(StateError):
    """Raised when a rollback target is at or after the current phase."""

    pass


class CheckpointError(StateError):
    """Raised when checkpoint registration or pause records fail."""

    pass


class MigrationError(StackMigrationError):
    """Raised when migration operations fail."""

    pass


class PrerequisiteError(MigrationError):
    """Raised when a phase cannot execute because its prerequisites do not hold."""

    def __init__(self, message: str, phase: str | None = None):
        """Initialize prerequisite error.

        Args:
            message: Error message
            phase: Phase whose prerequisites failed
        """
        super().__init__(message)
        self.phase = phase


class StepValidationError(MigrationError):
    """Raised when a phase ran but its post-conditions failed."""

    def __init__(self, message: str, errors: list[str] | None = None):
        """Initialize validation error.

        Args:
            message: Error message
            errors: Messages of the failed error-severity checks
        """
        super().__init__(message)
        self.errors = errors or []


class RollbackError(MigrationError):
    """Raised when one or more phase rollbacks fail."""

    def __init__(self, message: str, failures: dict[str, str] | None = None):
        """Initialize rollback error.

        Args:
            message: Error message
            failures: Mapping of phase name to the rollback error message
        """
        super().__init__(message)
        self.failures = failures or {}


class DependencyError(MigrationError):
    """Raised when resource dependencies cannot be resolved."""

    pass


class CircularDependencyError(DependencyError):
    """Raised when the resource dependency graph contains a cycle.

    Attributes:
        cycle: Resource ids forming the cycle, first id repeated at the end
    """

    def __init__(self, cycle: list[str], message: str | None = None):
        self.cycle = list(cycle)
        super().__init__(message or f"Circular dependency detected: {' -> '.join(self.cycle)}")

    @property
    def members(self) -> set[str]:
        """Distinct resource ids taking part in the cycle."""
        return set(self.cycle)


class TemplateError(StackMigrationError):
    """Raised when a stack template cannot be read, edited, or written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize template error.

        Args:
            message: Error message
            details: Structured context (resource id, path, ...)
        """
        super().__init__(message)
        self.details = details or {}
