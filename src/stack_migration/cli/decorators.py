"""
Decorators for CLI commands.

Commands are stacked as::

    @migrate.command()
    @pass_context
    @handle_errors
    def command(ctx: MigrationContext, ...): ...

so the MigrationContext arrives first and every stack-bridge exception is
turned into a message and an exit code.
"""

import functools
from collections.abc import Callable

import click

from stack_migration.cli.context import MigrationContext
from stack_migration.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    MigrationError,
    RollbackError,
    StackMigrationError,
    StateError,
    TemplateError,
)
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

EXIT_GENERAL = 1
EXIT_CONFIG = 2
EXIT_STATE = 5
EXIT_MIGRATION = 6

# Checked in order; subclasses before their bases
ERROR_EXIT_CODES: list[tuple[type[StackMigrationError], str, int]] = [
    (ConfigurationError, "Configuration Error", EXIT_CONFIG),
    (StateError, "State Error", EXIT_STATE),
    (RollbackError, "Rollback Error", EXIT_MIGRATION),
    (CircularDependencyError, "Dependency Error", EXIT_MIGRATION),
    (MigrationError, "Migration Error", EXIT_MIGRATION),
    (TemplateError, "Template Error", EXIT_MIGRATION),
]

# MigrationContext stored on the click context by the ``cli`` group
pass_context = click.make_pass_decorator(MigrationContext)


def _error_hints(error: StackMigrationError) -> list[str]:
    """Extra lines explaining an error, from the structured data it carries."""
    if isinstance(error, RollbackError):
        return [f"  {phase}: {message}" for phase, message in error.failures.items()]
    if isinstance(error, CircularDependencyError):
        return [f"  Resources in the cycle: {', '.join(sorted(error.members))}"]
    if isinstance(error, ConfigurationError):
        return ["Check the configuration file or the migrate start options."]
    if isinstance(error, StateError):
        return ["Inspect the state directory with 'stack-bridge state backups'."]
    return []


def handle_errors(f: Callable) -> Callable:
    """
    Map stack-bridge exceptions to messages and exit codes.

    Exit codes:
        0: Success
        1: Unexpected error
        2: Configuration error
        5: State error
        6: Migration, rollback, dependency or template error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except StackMigrationError as e:
            label, code = next(
                ((label, code) for kind, label, code in ERROR_EXIT_CODES if isinstance(e, kind)),
                ("Error", EXIT_GENERAL),
            )
            logger.error("command_failed", error_type=type(e).__name__, error=str(e), exit_code=code)
            click.echo(f"{label}: {e}", err=True)
            for line in _error_hints(e):
                click.echo(line, err=True)
            raise click.exceptions.Exit(code) from e

        except Exception as e:
            logger.error("command_crashed", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo("See the log file for the traceback.", err=True)
            raise click.exceptions.Exit(EXIT_GENERAL) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """
    Require a configuration file whose migration section loads.

    The loaded settings are cached on the MigrationContext, so the command
    can read ``ctx.settings`` without handling load errors itself.
    """

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        if not ctx.has_config:
            click.echo(
                "Error: this command needs a configuration file (--config or STACK_BRIDGE_CONFIG).",
                err=True,
            )
            raise click.exceptions.Exit(EXIT_CONFIG)

        try:
            migration = ctx.settings.migration
        except ConfigurationError as e:
            click.echo(f"Error loading {ctx.config_path}: {e}", err=True)
            raise click.exceptions.Exit(EXIT_CONFIG) from e

        logger.debug(
            "configuration_loaded",
            config_path=str(ctx.config_path),
            stack_name=migration.stack_name,
        )
        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(prompt: str, cancelled: str = "Operation cancelled.") -> Callable:
    """
    Ask before running a destructive command, unless ``--yes`` was given.

    Args:
        prompt: Question to ask; formatted with the command's parameters,
            e.g. ``"Roll back {migration_id} to {target}?"``
        cancelled: Printed when the answer is no
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            params = click.get_current_context().params
            if not params.get("yes") and not click.confirm(prompt.format(**params)):
                click.echo(cancelled)
                return None
            return f(*args, **kwargs)

        return wrapper

    return decorator
