"""
Configuration management commands.

This module provides commands for validating migration configuration.
"""

from pathlib import Path

import click

from stack_migration.cli.context import MigrationContext
from stack_migration.cli.decorators import handle_errors, pass_context, requires_config
from stack_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from stack_migration.config import BridgeSettings
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate migration configuration files.
    """
    pass


@config.command(name="validate")
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext) -> None:
    """Validate migration configuration.

    This command validates the migration configuration file, checking:
    - Required fields are present
    - The source directory and template exist
    - The state directory is writable

    Examples:

        stack-bridge config validate --config config.yaml
    """
    echo_info(f"Validating configuration: {ctx.config_path}")

    settings = ctx.settings

    click.echo()
    _display_config_summary(settings)

    click.echo()
    echo_info("Validating paths...")
    problems = _validate_paths(settings)

    if problems:
        for problem in problems:
            echo_error(problem)
        raise click.exceptions.Exit(2)

    echo_success("Configuration is valid")


def _display_config_summary(settings: BridgeSettings) -> None:
    migration = settings.migration
    rows = [
        ["Stack", migration.stack_name],
        ["Stage", migration.stage],
        ["Region", migration.region],
        ["Source", migration.source_dir],
        ["Template", str(migration.resolved_template_path)],
        ["Target", f"{migration.target_dir} ({migration.target_language})"],
        ["Dry run", "yes" if migration.dry_run else "no"],
        ["Backups", "enabled" if migration.backup_enabled else "disabled"],
        ["State", str(settings.state.work_path)],
    ]
    print_table("Configuration Summary", ["Setting", "Value"], rows)


def _validate_paths(settings: BridgeSettings) -> list[str]:
    """Returns blocking problems; prints warnings for the rest."""
    problems = []
    migration = settings.migration

    if not Path(migration.source_dir).is_dir():
        problems.append(f"Source directory not found: {migration.source_dir}")
    if not migration.resolved_template_path.is_file():
        problems.append(f"Source template not found: {migration.resolved_template_path}")

    target = Path(migration.target_dir)
    if target.is_dir() and any(target.iterdir()):
        echo_warning(f"Target directory is not empty: {target}")

    work_path = settings.state.work_path
    parent = work_path if work_path.exists() else work_path.parent
    if parent.exists() and not parent.is_dir():
        problems.append(f"State directory is not a directory: {work_path}")

    return problems
