"""
State management commands.

This module provides commands for inspecting backups, exporting migration
state and pruning old records.
"""

from datetime import UTC, datetime
from pathlib import Path

import click

from stack_migration.cli.context import MigrationContext
from stack_migration.cli.decorators import confirm_action, handle_errors, pass_context
from stack_migration.cli.utils import (
    echo_info,
    echo_success,
    echo_warning,
    format_timestamp,
    print_table,
)
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="state")
def state() -> None:
    """Migration state management commands.

    Inspect backups, export state and clean up old records.
    """
    pass


@state.command(name="backups")
@click.argument("migration_id", required=False)
@pass_context
@handle_errors
def list_backups(ctx: MigrationContext, migration_id: str | None) -> None:
    """List state backups, newest first."""
    backups = ctx.store.list_backups(migration_id)
    if not backups:
        echo_warning("No backups found")
        return

    rows = [
        [
            path.name,
            format_timestamp(datetime.fromtimestamp(path.stat().st_mtime, UTC)),
            f"{path.stat().st_size / 1024:.1f} KB",
        ]
        for path in backups
    ]
    print_table(f"Backups ({len(backups)})", ["File", "Created", "Size"], rows)


@state.command(name="export")
@click.argument("migration_id", required=False)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Output JSON file",
)
@pass_context
@handle_errors
def export(ctx: MigrationContext, migration_id: str | None, output: Path) -> None:
    """Export a migration's state as JSON (the current migration by default)."""
    path = ctx.store.export_state(migration_id, output)
    echo_success(f"State exported to {path}")


@state.command(name="cleanup")
@click.option(
    "--retention-days",
    type=click.IntRange(min=1),
    help="Delete records older than this (default: from configuration)",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@handle_errors
@confirm_action("Delete expired migration records and backups?", cancelled="Cleanup cancelled.")
def cleanup(ctx: MigrationContext, retention_days: int | None, yes: bool) -> None:
    """Delete expired migration records and their backups.

    The current migration and migrations that are pending, in progress or
    paused are never deleted.
    """
    echo_info("Cleaning up expired state...")
    counts = ctx.store.cleanup(retention_days)
    rows = [[name.replace("_", " "), count] for name, count in counts.items()]
    print_table("Deleted", ["Kind", "Count"], rows)
    echo_success("Cleanup complete")
