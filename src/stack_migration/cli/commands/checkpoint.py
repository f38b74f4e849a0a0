"""
Checkpoint commands.

This module provides commands for viewing checkpoint definitions, pause
records and the checkpoint audit trail.
"""

import click

from stack_migration.cli.context import MigrationContext
from stack_migration.cli.decorators import handle_errors, pass_context
from stack_migration.cli.utils import echo_warning, format_timestamp, print_table
from stack_migration.migration.checkpoint import default_checkpoints
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="checkpoint")
def checkpoint() -> None:
    """Checkpoint commands.

    Inspect checkpoint definitions, pauses and executions.
    """
    pass


@checkpoint.command(name="definitions")
def definitions() -> None:
    """List the built-in checkpoints and the phase each one guards."""
    rows = [[cp.id, cp.phase.value, cp.description] for cp in default_checkpoints()]
    print_table("Checkpoints", ["ID", "Phase", "Description"], rows)


@checkpoint.command(name="list")
@click.argument("migration_id", required=False)
@click.option("--limit", type=int, default=20, help="Maximum number of pauses to display")
@pass_context
@handle_errors
def list_pauses(ctx: MigrationContext, migration_id: str | None, limit: int) -> None:
    """List checkpoint pauses, newest first."""
    pauses = ctx.store.list_checkpoints(migration_id)[:limit]
    if not pauses:
        echo_warning("No checkpoint pauses found")
        return

    rows = [
        [
            item["id"],
            item["migration_id"],
            item["checkpoint_id"],
            format_timestamp(item["paused_at"]),
        ]
        for item in pauses
    ]
    print_table(
        f"Checkpoint Pauses (showing {len(pauses)})",
        ["ID", "Migration", "Checkpoint", "Paused"],
        rows,
    )


@checkpoint.command(name="history")
@click.argument("migration_id")
@pass_context
@handle_errors
def history(ctx: MigrationContext, migration_id: str) -> None:
    """Show every checkpoint execution of a migration, oldest first."""
    executions = ctx.orchestrator.checkpoint_history(migration_id)
    if not executions:
        echo_warning(f"No checkpoint executions recorded for {migration_id}")
        return

    rows = [
        [
            format_timestamp(execution.executed_at),
            execution.checkpoint_id,
            execution.phase.value,
            execution.result.action.value,
            execution.result.message or "",
        ]
        for execution in executions
    ]
    print_table(
        f"Checkpoint History ({migration_id})",
        ["Executed", "Checkpoint", "Phase", "Action", "Message"],
        rows,
    )
