"""
Migration commands.

This module provides commands for starting, resuming, rolling back and
inspecting stack migrations.
"""

import asyncio
from pathlib import Path
from typing import Any

import click

from stack_migration.cli.context import MigrationContext
from stack_migration.cli.decorators import confirm_action, handle_errors, pass_context
from stack_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_status,
    echo_success,
    echo_warning,
    format_duration,
    format_timestamp,
    print_table,
)
from stack_migration.exceptions import ConfigurationError
from stack_migration.migration.coordinator import OrchestratorOptions
from stack_migration.migration.phases import PHASE_ORDER, MigrationPhase, MigrationStatus
from stack_migration.migration.schemas import MigrationState, StepResult
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

PHASE_CHOICES = [phase.value for phase in PHASE_ORDER]


@click.group(name="migrate")
def migrate() -> None:
    """Migration commands.

    Start, resume, roll back and inspect migrations.
    """
    pass


def _echo_step(state: MigrationState, result: StepResult) -> None:
    duration = format_duration(result.duration_seconds)
    if result.succeeded:
        echo_success(f"{result.phase.value} completed in {duration}")
    else:
        message = result.error.message if result.error else "unknown error"
        echo_error(f"{result.phase.value} failed: {message}")


def _build_options(skip_phase: tuple[str, ...], quiet: bool = False) -> OrchestratorOptions:
    return OrchestratorOptions(
        skip_phases=skip_phase,
        on_step_complete=None if quiet else _echo_step,
    )


def _report_outcome(state: MigrationState) -> None:
    """Print the final state of a run and exit non-zero when it failed."""
    click.echo()
    click.echo(f"Migration ID: {state.id}")
    click.echo(f"Phase: {state.current_phase.value}")
    echo_status(state.status.value)

    if state.status == MigrationStatus.COMPLETED:
        echo_success("Migration completed")
        failed = [p.value for p, r in state.step_results.items() if not r.succeeded]
        if failed:
            echo_warning(f"Dry run recorded failures in: {', '.join(failed)}")
    elif state.status == MigrationStatus.PAUSED:
        echo_warning("Migration paused at a checkpoint")
        echo_info(f"Review the checkpoint, then run: stack-bridge migrate resume {state.id}")
    elif state.status == MigrationStatus.FAILED:
        if state.error:
            echo_error(f"{state.error.type}: {state.error.message}")
        raise click.exceptions.Exit(6)


def _migration_options(ctx: MigrationContext, overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge command-line options over the configuration file's migration section."""
    options: dict[str, Any] = ctx.settings.migration.model_dump() if ctx.has_config else {}
    options.update({k: v for k, v in overrides.items() if v is not None})

    missing = [name for name in ("source_dir", "target_dir", "stack_name") if not options.get(name)]
    if missing:
        raise ConfigurationError(
            "Missing migration options: "
            + ", ".join(f"--{name.replace('_', '-')}" for name in missing)
        )
    return options


@migrate.command(name="start")
@click.option("--source-dir", type=click.Path(file_okay=False), help="Source stack directory")
@click.option("--target-dir", type=click.Path(file_okay=False), help="Output directory")
@click.option("--stack-name", help="Name of the deployed source stack")
@click.option("--stage", help="Deployment stage")
@click.option("--region", help="Cloud region")
@click.option(
    "--template",
    "template_path",
    type=click.Path(dir_okay=False),
    help="Synthesized source template (defaults to the one under --source-dir)",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=None,
    help="Run every phase without halting on failures",
)
@click.option(
    "--skip-phase",
    multiple=True,
    type=click.Choice(PHASE_CHOICES),
    help="Phase to skip (repeatable)",
)
@click.option("--no-backup", is_flag=True, help="Disable state backups")
@click.option("--quiet", is_flag=True, help="Do not print per-phase results")
@pass_context
@handle_errors
def start(
    ctx: MigrationContext,
    source_dir: str | None,
    target_dir: str | None,
    stack_name: str | None,
    stage: str | None,
    region: str | None,
    template_path: str | None,
    dry_run: bool | None,
    skip_phase: tuple[str, ...],
    no_backup: bool,
    quiet: bool,
) -> None:
    """Start a new migration.

    Options given on the command line override the configuration file.

    Examples:

        # Start from a configuration file
        stack-bridge --config config.yaml migrate start

        # Start without a configuration file
        stack-bridge migrate start --source-dir ./app --target-dir ./cdk --stack-name app-dev

        # Dry run, skipping code generation
        stack-bridge migrate start --config config.yaml --dry-run --skip-phase code_generation
    """
    options = _migration_options(
        ctx,
        {
            "source_dir": source_dir,
            "target_dir": target_dir,
            "stack_name": stack_name,
            "stage": stage,
            "region": region,
            "template_path": template_path,
            "dry_run": dry_run,
            "backup_enabled": False if no_backup else None,
        },
    )

    echo_info(f"Starting migration of {options['stack_name']}")
    if options.get("dry_run"):
        echo_warning("DRY RUN MODE - phase failures will not halt the migration")

    state = asyncio.run(
        ctx.orchestrator.start_migration(options, _build_options(skip_phase, quiet))
    )
    _report_outcome(state)


@migrate.command(name="resume")
@click.argument("migration_id", required=False)
@click.option(
    "--skip-phase",
    multiple=True,
    type=click.Choice(PHASE_CHOICES),
    help="Phase to skip (repeatable)",
)
@click.option("--quiet", is_flag=True, help="Do not print per-phase results")
@pass_context
@handle_errors
def resume(
    ctx: MigrationContext,
    migration_id: str | None,
    skip_phase: tuple[str, ...],
    quiet: bool,
) -> None:
    """Resume a paused, failed or rolled back migration.

    Resumes the current migration when MIGRATION_ID is omitted.

    Examples:

        stack-bridge migrate resume

        stack-bridge migrate resume migration-1700000000000-1a2b3c4d
    """
    echo_info(f"Resuming migration {migration_id or '(current)'}")
    state = asyncio.run(
        ctx.orchestrator.resume_migration(migration_id, _build_options(skip_phase, quiet))
    )
    _report_outcome(state)


@migrate.command(name="rollback")
@click.argument("migration_id")
@click.option(
    "--to",
    "target",
    required=True,
    type=click.Choice(PHASE_CHOICES),
    help="Phase to roll back to",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@handle_errors
@confirm_action(
    "Roll back {migration_id} to {target}? Phases after {target} will be undone",
    cancelled="Rollback cancelled.",
)
def rollback(ctx: MigrationContext, migration_id: str, target: str, yes: bool) -> None:
    """Roll a migration back to an earlier phase.

    Undoes the phases after the target, then moves the migration back to
    it. Resume afterwards to run those phases again.

    Examples:

        stack-bridge migrate rollback migration-1700000000000-1a2b3c4d --to classification
    """
    state = asyncio.run(ctx.orchestrator.rollback(migration_id, MigrationPhase(target)))
    echo_success(f"Rolled back {state.id} to {state.current_phase.value}")
    echo_status(state.status.value)


@migrate.command(name="status")
@click.argument("migration_id", required=False)
@pass_context
@handle_errors
def status(ctx: MigrationContext, migration_id: str | None) -> None:
    """Show progress of a migration (the current one by default).

    Examples:

        stack-bridge migrate status
    """
    report = ctx.orchestrator.get_progress(migration_id)
    state: MigrationState = report["state"]
    progress: dict[str, Any] = report["progress"]

    click.echo(f"Migration ID: {state.id}")
    click.echo(f"Stack: {state.config.stack_name}")
    echo_status(state.status.value)
    click.echo(
        f"Progress: {progress['percentage']}% "
        f"({progress['completed_steps']}/{progress['total_steps']} phases)"
    )

    rows = []
    for phase in PHASE_ORDER[:-1]:
        result = state.result_for(phase)
        if phase in state.skipped_phases:
            outcome = "SKIPPED"
        elif result is not None:
            outcome = result.status.value
        elif phase == state.current_phase:
            outcome = "CURRENT"
        else:
            outcome = "-"
        rows.append(
            [
                phase.value,
                outcome,
                format_timestamp(result.completed_at) if result else "-",
                format_duration(result.duration_seconds) if result else "-",
            ]
        )
    print_table("Phases", ["Phase", "Status", "Finished", "Duration"], rows)

    if state.error:
        echo_error(f"{state.error.type}: {state.error.message}")


@migrate.command(name="list")
@pass_context
@handle_errors
def list_migrations(ctx: MigrationContext) -> None:
    """List stored migrations, most recently modified first."""
    migrations = ctx.orchestrator.list_migrations()
    if not migrations:
        echo_warning("No migrations found")
        return

    current = ctx.store.current_migration_id()
    rows = [
        [
            ("* " if item["id"] == current else "") + item["id"],
            item["stack_name"],
            item["status"],
            item["current_phase"],
            format_timestamp(item["modified_at"]),
        ]
        for item in migrations
    ]
    print_table(
        f"Migrations ({len(migrations)})",
        ["ID", "Stack", "Status", "Phase", "Modified"],
        rows,
    )


@migrate.command(name="restore")
@click.argument("backup_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_context
@handle_errors
def restore(ctx: MigrationContext, backup_path: Path) -> None:
    """Restore a migration from a backup file and make it current."""
    state = ctx.store.restore_from_backup(backup_path)
    echo_success(f"Restored {state.id} at {state.current_phase.value}")
    echo_status(state.status.value)
