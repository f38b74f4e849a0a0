"""
Main CLI entry point for Stack Bridge.

This module provides the command-line interface for migrating a deployed
stack from one infrastructure-as-code tool to another.
"""

from pathlib import Path

import click
from dotenv import load_dotenv

from stack_migration import __version__
from stack_migration.cli.commands import checkpoint as checkpoint_commands
from stack_migration.cli.commands import config as config_commands
from stack_migration.cli.commands import migrate as migrate_commands
from stack_migration.cli.commands import state as state_commands
from stack_migration.cli.context import MigrationContext
from stack_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="stack-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="STACK_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="STACK_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/migration.log)",
    envvar="STACK_BRIDGE_LOG_FILE",
)
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="State working directory (overrides the configuration file)",
    envvar="STACK_BRIDGE_WORK_DIR",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
    work_dir: Path | None,
) -> None:
    """Stack Bridge - Migrate a deployed stack between IaC tools.

    Migrations run through a fixed sequence of phases. State is persisted
    after every phase, so a paused, failed or interrupted migration can be
    resumed or rolled back.

    Examples:

        # Validate configuration
        stack-bridge config validate --config config.yaml

        # Start a migration
        stack-bridge migrate start --config config.yaml

        # Resume after a checkpoint pause
        stack-bridge migrate resume

        # Show migration status
        stack-bridge migrate status
    """
    effective_log_file = Path(log_file) if log_file else Path("logs/migration.log")
    effective_log_file.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level.upper(), log_file=str(effective_log_file))

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
        work_dir=work_dir,
    )

    logger.debug(
        "CLI initialized",
        config=str(config) if config else None,
        log_level=log_level,
        work_dir=str(work_dir) if work_dir else None,
    )


# Register command groups
cli.add_command(checkpoint_commands.checkpoint)
cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(state_commands.state)


def main() -> int:
    """Main entry point for CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("Unexpected error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
