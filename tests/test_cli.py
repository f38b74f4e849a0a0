"""Tests for the stack-bridge command line."""

from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner

from stack_migration.cli.main import cli
from stack_migration.config import StateConfig
from stack_migration.migration.phases import MigrationStatus
from stack_migration.migration.state import StateStore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "cli-state"


@pytest.fixture
def invoke(runner: CliRunner, work_dir: Path, tmp_path: Path):
    def run(*args: str, config: Path | None = None, stdin: str | None = None):
        base = ["--work-dir", str(work_dir), "--log-file", str(tmp_path / "logs" / "cli.log")]
        if config is not None:
            base += ["--config", str(config)]
        return runner.invoke(cli, [*base, *args], input=stdin)

    return run


@pytest.fixture
def config_file(tmp_path: Path, migration_options: dict[str, Any]) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"migration": migration_options}))
    return path


def start_args(options: dict[str, Any]) -> list[str]:
    return [
        "migrate",
        "start",
        "--source-dir",
        options["source_dir"],
        "--target-dir",
        options["target_dir"],
        "--stack-name",
        options["stack_name"],
    ]


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "stack-bridge" in result.output


class TestMigrateCommands:
    def test_start_completes(self, invoke, migration_options, work_dir: Path) -> None:
        result = invoke(*start_args(migration_options))

        assert result.exit_code == 0, result.output
        assert "Migration completed" in result.output

        store = StateStore(StateConfig(work_dir=str(work_dir)))
        state = store.load_state(store.current_migration_id())
        assert state.status == MigrationStatus.COMPLETED

    def test_start_from_config_file(self, invoke, config_file: Path) -> None:
        result = invoke("migrate", "start", "--quiet", config=config_file)

        assert result.exit_code == 0, result.output
        assert "Migration completed" in result.output

    def test_start_missing_options(self, invoke) -> None:
        result = invoke("migrate", "start", "--source-dir", "somewhere")

        assert result.exit_code == 2
        assert "--target-dir" in result.output
        assert "--stack-name" in result.output

    def test_start_failure_exit_code(self, invoke, migration_options, tmp_path: Path) -> None:
        options = dict(migration_options, source_dir=str(tmp_path / "empty"))
        (tmp_path / "empty").mkdir()

        result = invoke(*start_args(options))

        assert result.exit_code == 6

    def test_dry_run_reports_failures_and_completes(
        self, invoke, migration_options, tmp_path: Path
    ) -> None:
        (tmp_path / "empty").mkdir()
        options = dict(migration_options, source_dir=str(tmp_path / "empty"))

        result = invoke(
            *start_args(options), "--dry-run", "--skip-phase", "import_preparation"
        )

        assert result.exit_code == 0, result.output
        assert "Migration completed" in result.output
        assert "Dry run recorded failures in: initial_scan" in result.output

    def test_status_and_list(self, invoke, migration_options) -> None:
        assert invoke(*start_args(migration_options)).exit_code == 0

        status = invoke("migrate", "status")
        assert status.exit_code == 0, status.output
        assert "Migration ID: migration-" in status.output
        assert "Progress: 100" in status.output

        listing = invoke("migrate", "list")
        assert listing.exit_code == 0, listing.output
        assert "Migrations (1)" in listing.output

    def test_status_without_migrations(self, invoke) -> None:
        result = invoke("migrate", "status")
        assert result.exit_code == 5

    def test_list_without_migrations(self, invoke) -> None:
        result = invoke("migrate", "list")
        assert result.exit_code == 0
        assert "No migrations found" in result.output

    def test_rollback_then_resume(self, invoke, migration_options, work_dir: Path) -> None:
        assert invoke(*start_args(migration_options)).exit_code == 0
        store = StateStore(StateConfig(work_dir=str(work_dir)))
        migration_id = store.current_migration_id()

        rolled = invoke("migrate", "rollback", migration_id, "--to", "comparison", "--yes")
        assert rolled.exit_code == 0, rolled.output
        assert "ROLLED_BACK" in rolled.output

        resumed = invoke("migrate", "resume", migration_id)
        assert resumed.exit_code == 0, resumed.output
        assert "Migration completed" in resumed.output

    def test_rollback_declined(self, invoke, migration_options, work_dir: Path) -> None:
        assert invoke(*start_args(migration_options)).exit_code == 0
        migration_id = StateStore(StateConfig(work_dir=str(work_dir))).current_migration_id()

        result = invoke("migrate", "rollback", migration_id, "--to", "comparison", stdin="n\n")

        assert "Rollback cancelled" in result.output
        assert f"Roll back {migration_id} to comparison?" in result.output

    def test_rollback_to_later_phase_is_state_error(
        self, invoke, migration_options, work_dir: Path
    ) -> None:
        options = dict(migration_options, source_dir=str(work_dir.parent / "missing"))
        assert invoke(*start_args(options)).exit_code == 6
        migration_id = StateStore(StateConfig(work_dir=str(work_dir))).current_migration_id()

        result = invoke("migrate", "rollback", migration_id, "--to", "verification", "--yes")

        assert result.exit_code == 5
        assert "State Error" in result.output


class TestStateCommands:
    def test_backups_and_export(self, invoke, migration_options, tmp_path: Path) -> None:
        assert invoke(*start_args(migration_options)).exit_code == 0

        backups = invoke("state", "backups")
        assert backups.exit_code == 0, backups.output
        assert "Backups (" in backups.output

        output = tmp_path / "export.json"
        exported = invoke("state", "export", "-o", str(output))
        assert exported.exit_code == 0, exported.output
        assert output.exists()

    def test_cleanup_declined(self, invoke) -> None:
        result = invoke("state", "cleanup", stdin="n\n")

        assert result.exit_code == 0
        assert "Cleanup cancelled." in result.output
        assert "Cleanup complete" not in result.output

    def test_cleanup_with_yes(self, invoke) -> None:
        result = invoke("state", "cleanup", "--yes")

        assert result.exit_code == 0, result.output
        assert "Cleanup complete" in result.output


class TestCheckpointCommands:
    def test_definitions(self, invoke) -> None:
        result = invoke("checkpoint", "definitions")

        assert result.exit_code == 0, result.output
        assert "Checkpoints" in result.output

    def test_history_after_run(self, invoke, migration_options, work_dir: Path) -> None:
        assert invoke(*start_args(migration_options)).exit_code == 0
        migration_id = StateStore(StateConfig(work_dir=str(work_dir))).current_migration_id()

        result = invoke("checkpoint", "history", migration_id)

        assert result.exit_code == 0, result.output
        assert "Checkpoint History" in result.output

    def test_no_pauses(self, invoke) -> None:
        result = invoke("checkpoint", "list")
        assert result.exit_code == 0
        assert "No checkpoint pauses found" in result.output


class TestConfigCommands:
    def test_validate(self, invoke, config_file: Path) -> None:
        result = invoke("config", "validate", config=config_file)

        assert result.exit_code == 0, result.output
        assert "Configuration is valid" in result.output

    def test_validate_missing_template(self, invoke, tmp_path: Path) -> None:
        (tmp_path / "bare").mkdir()
        path = tmp_path / "bare.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "migration": {
                        "source_dir": str(tmp_path / "bare"),
                        "target_dir": str(tmp_path / "out"),
                        "stack_name": "bare",
                    }
                }
            )
        )

        result = invoke("config", "validate", config=path)

        assert result.exit_code == 2
        assert "Source template not found" in result.output

    def test_validate_requires_config(self, invoke) -> None:
        result = invoke("config", "validate")
        assert result.exit_code == 2
