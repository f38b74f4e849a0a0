"""Tests for configuration models and YAML loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from stack_migration.config import (
    DEFAULT_TEMPLATE_RELATIVE_PATH,
    LoggingConfig,
    MigrationConfig,
    StateConfig,
    build_migration_config,
    load_config_from_yaml,
    save_config_to_yaml,
)
from stack_migration.exceptions import ConfigurationError


class TestMigrationConfig:
    def test_defaults(self) -> None:
        config = MigrationConfig(source_dir="src", target_dir="out", stack_name="app-dev")

        assert config.stage == "dev"
        assert config.region == "us-east-1"
        assert config.backup_enabled is True
        assert config.resolved_template_path == Path("src") / DEFAULT_TEMPLATE_RELATIVE_PATH

    def test_explicit_template_path(self) -> None:
        config = MigrationConfig(
            source_dir="src", target_dir="out", stack_name="s", template_path="/tmp/t.json"
        )
        assert config.resolved_template_path == Path("/tmp/t.json")

    def test_strips_whitespace(self) -> None:
        config = MigrationConfig(source_dir=" src ", target_dir="out", stack_name=" app ")
        assert config.source_dir == "src"
        assert config.stack_name == "app"

    @pytest.mark.parametrize("field", ["source_dir", "target_dir", "stack_name"])
    def test_blank_required_field(self, field: str) -> None:
        options = {"source_dir": "src", "target_dir": "out", "stack_name": "s", field: "  "}
        with pytest.raises(ValidationError):
            MigrationConfig(**options)

    def test_account_id_must_be_numeric(self) -> None:
        with pytest.raises(ValidationError):
            MigrationConfig(source_dir="s", target_dir="t", stack_name="n", account_id="abc")

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MigrationConfig(source_dir="s", target_dir="t", stack_name="n", colour="blue")

    def test_frozen(self) -> None:
        config = MigrationConfig(source_dir="s", target_dir="t", stack_name="n")
        with pytest.raises(ValidationError):
            config.stage = "prod"


class TestBuildMigrationConfig:
    def test_passes_through_instance(self) -> None:
        config = MigrationConfig(source_dir="s", target_dir="t", stack_name="n")
        assert build_migration_config(config) is config

    def test_missing_options(self) -> None:
        with pytest.raises(ConfigurationError, match="stack_name"):
            build_migration_config({"source_dir": "s", "target_dir": "t"})


class TestStateAndLoggingConfig:
    def test_paths(self, tmp_path: Path) -> None:
        config = StateConfig(work_dir=str(tmp_path))

        assert config.database_url == f"sqlite:///{tmp_path / 'state.db'}"
        assert config.backup_path == tmp_path / "backups"

    def test_retention_bounds(self) -> None:
        with pytest.raises(ValidationError):
            StateConfig(retention_days=0)

    def test_log_level_normalized(self) -> None:
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestYamlConfig:
    def test_load_with_env_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_STACK", "orders-prod")
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "migration": {
                        "source_dir": "./app",
                        "target_dir": "./cdk",
                        "stack_name": "${APP_STACK}",
                        "stage": "prod",
                    },
                    "state": {"work_dir": str(tmp_path / "state"), "retention_days": 7},
                }
            )
        )

        settings = load_config_from_yaml(path)

        assert settings.migration.stack_name == "orders-prod"
        assert settings.migration.stage == "prod"
        assert settings.state.retention_days == 7
        assert settings.logging.level == "WARNING"

    def test_missing_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("STACK_BRIDGE_TEST_UNSET", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "migration": {
                        "source_dir": "${STACK_BRIDGE_TEST_UNSET}",
                        "target_dir": "t",
                        "stack_name": "n",
                    }
                }
            )
        )

        with pytest.raises(ConfigurationError, match="STACK_BRIDGE_TEST_UNSET"):
            load_config_from_yaml(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config_from_yaml(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("migration: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config_from_yaml(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="Empty"):
            load_config_from_yaml(path)

    def test_invalid_content(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"migration": {"source_dir": "s"}}))
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config_from_yaml(path)

    def test_save_and_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump({"migration": {"source_dir": "s", "target_dir": "t", "stack_name": "n"}})
        )
        settings = load_config_from_yaml(path)

        copy_path = tmp_path / "nested" / "copy.yaml"
        save_config_to_yaml(settings, copy_path)

        assert load_config_from_yaml(copy_path) == settings
