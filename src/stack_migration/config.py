"""Configuration management for Stack Bridge using Pydantic.

This module provides type-safe configuration models for the migration itself
(source and target locations, run options), state persistence, and logging.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stack_migration.exceptions import ConfigurationError

DEFAULT_TEMPLATE_RELATIVE_PATH = ".serverless/cloudformation-template-update-stack.json"


class MigrationConfig(BaseModel):
    """Immutable options of a single migration run.

    Stored verbatim inside every persisted MigrationState, so a resumed
    migration always runs with the options it was started with.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_dir: str = Field(..., description="Directory holding the source stack definition")
    target_dir: str = Field(..., description="Directory the generated target stack is written to")
    stack_name: str = Field(..., description="Name of the deployed source stack")
    stage: str = Field(default="dev", description="Deployment stage of the source stack")
    region: str = Field(default="us-east-1", description="Cloud region of the source stack")
    account_id: str | None = Field(default=None, description="Cloud account id (optional)")
    profile: str | None = Field(default=None, description="Named credentials profile (optional)")
    template_path: str | None = Field(
        default=None,
        description=(
            "Path to the synthesized source template. Defaults to "
            f"<source_dir>/{DEFAULT_TEMPLATE_RELATIVE_PATH}"
        ),
    )
    target_language: Literal["typescript", "python", "java", "csharp"] = Field(
        default="typescript", description="Language of the generated target stack"
    )
    dry_run: bool = Field(default=False, description="Dry run mode (phase failures do not halt)")
    auto_approve: bool = Field(default=False, description="Skip interactive approvals")
    backup_enabled: bool = Field(
        default=True, description="Back up state before critical phases and at start"
    )

    @field_validator("source_dir", "target_dir", "stack_name")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate required string options are not blank."""
        if not v or not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip()

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, v: str | None) -> str | None:
        """Validate account id is numeric when provided."""
        if v is not None and not v.isdigit():
            raise ValueError("Account id must contain only digits")
        return v

    @property
    def resolved_template_path(self) -> Path:
        """Template path, falling back to the conventional location in source_dir."""
        if self.template_path:
            return Path(self.template_path)
        return Path(self.source_dir) / DEFAULT_TEMPLATE_RELATIVE_PATH


class StateConfig(BaseModel):
    """State persistence configuration."""

    work_dir: str = Field(
        default=".migration-state", description="Directory holding all persisted migration data"
    )
    database_file: str = Field(default="state.db", description="SQLite file inside work_dir")
    backup_dir: str = Field(default="backups", description="Backup directory inside work_dir")
    retention_days: int = Field(
        default=30, ge=1, le=3650, description="Age after which cleanup prunes records"
    )

    @property
    def work_path(self) -> Path:
        """Working directory as a Path."""
        return Path(self.work_dir)

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL of the state database."""
        return f"sqlite:///{self.work_path / self.database_file}"

    @property
    def backup_path(self) -> Path:
        """Directory that receives JSON backup snapshots."""
        return self.work_path / self.backup_dir


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class BridgeSettings(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STACK_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    migration: MigrationConfig = Field(..., description="Migration options")
    state: StateConfig = Field(default_factory=StateConfig, description="State configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )


def build_migration_config(data: MigrationConfig | dict[str, Any]) -> MigrationConfig:
    """Validate raw migration options.

    Args:
        data: Already-built config or a mapping of options

    Returns:
        MigrationConfig: Validated configuration

    Raises:
        ConfigurationError: If required options are missing or invalid
    """
    if isinstance(data, MigrationConfig):
        return data

    try:
        return MigrationConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid migration configuration: {problems}") from e


def load_config_from_yaml(config_path: str | Path) -> BridgeSettings:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        BridgeSettings: Loaded configuration

    Raises:
        ConfigurationError: If the file is missing, empty, or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not config_data:
        raise ConfigurationError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    try:
        return BridgeSettings(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config data.

    Supports ${VAR_NAME} syntax for environment variable substitution.

    Args:
        data: Configuration value (dict, list, or scalar)

    Returns:
        Data with expanded environment variables
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data


def save_config_to_yaml(settings: BridgeSettings, output_path: str | Path) -> None:
    """Save configuration to YAML file.

    Args:
        settings: Configuration to save
        output_path: Path to output YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        yaml.dump(settings.model_dump(), f, default_flow_style=False, sort_keys=False)
