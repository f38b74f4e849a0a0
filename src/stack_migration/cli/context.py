"""
CLI context for Stack Bridge.

This module provides the context object that is passed to all CLI commands,
holding the loaded configuration, the state store and the orchestrator.
"""

from dataclasses import dataclass, field
from pathlib import Path

from stack_migration.config import BridgeSettings, StateConfig, load_config_from_yaml
from stack_migration.exceptions import ConfigurationError
from stack_migration.migration.coordinator import MigrationOrchestrator
from stack_migration.migration.state import StateStore
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file
        log_level: Logging level
        log_file: Optional log file path
        work_dir: Overrides the state working directory of the configuration
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None
    work_dir: Path | None = None

    # Lazy-loaded attributes
    _settings: BridgeSettings | None = field(default=None, init=False, repr=False)
    _store: StateStore | None = field(default=None, init=False, repr=False)
    _orchestrator: MigrationOrchestrator | None = field(default=None, init=False, repr=False)

    @property
    def settings(self) -> BridgeSettings:
        """Get or load the configuration file."""
        if self._settings is None:
            if self.config_path is None:
                raise ConfigurationError(
                    "Configuration file path not provided. "
                    "Use --config option or set STACK_BRIDGE_CONFIG environment variable."
                )

            logger.debug("Loading configuration", config_path=str(self.config_path))
            self._settings = load_config_from_yaml(self.config_path)

        return self._settings

    @property
    def has_config(self) -> bool:
        return self.config_path is not None

    @property
    def state_config(self) -> StateConfig:
        """State configuration from the config file, or defaults without one."""
        config = self.settings.state if self.has_config else StateConfig()
        if self.work_dir is not None:
            config = config.model_copy(update={"work_dir": str(self.work_dir)})
        return config

    @property
    def store(self) -> StateStore:
        """Get or create the state store."""
        if self._store is None:
            self._store = StateStore(self.state_config)
        return self._store

    @property
    def orchestrator(self) -> MigrationOrchestrator:
        """Get or create the orchestrator with the built-in executors and checkpoints."""
        if self._orchestrator is None:
            self._orchestrator = MigrationOrchestrator(self.store)
        return self._orchestrator
