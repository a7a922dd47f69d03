"""
CLI context for Ops Bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration, the task store and the migration service.
"""

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ops_bridge.config import (
    BridgeConfig,
    ConnectionConfig,
    KubernetesConfig,
    MySQLConfig,
    load_config_from_yaml,
)
from ops_bridge.exceptions import ConfigurationError
from ops_bridge.migration.comparator import ComparisonEngine
from ops_bridge.migration.service import MigrationService
from ops_bridge.migration.state import TaskStore
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

_connection_adapter: TypeAdapter[KubernetesConfig | MySQLConfig] = TypeAdapter(ConnectionConfig)


@dataclass
class BridgeContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (defaults and environment
            variables apply when omitted)
        log_level: Logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: BridgeConfig | None = field(default=None, init=False, repr=False)
    _service: MigrationService | None = field(default=None, init=False, repr=False)
    _comparison_engine: ComparisonEngine | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> BridgeConfig:
        """Get or load the application configuration."""
        if self._config is None:
            if self.config_path is None:
                self._config = BridgeConfig()
            else:
                logger.debug("loading_configuration", config_path=str(self.config_path))
                try:
                    self._config = load_config_from_yaml(self.config_path)
                except (ValidationError, ValueError, FileNotFoundError) as e:
                    raise ConfigurationError(f"Invalid configuration {self.config_path}: {e}") from e
        return self._config

    @property
    def service(self) -> MigrationService:
        """Get or create the migration service."""
        if self._service is None:
            self._service = MigrationService(
                TaskStore(self.config.state), performance=self.config.performance
            )
        return self._service

    @property
    def comparison_engine(self) -> ComparisonEngine:
        if self._comparison_engine is None:
            self._comparison_engine = ComparisonEngine(self.service.connector_factory)
        return self._comparison_engine

    def resolve_connection(self, reference: str) -> KubernetesConfig | MySQLConfig:
        """
        Resolve a connection given as a configured name or a YAML/JSON file.

        Raises:
            ConfigurationError: If the reference matches neither
        """
        if reference in self.config.connections:
            return self.config.connections[reference]

        path = Path(reference)
        if path.is_file():
            from ops_bridge.cli.utils import load_json_or_yaml

            try:
                return _connection_adapter.validate_python(load_json_or_yaml(path))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid connection file {path}: {e}") from e

        return self.config.get_connection(reference)

    def cleanup(self) -> None:
        """Stop workers still running in this process."""
        if self._service is not None:
            self._service.shutdown(timeout=5)

    def __enter__(self) -> "BridgeContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()
