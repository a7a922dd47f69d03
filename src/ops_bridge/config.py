"""Configuration management for Ops Bridge using Pydantic.

This module provides type-safe models for connection configs (a tagged union
over the supported system types), migration options, and the application
settings loaded from YAML.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ops_bridge.exceptions import ConfigurationError, EmptySelectionError


class SystemType(str, Enum):
    """Supported source/target system families."""

    KUBERNETES = "kubernetes"
    MYSQL = "mysql"


class KubernetesConfig(BaseModel):
    """Connection parameters for one Kubernetes cluster."""

    model_config = ConfigDict(frozen=True)

    type: Literal["kubernetes"] = "kubernetes"
    name: str | None = Field(default=None, description="Display name of the cluster")
    kubeconfig: str = Field(default="", description="Kubeconfig YAML content")
    kubeconfig_path: str | None = Field(
        default=None, description="Path to a kubeconfig file (read at load time)"
    )
    context: str | None = Field(default=None, description="Kubeconfig context to use")

    @model_validator(mode="before")
    @classmethod
    def load_kubeconfig_file(cls, data: Any) -> Any:
        """Read kubeconfig content from kubeconfig_path when given."""
        if isinstance(data, dict) and not data.get("kubeconfig") and data.get("kubeconfig_path"):
            path = Path(data["kubeconfig_path"]).expanduser()
            if not path.exists():
                raise ValueError(f"Kubeconfig file not found: {path}")
            data = {**data, "kubeconfig": path.read_text()}
        return data

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str) -> str:
        """Validate kubeconfig parses as a YAML mapping with clusters."""
        if not v or not v.strip():
            raise ValueError("Kubeconfig cannot be empty")
        try:
            parsed = yaml.safe_load(v)
        except yaml.YAMLError as e:
            raise ValueError(f"Kubeconfig is not valid YAML: {e}") from e
        if not isinstance(parsed, dict) or "clusters" not in parsed:
            raise ValueError("Kubeconfig must define 'clusters'")
        return v

    @property
    def system_type(self) -> SystemType:
        return SystemType.KUBERNETES

    @property
    def display_name(self) -> str:
        return self.name or self.context or "kubernetes"


class MySQLConfig(BaseModel):
    """Connection parameters for one MySQL server."""

    model_config = ConfigDict(frozen=True)

    type: Literal["mysql"] = "mysql"
    name: str | None = Field(default=None, description="Display name of the server")
    host: str = Field(..., description="Server hostname or IP")
    port: int = Field(default=3306, ge=1, le=65535, description="Server port")
    user: str = Field(..., description="Login user")
    password: str = Field(default="", description="Login password")
    database: str | None = Field(default=None, description="Default database")
    charset: str = Field(default="utf8mb4", description="Connection character set")
    connect_timeout: int = Field(default=10, ge=1, le=300, description="Connect timeout (s)")

    @field_validator("host", "user")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Validate required strings are not blank."""
        if not v or not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip()

    @field_validator("charset")
    @classmethod
    def validate_charset(cls, v: str) -> str:
        return v or "utf8mb4"

    @property
    def system_type(self) -> SystemType:
        return SystemType.MYSQL

    @property
    def display_name(self) -> str:
        return self.name or f"{self.host}:{self.port}"


ConnectionConfig = Annotated[KubernetesConfig | MySQLConfig, Field(discriminator="type")]


class ResourceSelector(BaseModel):
    """A coarse user choice that expands into concrete migration units.

    Either ``unit_types`` (e.g. ``{"deployments", "services"}``) or an explicit
    ordered ``units`` list (e.g. table names) must be given. ``all_units``
    selects every unit the source lists in the collection.
    """

    model_config = ConfigDict(frozen=True)

    collection: str = Field(..., description="Namespace or database name")
    unit_types: tuple[str, ...] = Field(default=(), description="Unit type flags")
    units: tuple[str, ...] = Field(default=(), description="Explicit unit names")
    all_units: bool = Field(default=False, description="Select every unit in the collection")
    target_collection: str | None = Field(
        default=None, description="Destination namespace/database (defaults to collection)"
    )

    @field_validator("collection")
    @classmethod
    def validate_collection(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Collection cannot be empty")
        return v.strip()

    @field_validator("unit_types", "units", mode="before")
    @classmethod
    def dedupe_preserving_order(cls, v: Any) -> Any:
        """Accept any iterable and drop blank/duplicate entries, keeping order."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        seen: dict[str, None] = {}
        for item in v:
            item = str(item).strip()
            if item:
                seen.setdefault(item, None)
        return tuple(seen)

    @model_validator(mode="after")
    def validate_not_empty(self) -> "ResourceSelector":
        """Reject selectors that select nothing."""
        if self.is_empty:
            raise EmptySelectionError(
                f"Selector for '{self.collection}' must name at least one unit type or unit"
            )
        return self

    @property
    def is_empty(self) -> bool:
        return not (self.unit_types or self.units or self.all_units)

    @property
    def destination(self) -> str:
        return self.target_collection or self.collection


class CopyOptions(BaseModel):
    """Options controlling how units are written to the target."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=1000, ge=1, le=100000, description="Rows per batch")
    create_schema: bool = Field(
        default=True, description="Create missing namespace/database/table on target"
    )
    truncate_target: bool = Field(
        default=False, description="Drop and recreate existing target tables before copy"
    )
    only_sync_schema: bool = Field(default=False, description="Copy structure only, skip data")

    @field_validator("batch_size", mode="before")
    @classmethod
    def default_batch_size(cls, v: Any) -> Any:
        """Treat a missing or non-positive batch size as the default."""
        if v is None or (isinstance(v, int) and v <= 0):
            return 1000
        return v


class StateConfig(BaseModel):
    """Task state persistence configuration."""

    db_path: str = Field(default="./ops_bridge_state.db", description="State DB path or URL")
    db_pool_size: int = Field(default=5, ge=1, le=50)
    db_max_overflow: int = Field(default=10, ge=1, le=100)
    db_pool_timeout: int = Field(default=30, ge=1, le=300)
    db_pool_recycle: int = Field(default=3600, ge=60, le=28800)

    @property
    def database_url(self) -> str:
        """Return a SQLAlchemy URL, treating plain paths as SQLite files."""
        if "://" in self.db_path:
            return self.db_path
        return f"sqlite:///{self.db_path}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING", description="Console log level")
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="Log file format (json or console)")
    file: str | None = Field(default="logs/ops-bridge.log", description="Log file path")

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


class PerformanceConfig(BaseModel):
    """Performance tuning configuration."""

    batch_size: int = Field(default=1000, ge=1, le=100000, description="Default rows per batch")
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Connect attempts")
    retry_backoff_min: float = Field(default=1.0, ge=0, le=60, description="Min backoff (s)")
    retry_backoff_max: float = Field(default=10.0, ge=0, le=300, description="Max backoff (s)")
    kubectl_timeout: int = Field(default=60, ge=5, le=600, description="kubectl call timeout (s)")

    @model_validator(mode="after")
    def validate_backoff(self) -> "PerformanceConfig":
        if self.retry_backoff_min > self.retry_backoff_max:
            raise ValueError("retry_backoff_min must not exceed retry_backoff_max")
        return self


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class BridgeConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPS_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Named connections that CLI commands can reference
    connections: dict[str, ConnectionConfig] = Field(default_factory=dict)

    def get_connection(self, name: str) -> KubernetesConfig | MySQLConfig:
        """Look up a named connection.

        Raises:
            ConfigurationError: If no connection with that name exists
        """
        try:
            return self.connections[name]
        except KeyError:
            known = ", ".join(sorted(self.connections)) or "none"
            raise ConfigurationError(
                f"Unknown connection '{name}' (configured: {known})"
            ) from None


def load_config_from_yaml(config_path: str | Path) -> BridgeConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        BridgeConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is empty
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return BridgeConfig(**config_data)


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} references in config values.

    Raises:
        ValueError: If a referenced environment variable is not set
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
                raise ValueError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data
