"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mvarchive.exceptions import ConfigurationError


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a nested structure."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


class StoreConfig(BaseModel):
    """Connection parameters for one relational store."""

    model_config = {"frozen": True, "populate_by_name": True}

    host: str = Field(description="Database host", min_length=1)
    port: int = Field(default=5432, description="Database port", gt=0, lt=65536)
    database: str = Field(description="Database name", min_length=1)
    user: str = Field(description="Database user", min_length=1)
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing the password (preferred)",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password (development only - use password_env in production)",
        repr=False,
    )
    schema_name: str = Field(default="public", description="Schema holding the project tables", alias="schema")
    connect_timeout: float = Field(default=10.0, description="Connect timeout in seconds", gt=0)
    command_timeout: float = Field(default=300.0, description="Per-statement timeout in seconds", gt=0)
    connect_attempts: int = Field(default=3, description="Attempts to open the pool", ge=1, le=10)
    connect_retry_delay: float = Field(
        default=1.0, description="First pause between connect attempts in seconds", ge=0
    )

    @field_validator("port", mode="before")
    @classmethod
    def coerce_port(cls, v: Any) -> Any:
        """Accept ports given as strings, as the settings dialog stores them."""
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError(f"Port must be numeric, got {v!r}")
            return int(v)
        return v

    @model_validator(mode="after")
    def validate_password_source(self) -> "StoreConfig":
        """Validate that at most one password source is provided."""
        if self.password_env and self.password is not None:
            raise ValueError("Cannot specify both 'password_env' and 'password'.")
        return self

    def get_password(self) -> str:
        """Get password from environment variable or config.

        Returns:
            Database password (empty string when none is configured)

        Raises:
            ValueError: If password_env is set but the variable is missing
        """
        if self.password_env:
            password = os.getenv(self.password_env)
            if password is None:
                raise ValueError(f"Environment variable {self.password_env} not set")
            return password
        return self.password or ""

    def describe(self) -> str:
        """Return ``host:port/database`` for log output."""
        return f"{self.host}:{self.port}/{self.database}"


class ArchiveConfig(BaseModel):
    """Settings for one archive run. Frozen once constructed."""

    model_config = {"frozen": True}

    source: StoreConfig = Field(description="Live operational database")
    destination: StoreConfig = Field(description="Archive database")
    dry_run: bool = Field(
        default=True,
        description="Copy only; never delete from the source",
    )

    @model_validator(mode="after")
    def validate_distinct_stores(self) -> "ArchiveConfig":
        """Reject configurations where source and destination are the same database."""
        src, dst = self.source, self.destination
        if (src.host, src.port, src.database, src.schema_name) == (
            dst.host,
            dst.port,
            dst.database,
            dst.schema_name,
        ):
            raise ValueError("Source and destination must be different databases")
        return self

    @classmethod
    def from_flat(cls, **fields: Any) -> "ArchiveConfig":
        """Build a config from the flat settings structure.

        Accepts ``source_host``, ``source_port``, ``source_database``,
        ``source_user``, ``source_password`` and the matching
        ``destination_*`` keys plus ``dry_run``.
        """
        stores: dict[str, dict[str, Any]] = {"source": {}, "destination": {}}
        dry_run = fields.pop("dry_run", True)
        for key, value in fields.items():
            prefix, _, attr = key.partition("_")
            if prefix not in stores or not attr:
                raise ConfigurationError(f"Unknown setting: {key}")
            stores[prefix][attr] = value
        try:
            return cls(
                source=StoreConfig(**stores["source"]),
                destination=StoreConfig(**stores["destination"]),
                dry_run=dry_run,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid archive settings: {e}") from e


class MonitoringConfig(BaseModel):
    """Monitoring and progress display configuration."""

    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    metrics_port: int = Field(default=8000, description="Metrics endpoint port", gt=0, lt=65536)
    progress_update_interval: float = Field(
        default=2.0,
        description="Minimum seconds between progress log lines",
        ge=0,
    )
    quiet_mode: bool = Field(default=False, description="Suppress progress output (for cron)")


class SettingsFile(BaseModel):
    """Root model of the YAML settings file."""

    version: str = Field(default="1.0", description="Configuration version")
    archive: ArchiveConfig = Field(description="Archive run settings")
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v != "1.0":
            raise ValueError(f"Unsupported configuration version: {v}")
        return v


def load_config(config_path: Union[str, Path]) -> SettingsFile:
    """Load and validate settings from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")

    try:
        return SettingsFile.model_validate(_substitute_env_in_dict(raw_config))
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}",
            context={"path": str(config_path)},
        ) from e
