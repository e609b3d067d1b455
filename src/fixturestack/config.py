"""
Configuration management for fixturestack

Handles configuration loading from environment variables, .env files and
explicit overrides using Pydantic settings.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RetryPolicy

logger = logging.getLogger(__name__)


class FixturestackConfig(BaseSettings):
    """
    Main configuration class for fixturestack.

    Configuration is loaded from:
    1. Explicit keyword arguments (highest priority)
    2. Environment variables prefixed with FIXTURESTACK_
    3. .env file
    4. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="FIXTURESTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    log_level: Optional[str] = Field(
        default=None,
        description="Logging level (DEBUG, INFO, WARNING, ERROR); INFO, or DEBUG when verbose",
    )
    log_dir: str = Field(
        default="logs",
        description="Directory for log files",
    )
    verbose: bool = Field(
        default=False,
        description="Log at DEBUG when log_level is not set",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Write runtime command logs to files under log_dir",
    )

    # Container runtime configuration
    container_runtime: str = Field(
        default="docker",
        description="Container runtime CLI (docker or podman)",
    )
    command_timeout: int = Field(
        default=60,
        description="Timeout in seconds for inspect, stop and rm commands",
    )
    launch_timeout: int = Field(
        default=600,
        description="Timeout in seconds for run, including image pulls",
    )
    managed_label: str = Field(
        default="fixturestack.managed=true",
        description="Label attached to every launched container",
    )

    # Readiness configuration
    readiness_max_attempts: int = Field(
        default=10,
        description="Attempt budget for readiness checks",
    )
    readiness_backoff_seconds: float = Field(
        default=1.0,
        description="Delay unit; attempt i waits i * unit seconds",
    )

    # PostgreSQL fixture configuration
    postgres_image: str = Field(
        default="postgres:14-alpine",
        description="Image used for database fixtures",
    )
    postgres_port: str = Field(
        default="5432",
        description="Port PostgreSQL listens on inside the container",
    )
    pool_max_connections: int = Field(
        default=5,
        description="Maximum connections in pools handed out by fixtures",
    )
    migrations_path: str = Field(
        default="./migrations",
        description="Path to database migration files",
    )

    # Teardown policy
    abort_on_teardown_failure: bool = Field(
        default=True,
        description="Stop the pytest session when a container cannot be removed",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Optional[str]) -> Optional[str]:
        """Validate log level is valid."""
        if v is None:
            return v
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("container_runtime")
    @classmethod
    def validate_container_runtime(cls, v: str) -> str:
        """Validate container runtime is supported."""
        valid_runtimes = ["podman", "docker"]
        if v.lower() not in valid_runtimes:
            raise ValueError(
                f"container_runtime must be one of: {', '.join(valid_runtimes)}"
            )
        return v.lower()

    @field_validator("readiness_max_attempts", "pool_max_connections")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("postgres_port")
    @classmethod
    def validate_postgres_port(cls, v: str) -> str:
        """Validate the internal port is numeric."""
        if not str(v).isdigit() or not 0 < int(v) <= 65535:
            raise ValueError(f"postgres_port must be a port number, got {v!r}")
        return str(v)

    def retry_policy(self) -> RetryPolicy:
        """Build the readiness retry policy from configuration."""
        return RetryPolicy(
            max_attempts=self.readiness_max_attempts,
            backoff_seconds=self.readiness_backoff_seconds,
        )

    def get_log_dir_path(self) -> Path:
        """Get log directory as Path object."""
        return Path(self.log_dir)

    def get_migrations_path(self) -> Path:
        """Get migrations directory as Path object."""
        return Path(self.migrations_path)

    def create_directories(self) -> None:
        """Create the log directory when file logging is enabled."""
        if not self.enable_file_logging:
            return
        log_path = self.get_log_dir_path()
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "containers").mkdir(exist_ok=True)


def load_config(overrides: Optional[dict] = None) -> FixturestackConfig:
    """
    Load configuration with optional overrides.

    Args:
        overrides: Values taking precedence over environment and defaults

    Returns:
        Loaded configuration
    """
    config = FixturestackConfig(**(overrides or {}))
    config.create_directories()

    logger.debug(
        f"Loaded configuration: runtime={config.container_runtime}, "
        f"image={config.postgres_image}, attempts={config.readiness_max_attempts}"
    )
    return config

