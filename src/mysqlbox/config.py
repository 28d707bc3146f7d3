"""
Configuration management for MySQLBox

MySQLBoxConfig describes a single MySQL container and is frozen once its
defaults are filled. MySQLBoxSettings holds process-wide settings loaded
from environment variables and .env files using Pydantic settings.
"""

import logging
import os
import secrets
from pathlib import Path
from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .data import SQLData

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "mysql:8"
DEFAULT_DATABASE = "testing"
CONTAINER_NAME_PREFIX = "mysqlbox"


def random_id() -> str:
    """Short random suffix for generated container names."""
    return secrets.token_hex(6)


class MySQLBoxSettings(BaseSettings):
    """
    Process-wide settings for MySQLBox.

    Configuration is loaded from:
    1. Environment variables (highest priority)
    2. .env file
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="MYSQLBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Docker configuration
    docker_host: Optional[str] = Field(
        default=None,
        description="Docker engine URL (defaults to DOCKER_HOST or the local socket)",
    )
    image: str = Field(
        default=DEFAULT_IMAGE,
        description="MySQL image used when a config does not name one",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_dir: str = Field(
        default="logs",
        description="Directory for log files",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Write logs to files under log_dir",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("image must not be blank")
        return v.strip()

    def get_log_dir_path(self) -> Path:
        """Get log directory as Path object."""
        return Path(self.log_dir)


class MySQLBoxConfig(BaseModel):
    """
    Settings for a single MySQLBox container.

    Blank fields are filled by with_defaults(), which returns a frozen copy
    that the box reads for the rest of its life.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    container_name: str = Field(
        default="",
        description="Container name, generated as mysqlbox-<random id> when blank",
    )
    image: str = Field(default="", description="Docker image, mysql:8 when blank")
    database: str = Field(default="", description="Database to create, testing when blank")
    root_password: str = Field(default="", description="MySQL root password")
    mysql_port: int = Field(
        default=0,
        description="Host port bound to the MySQL port, 0 picks a free one",
    )
    initial_sql: Optional[SQLData] = Field(
        default=None,
        description="SQL script run against the database when the container starts",
    )
    do_not_clean_tables: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Tables that clean_all_tables() leaves alone",
    )
    stdout: Optional[Any] = Field(
        default=None, description="Binary writer receiving the container stdout"
    )
    stderr: Optional[Any] = Field(
        default=None, description="Binary writer receiving the container stderr"
    )
    logged_errors: Optional[Any] = Field(
        default=None,
        description="List collecting ERROR lines from the container stderr",
    )

    @field_validator("mysql_port")
    @classmethod
    def validate_mysql_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError("mysql_port must be between 0 and 65535")
        return v

    @field_validator("stdout", "stderr")
    @classmethod
    def validate_sink(cls, v: Any) -> Any:
        if v is not None and not callable(getattr(v, "write", None)):
            raise ValueError("log sinks must have a write() method")
        return v

    @field_validator("logged_errors")
    @classmethod
    def validate_logged_errors(cls, v: Any) -> Any:
        # Kept by reference: the caller reads the same list afterwards
        if v is not None and not isinstance(v, list):
            raise ValueError("logged_errors must be a list")
        return v

    def with_defaults(self, settings: Optional[MySQLBoxSettings] = None) -> "MySQLBoxConfig":
        """Return a copy with blank attributes set to their default values."""
        updates = {}
        if not self.image:
            updates["image"] = settings.image if settings else DEFAULT_IMAGE
        if not self.database:
            updates["database"] = DEFAULT_DATABASE
        if not self.container_name:
            updates["container_name"] = f"{CONTAINER_NAME_PREFIX}-{random_id()}"

        if not updates:
            return self
        return self.model_copy(update=updates)

    def mask_sensitive_values(self) -> dict:
        """Get configuration dict with sensitive values masked."""
        return {
            "container_name": self.container_name,
            "image": self.image,
            "database": self.database,
            "root_password": "***" if self.root_password else "",
            "mysql_port": self.mysql_port,
            "initial_sql": repr(self.initial_sql) if self.initial_sql else None,
            "do_not_clean_tables": sorted(self.do_not_clean_tables),
        }


def load_settings(
    env_file: Optional[str] = None,
    cli_overrides: Optional[dict] = None,
) -> MySQLBoxSettings:
    """
    Load settings with an optional .env file and CLI overrides.

    Args:
        env_file: Optional .env file path
        cli_overrides: CLI argument overrides

    Returns:
        Loaded settings
    """
    if env_file and Path(env_file).exists():
        settings = MySQLBoxSettings(_env_file=env_file)
    else:
        settings = MySQLBoxSettings()

    if cli_overrides:
        settings_data = settings.model_dump()
        settings_data.update({k: v for k, v in cli_overrides.items() if v is not None})
        settings = MySQLBoxSettings(**settings_data)

    if settings.enable_file_logging:
        settings.get_log_dir_path().mkdir(parents=True, exist_ok=True)

    logger.debug(f"Settings loaded (docker_host={settings.docker_host or os.environ.get('DOCKER_HOST', 'default')})")
    return settings
