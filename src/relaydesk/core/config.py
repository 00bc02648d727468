"""
relaydesk Centralized Configuration

Provides validated, type-safe access to all environment variables using Pydantic Settings.

Usage:
    from relaydesk.core.config import get_settings

    settings = get_settings()
    relay_path = settings.resolved_relay_db_path

Data Paths:
    By default all data lives under {instance_root}/data/:
    - data/relaydesk.db: Control store (settings, deletion requests, sync jobs)
    - data/relay/nostr.db: Event store written by the relay process

Environment Variables:
    RELAYDESK_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    RELAYDESK_DEBUG: Legacy debug flag (enables DEBUG level if set)
    RELAYDESK_LOG_JSON: Output logs as JSON
    RELAYDESK_INSTANCE_ROOT: Base directory for data files
    RELAYDESK_RELAY_DB_PATH: Event store path override
    RELAYDESK_APP_DB_PATH: Control store path override
    RELAYDESK_BUSY_TIMEOUT_MS: Busy timeout for normal connections
    RELAYDESK_MAINTENANCE_BUSY_TIMEOUT_MS: Busy timeout for the maintenance writer
    RELAYDESK_RELAY_READ_CONNECTIONS: Size of the read-only event store pool
    RELAYDESK_TIMEZONE: Default timezone for dashboard statistics
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_project_root() -> Path | None:
    """
    Search upward from this file for the directory holding pyproject.toml.

    Returns:
        Project root, or None when running from an installed wheel
    """
    current = Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def _find_project_env_file() -> Path | None:
    """Return the project .env file if one exists next to pyproject.toml."""
    root = _find_project_root()
    if root is None:
        return None
    env_file = root / ".env"
    return env_file if env_file.exists() else None


def _find_instance_root() -> Path:
    """
    Find the instance root directory.

    Resolution order:
    1. RELAYDESK_INSTANCE_ROOT environment variable
    2. Project root (directory containing pyproject.toml)
    3. Current working directory
    """
    override = os.environ.get("RELAYDESK_INSTANCE_ROOT")
    if override:
        return Path(override)
    return _find_project_root() or Path.cwd()


_ENV_FILE = _find_project_env_file()
_INSTANCE_ROOT = _find_instance_root()


class RelaydeskSettings(BaseSettings):
    """
    relaydesk configuration settings with validation.

    Environment variables are automatically loaded with the RELAYDESK_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAYDESK_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Log level for relaydesk components",
    )

    debug: bool = Field(
        default=False,
        description="Legacy debug flag (enables DEBUG level if set)",
    )

    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format for machine parsing",
    )

    # =========================================================================
    # Data Paths
    # =========================================================================

    instance_root: Path = Field(
        default=_INSTANCE_ROOT,
        description="Instance root directory for data files",
    )

    relay_db_path: Optional[Path] = Field(
        default=None,
        description="Event store database written by the relay process",
    )

    app_db_path: Optional[Path] = Field(
        default=None,
        description="Control store database owned by relaydesk",
    )

    # =========================================================================
    # Connection Tuning
    # =========================================================================

    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="SQLite busy timeout for control store and event store readers",
    )

    maintenance_busy_timeout_ms: int = Field(
        default=10000,
        ge=0,
        description="SQLite busy timeout for the temporary event store writer",
    )

    relay_read_connections: int = Field(
        default=3,
        ge=1,
        le=16,
        description="Number of concurrent read-only event store connections",
    )

    # =========================================================================
    # Statistics
    # =========================================================================

    timezone: str = Field(
        default="UTC",
        description="Default IANA timezone for time-bucketed statistics",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def effective_log_level(self) -> str:
        """
        Get effective log level, respecting legacy RELAYDESK_DEBUG.

        Priority:
        1. Explicit RELAYDESK_LOG_LEVEL
        2. RELAYDESK_DEBUG=1 -> DEBUG
        3. Default: WARNING
        """
        if self.debug and self.log_level == "WARNING":
            return "DEBUG"
        return self.log_level

    @property
    def log_level_int(self) -> int:
        """Get effective log level as logging constant."""
        return getattr(logging, self.effective_log_level)

    @property
    def data_dir(self) -> Path:
        """Path to the data directory."""
        return self.instance_root / "data"

    @property
    def resolved_relay_db_path(self) -> Path:
        """Path to the event store database."""
        if self.relay_db_path is not None:
            return self.relay_db_path
        return self.data_dir / "relay" / "nostr.db"

    @property
    def resolved_app_db_path(self) -> Path:
        """Path to the control store database."""
        if self.app_db_path is not None:
            return self.app_db_path
        return self.data_dir / "relaydesk.db"


# =============================================================================
# Singleton Accessor
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> RelaydeskSettings:
    """
    Get the singleton settings instance.

    The settings are validated at first access.
    """
    return RelaydeskSettings()


def reset_settings() -> None:
    """
    Reset the settings cache (for testing).

    After calling this, the next get_settings() call will
    reload settings from environment variables.
    """
    get_settings.cache_clear()


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return get_settings().effective_log_level == "DEBUG"


def is_json_logging() -> bool:
    """Check if JSON logging is enabled."""
    return get_settings().log_json
