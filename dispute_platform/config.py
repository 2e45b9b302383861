"""
Dispute Platform Configuration
==============================

Centralized configuration management using environment variables with sensible
defaults. Follows the 12-factor app methodology for cloud-native deployments.

This module provides a singleton ``Settings`` instance that loads configuration
from environment variables prefixed with ``DISPUTES_``. All settings have
defaults suitable for local development.

Environment Variables
---------------------
DISPUTES_STORAGE_DIR : str
    Directory holding the JSON record collections.
DISPUTES_SLA_ASSIGNMENT_BUSINESS_DAYS : int
    Business days allowed between filing and first assignment (default: 5).
DISPUTES_SLA_RESOLUTION_DAYS : int
    Calendar days allowed between filing and resolution (default: 15).
DISPUTES_LOG_LEVEL : str
    Logging level (DEBUG, INFO, WARNING, ERROR).

Example
-------
Using environment variables::

    export DISPUTES_SLA_RESOLUTION_DAYS=10
    export DISPUTES_LOG_LEVEL=DEBUG
    python -m dispute_platform.api_main

Accessing settings in code::

    from dispute_platform.config import settings
    print(f"Disputes stored in: {settings.storage_dir}")
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, List

# Determine the package root directory
_PACKAGE_ROOT = Path(__file__).resolve().parent


def _get_env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Get an environment variable with type conversion.

    Parameters
    ----------
    key : str
        Environment variable name (will be prefixed with DISPUTES_).
    default : Any
        Default value if not set.
    value_type : type
        Type to convert to (str, int, float, bool, list).

    Returns
    -------
    Any
        The environment variable value converted to the specified type.
    """
    env_name = f"DISPUTES_{key.upper()}"
    env_value = os.environ.get(env_name)

    if env_value is None:
        return default

    try:
        if value_type == bool:
            return env_value.lower() in ("true", "1", "yes", "on")
        elif value_type == int:
            return int(env_value)
        elif value_type == float:
            return float(env_value)
        elif value_type == list:
            try:
                return json.loads(env_value)
            except json.JSONDecodeError:
                return env_value.split(",")
        else:
            return env_value
    except (ValueError, TypeError):
        return default


class Settings:
    """
    Application configuration loaded from environment variables.

    All settings have sensible defaults for local development. In production,
    override via environment variables prefixed with ``DISPUTES_``.

    Example
    -------
    >>> from dispute_platform.config import settings
    >>> print(f"Resolution window: {settings.sla_resolution_days} days")
    """

    def __init__(self) -> None:
        """Initialize settings from environment variables."""
        # =====================================================================
        # API Server Configuration
        # =====================================================================
        self.api_host: str = _get_env("API_HOST", "127.0.0.1", str)
        self.api_port: int = _get_env("API_PORT", 8000, int)

        # =====================================================================
        # Storage
        # =====================================================================
        self.storage_dir: str = _get_env("STORAGE_DIR", str(_PACKAGE_ROOT / "dispute_storage"), str)
        self.collection_key: str = _get_env("COLLECTION_KEY", "commission_disputes", str)

        # =====================================================================
        # Logging Configuration
        # =====================================================================
        self.log_level: str = _get_env("LOG_LEVEL", "INFO", str)
        self.log_format: str = _get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s", str)

        # =====================================================================
        # Security & CORS
        # =====================================================================
        self.enable_cors: bool = _get_env("ENABLE_CORS", True, bool)
        self.cors_origins: List[str] = _get_env("CORS_ORIGINS", ["http://localhost:5173", "http://127.0.0.1:5173"], list)
        self.require_rbac: bool = _get_env("REQUIRE_RBAC", True, bool)

        # =====================================================================
        # SLA Policy
        # =====================================================================
        self.sla_assignment_business_days: int = _get_env("SLA_ASSIGNMENT_BUSINESS_DAYS", 5, int)
        self.sla_resolution_days: int = _get_env("SLA_RESOLUTION_DAYS", 15, int)
        self.sla_escalation_grace_days: int = _get_env("SLA_ESCALATION_GRACE_DAYS", 0, int)

        # =====================================================================
        # Audit Trail
        # =====================================================================
        self.comment_preview_length: int = _get_env("COMMENT_PREVIEW_LENGTH", 50, int)

    @property
    def log_level_int(self) -> int:
        """Return the log level as an integer constant."""
        return getattr(logging, self.log_level.upper(), logging.INFO)

    def get_storage_path(self) -> Path:
        """
        Return the storage directory as a Path, creating it if necessary.

        Returns
        -------
        Path
            Resolved storage directory.
        """
        path = Path(self.storage_dir)
        if not path.is_absolute():
            path = _PACKAGE_ROOT / path
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    def configure_logging(self) -> None:
        """
        Configure application logging based on settings.

        Sets up the root logger with the configured level and format.
        """
        logging.basicConfig(
            level=self.log_level_int,
            format=self.log_format,
        )
        # Quiet noisy loggers
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


@lru_cache()
def get_settings() -> Settings:
    """
    Return the cached application settings instance.

    Returns
    -------
    Settings
        Application settings instance.
    """
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
