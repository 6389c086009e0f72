"""Configuration management for the flowcal server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .timezone_utils import DEFAULT_DISPLAY_TIMEZONE

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_SECRET = "flowcal-calendar"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val

    return result


class AppSettings(BaseModel):
    """Validated runtime settings."""

    calendar_secret: str = DEFAULT_CALENDAR_SECRET
    display_timezone: str = DEFAULT_DISPLAY_TIMEZONE
    frontend_url: str = "http://localhost:3000"
    public_base_url: Optional[str] = Field(
        default=None, description="Base URL embedded in feed links (defaults to frontend_url)"
    )
    server_bind: str = "0.0.0.0"  # nosec B104 - server listens on all interfaces by default
    server_port: int = Field(default=8080, ge=1, le=65535)
    log_level: str = "INFO"

    feed_cache_ttl_seconds: float = Field(default=300.0, gt=0)
    fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    fetch_concurrency: int = Field(default=4, ge=1)
    max_retries: int = Field(default=2, ge=0)
    retry_backoff_factor: float = Field(default=1.5, ge=1.0)

    overdue_lookback_days: int = Field(default=30, ge=0)
    upcoming_days: int = Field(default=7, ge=0)
    max_occurrences_per_rule: int = Field(default=500, ge=1)

    data_file: Optional[Path] = None
    default_user_id: Optional[str] = None

    @field_validator("frontend_url", "public_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value

    @property
    def feed_base_url(self) -> str:
        return self.public_base_url or self.frontend_url

    @property
    def uses_default_secret(self) -> bool:
        return self.calendar_secret == DEFAULT_CALENDAR_SECRET


# Environment variable -> AppSettings field
ENV_FIELD_MAP: dict[str, str] = {
    "FLOWCAL_CALENDAR_SECRET": "calendar_secret",
    "FLOWCAL_DISPLAY_TIMEZONE": "display_timezone",
    "FLOWCAL_FRONTEND_URL": "frontend_url",
    "FLOWCAL_PUBLIC_BASE_URL": "public_base_url",
    "FLOWCAL_WEB_HOST": "server_bind",
    "FLOWCAL_WEB_PORT": "server_port",
    "FLOWCAL_LOG_LEVEL": "log_level",
    "FLOWCAL_FEED_CACHE_TTL": "feed_cache_ttl_seconds",
    "FLOWCAL_FETCH_TIMEOUT": "fetch_timeout_seconds",
    "FLOWCAL_FETCH_CONCURRENCY": "fetch_concurrency",
    "FLOWCAL_MAX_RETRIES": "max_retries",
    "FLOWCAL_OVERDUE_LOOKBACK_DAYS": "overdue_lookback_days",
    "FLOWCAL_UPCOMING_DAYS": "upcoming_days",
    "FLOWCAL_MAX_OCCURRENCES_PER_RULE": "max_occurrences_per_rule",
    "FLOWCAL_DATA_FILE": "data_file",
    "FLOWCAL_DEFAULT_USER": "default_user_id",
}


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from FLOWCAL_* environment variables.

        Returns:
            Dictionary of AppSettings field names to raw string values
        """
        cfg: dict[str, Any] = {}
        for env_key, field_name in ENV_FIELD_MAP.items():
            value = os.environ.get(env_key)
            if value is not None and value.strip():
                cfg[field_name] = value.strip()
        return cfg

    def load_settings(self, overrides: Optional[dict[str, Any]] = None) -> AppSettings:
        """Load .env file, read the environment and validate into AppSettings.

        Invalid values are logged and dropped so the defaults apply.

        Args:
            overrides: Values taking precedence over the environment (e.g. CLI flags)

        Returns:
            Validated settings
        """
        self.load_env_file()
        cfg = self.build_config_from_env()
        cfg.update({k: v for k, v in (overrides or {}).items() if v is not None})

        try:
            settings = AppSettings(**cfg)
        except ValidationError as e:
            bad_fields = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            for field_name in sorted(bad_fields):
                logger.warning(
                    "Invalid configuration value for %s=%r; ignoring",
                    field_name,
                    cfg.get(field_name),
                )
            settings = AppSettings(**{k: v for k, v in cfg.items() if k not in bad_fields})

        if settings.uses_default_secret:
            logger.warning(
                "FLOWCAL_CALENDAR_SECRET is not set; feed tokens use the built-in default secret"
            )
        return settings


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and attribute-style objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
