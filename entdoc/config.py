"""
Configuration for entdoc.

Uses pydantic-settings for environment variable loading. All settings
have defaults suitable for tests and local development.

Environment variables:
    ENTDOC_DATABASE_URL: Connection URL used by connect() when none is given
    ENTDOC_UNKNOWN_DATA_BEHAVIOR: Policy for unknown keys in create() data
    ENTDOC_SQLITE_BUSY_TIMEOUT_MS: SQLite busy timeout
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class UnknownDataBehavior(Enum):
    """What create() does with keys that are not part of the schema."""

    THROW = "throw"
    ACCEPT = "accept"
    IGNORE = "ignore"
    LOG_ACCEPT = "log_accept"
    LOG_IGNORE = "log_ignore"


class Settings(BaseSettings):
    """entdoc configuration loaded from environment."""

    database_url: str = Field(default="sqlite://memory", description="Default connection URL")
    unknown_data_behavior: UnknownDataBehavior = Field(
        default=UnknownDataBehavior.THROW,
        description="Policy for unknown data keys during create()",
    )
    sqlite_busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")

    model_config = {"env_prefix": "ENTDOC_"}


_settings: Settings | None = None
_unknown_data_behavior: UnknownDataBehavior | None = None


def get_settings() -> Settings:
    """Get the process-wide settings (loaded once)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_unknown_data_behavior() -> UnknownDataBehavior:
    """Current global unknown-data policy."""
    if _unknown_data_behavior is not None:
        return _unknown_data_behavior
    return get_settings().unknown_data_behavior


def set_unknown_data_behavior(behavior: UnknownDataBehavior | str) -> UnknownDataBehavior:
    """Override the global unknown-data policy.

    Args:
        behavior: Policy or its string value

    Returns:
        The previously effective policy
    """
    global _unknown_data_behavior
    previous = get_unknown_data_behavior()
    _unknown_data_behavior = UnknownDataBehavior(behavior)
    logger.debug("Unknown data behavior set to %s", _unknown_data_behavior.value)
    return previous


def reset_settings() -> None:
    """Reset cached settings and overrides (for testing only)."""
    global _settings, _unknown_data_behavior
    _settings = None
    _unknown_data_behavior = None
