"""
QuorumSafe Configuration

All settings come from environment variables so the same engine code runs
unchanged in tests, local tooling and hosted deployments. Module-level
constants are resolved once at import; ``Settings.from_env()`` re-reads the
environment for callers that need a fresh view.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            details={"env_var": name, "value": raw},
        ) from exc
    if value < minimum:
        raise ConfigurationError(
            f"{name} must be >= {minimum}, got {value}",
            details={"env_var": name, "value": value},
        )
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{name} must be a boolean flag (1/0, true/false), got {raw!r}",
        details={"env_var": name, "value": raw},
    )


def _get_log_level(env: Mapping[str, str], name: str, default: str) -> str:
    level = env.get(name, default).strip().upper() or default
    if level not in _LOG_LEVELS:
        raise ConfigurationError(
            f"{name} must be one of {sorted(_LOG_LEVELS)}, got {level!r}",
            details={"env_var": name, "value": level},
        )
    return level


@dataclass(frozen=True)
class Settings:
    """Resolved engine settings."""

    environment: str = "development"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = True
    metrics_enabled: bool = True
    max_payload_bytes: int = 128 * 1024  # 0 means unlimited

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Raises:
            ConfigurationError: If a variable is present but malformed
        """
        env = os.environ if env is None else env
        settings = cls(
            environment=env.get("QUORUMSAFE_ENVIRONMENT", "development").strip() or "development",
            log_level=_get_log_level(env, "QUORUMSAFE_LOG_LEVEL", "INFO"),
            log_file=env.get("QUORUMSAFE_LOG_FILE", "").strip() or None,
            log_json=_get_bool(env, "QUORUMSAFE_LOG_JSON", True),
            metrics_enabled=_get_bool(env, "QUORUMSAFE_METRICS_ENABLED", True),
            max_payload_bytes=_get_int(env, "QUORUMSAFE_MAX_PAYLOAD_BYTES", 128 * 1024, minimum=0),
        )
        logger.debug(
            "Settings loaded from environment",
            extra={
                "event": "quorumsafe.config.loaded",
                "environment": settings.environment,
                "metrics_enabled": settings.metrics_enabled,
            },
        )
        return settings


SETTINGS = Settings.from_env()

ENVIRONMENT = SETTINGS.environment
LOG_LEVEL = SETTINGS.log_level
LOG_FILE = SETTINGS.log_file
LOG_JSON = SETTINGS.log_json
METRICS_ENABLED = SETTINGS.metrics_enabled
MAX_PAYLOAD_BYTES = SETTINGS.max_payload_bytes
