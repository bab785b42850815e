"""Environment variable validation and management."""

import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate configuration environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults: Dict[str, str] = {
        "DB_PATH": "data.db",
        "DEFAULT_PROFILE_ID": "default",
        "PROMPT_MIN_CONFIDENCE": "0.2",
        "LOG_LEVEL": "INFO",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    if not os.environ["DEFAULT_PROFILE_ID"].strip():
        raise EnvironmentError("DEFAULT_PROFILE_ID must not be blank")

    threshold = get_env_float("PROMPT_MIN_CONFIDENCE")
    if threshold is None or not 0.0 <= threshold <= 1.0:
        raise EnvironmentError(
            f"PROMPT_MIN_CONFIDENCE must be a number in [0, 1]: {os.environ['PROMPT_MIN_CONFIDENCE']}"
        )

    level = os.environ["LOG_LEVEL"].strip().upper()
    if level not in _LOG_LEVELS:
        raise EnvironmentError(f"Invalid LOG_LEVEL: {os.environ['LOG_LEVEL']}")
    logging.getLogger().setLevel(level)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get float value from environment variable, ``default`` if unset or invalid."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Environment variable %s is not a number: %r", name, value)
        return default
