"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_LLM_URL = "http://localhost:4891/v1/chat/completions"


class EnvironmentError(Exception):
    """Raised when environment variables are invalid."""
    pass


def safe_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def safe_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def validate_environment() -> None:
    """Apply defaults and validate configuration at startup.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "LLM_URL": os.getenv("LLM_URL") or DEFAULT_LLM_URL,
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "MODEL_ID": "Model identifier sent to the text-generation backend",
        "TOPIC_CATALOG_PATH": "JSON/YAML topic catalog replacing the built-in one",
    }

    value = os.getenv("LLM_URL", "")
    if not (value.startswith("http://") or value.startswith("https://")):
        raise EnvironmentError(f"Invalid URL format for LLM_URL: {value}")

    for var in ("LLM_TIMEOUT", "LLM_MAX_TOKENS"):
        raw = os.getenv(var)
        if raw is None or raw == "":
            continue
        try:
            number = int(raw)
        except ValueError as exc:
            raise EnvironmentError(f"{var} must be an integer, got '{raw}'") from exc
        if number <= 0:
            raise EnvironmentError(f"{var} must be positive, got {number}")

    catalog_path = os.getenv("TOPIC_CATALOG_PATH")
    if catalog_path and not os.path.exists(catalog_path):
        raise EnvironmentError(f"TOPIC_CATALOG_PATH does not exist: {catalog_path}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)
