"""Environment variable validation and typed accessors."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when environment variables are missing or invalid."""
    pass

_NUMERIC_VARS = {
    "LLM_TIMEOUT": "Text-generation timeout in seconds",
    "LLM_BREAKER_COOLDOWN": "Seconds the text-generation circuit stays open",
}
_INTEGER_VARS = {
    "LLM_BREAKER_THRESHOLD": "Consecutive text-generation failures before the circuit opens",
    "EVENT_WINDOW_DAYS": "Days of session history used for profiling",
}


def validate_environment() -> None:
    """Validate configuration before the engine is built.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars: Dict[str, str] = {
        "LLM_URL": "OpenAI-compatible chat completion endpoint",
        "MODEL_ID": "Model used for study recommendations",
        "TOPIC_GRAPH_PATH": "JSON topic catalogue replacing the built-in one",
    }

    for var in ("LLM_URL", "GPT4ALL_URL"):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var, description in _NUMERIC_VARS.items():
        value = os.getenv(var)
        if not value:
            continue
        try:
            number = float(value)
        except ValueError:
            raise EnvironmentError(f"{var} ({description}) must be a number, got {value!r}")
        if number <= 0:
            raise EnvironmentError(f"{var} ({description}) must be positive, got {value!r}")

    for var, description in _INTEGER_VARS.items():
        value = os.getenv(var)
        if not value:
            continue
        try:
            number = int(value)
        except ValueError:
            raise EnvironmentError(f"{var} ({description}) must be an integer, got {value!r}")
        if number < 1:
            raise EnvironmentError(f"{var} ({description}) must be at least 1, got {value!r}")

    topic_graph_path = os.getenv("TOPIC_GRAPH_PATH")
    if topic_graph_path and not os.path.isfile(topic_graph_path):
        raise EnvironmentError(f"TOPIC_GRAPH_PATH does not point to a file: {topic_graph_path}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.info("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default
