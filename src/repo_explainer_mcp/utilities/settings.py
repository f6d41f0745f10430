import os
from collections.abc import Callable

from fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RATE_LIMIT_REQUESTS = 100
DEFAULT_RATE_LIMIT_WINDOW_MS = 60 * 60 * 1000
DEFAULT_RATE_LIMIT_MAX_IDENTIFIERS = 10000

DEFAULT_CACHE_MAX_ENTRIES = 1000

DEFAULT_GITHUB_TIMEOUT_SECONDS = 30.0
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 30.0


def _get_number[T: (int, float)](env_var: str, default: T, parse: Callable[[str], T]) -> T:
    """Read a number from the environment. Unset, empty and malformed values fall back to the default."""

    if not (value := os.getenv(env_var)):
        return default

    try:
        return parse(value)
    except ValueError:
        logger.warning(f"Ignoring {env_var}={value!r}, it is not a valid {parse.__name__}. Using {default} instead.")
        return default


def _get_int(env_var: str, default: int) -> int:
    return _get_number(env_var, default, int)


def _get_float(env_var: str, default: float) -> float:
    return _get_number(env_var, default, float)


def get_rate_limit_requests() -> int:
    return _get_int("RATE_LIMIT_REQUESTS", DEFAULT_RATE_LIMIT_REQUESTS)


def get_rate_limit_window_seconds() -> float:
    """The rate limit window is configured in milliseconds and used in seconds."""
    return _get_int("RATE_LIMIT_WINDOW_MS", DEFAULT_RATE_LIMIT_WINDOW_MS) / 1000


def get_rate_limit_max_identifiers() -> int:
    return _get_int("RATE_LIMIT_MAX_IDENTIFIERS", DEFAULT_RATE_LIMIT_MAX_IDENTIFIERS)


def get_cache_max_entries() -> int:
    return _get_int("CACHE_MAX_ENTRIES", DEFAULT_CACHE_MAX_ENTRIES)


def get_github_timeout_seconds() -> float:
    return _get_float("GITHUB_TIMEOUT_SECONDS", DEFAULT_GITHUB_TIMEOUT_SECONDS)


def get_completion_timeout_seconds() -> float:
    return _get_float("COMPLETION_TIMEOUT_SECONDS", DEFAULT_COMPLETION_TIMEOUT_SECONDS)


def get_github_token() -> str | None:
    for env_var in ("GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN"):
        if token := os.getenv(env_var):
            return token

    return None
