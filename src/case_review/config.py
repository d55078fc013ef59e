"""Configuration management for the case review client.

Settings come from ``CASE_REVIEW_*`` environment variables or from a YAML
file with ``${VAR}`` interpolation. Numeric values are range-checked and the
API URL is validated before any client is built.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CASE_REVIEW_"
DEFAULT_API_URL = "http://localhost:3000"

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


# =============================================================================
# Environment Variable Parsing Helpers
# =============================================================================


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer environment variable with fallback to default.

    Logs a warning if the value is invalid instead of crashing.
    """
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(
            "Invalid integer value for %s: '%s', using default %s", name, value, default
        )
        return default


def _parse_float_env(name: str, default: float) -> float:
    """Parse float environment variable with fallback to default."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(
            "Invalid float value for %s: '%s', using default %s", name, value, default
        )
        return default


def _coerce_bool(value: Any) -> bool:
    """Interpret a flag from env or YAML: only true/1/yes (any case) are True.

    Raises:
        ConfigurationError: value is neither a bool, an int nor a string
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    raise ConfigurationError(f"Expected a boolean, got {type(value).__name__}: {value!r}")


def _parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return _coerce_bool(value)



# =============================================================================
# YAML Loading
# =============================================================================


def _interpolate_env(value: str) -> str:
    """Replace ${VAR} patterns with environment variable values.

    If a referenced variable is not set, the placeholder is replaced with
    an empty string to prevent literal '${VAR}' from leaking into configs.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively walk a parsed YAML structure and interpolate strings."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item) for item in obj]
    return obj


def load_yaml_config(path: str | Path) -> dict:
    """Load a YAML config file with env var interpolation.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ConfigurationError: If the document is not a mapping.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("Invalid YAML in config file %s: %s", path, e)
        raise
    except OSError as e:
        logger.error("Cannot read config file %s: %s", path, e)
        raise

    if raw is None:
        return {}

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must contain a YAML mapping, got {type(raw).__name__}: {path}"
        )

    return _walk_and_interpolate(raw)


# =============================================================================
# Configuration Class
# =============================================================================


@dataclass(frozen=True)
class Config:
    """Immutable client configuration.

    - timeout_seconds: per-request timeout, expiry surfaces as FetchError
    - max_retries: retries for idempotent reads only, mutations never retry
    - allow_direct_flip: permit approved <-> rejected without re-review
    - confirm_approvals: ask for confirmation before approving
    - enforce_roles: only coordinators may approve or reject
    """

    api_url: str = DEFAULT_API_URL
    timeout_seconds: float = 30.0
    page_size: int = 50
    evidence_page_size: int = 50
    max_concurrent_fetches: int = 8

    max_retries: int = 2
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0

    allow_direct_flip: bool = True
    confirm_approvals: bool = True
    enforce_roles: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Note: Uses object.__setattr__ because dataclass is frozen.
        """
        object.__setattr__(self, "api_url", _validate_url(self.api_url))
        self._validate_values()

    def _validate_values(self) -> None:
        if self.timeout_seconds <= 0 or self.timeout_seconds > 300:
            raise ConfigurationError("timeout_seconds must be between 0 and 300")

        if not 1 <= self.page_size <= 500:
            raise ConfigurationError("page_size must be between 1 and 500")

        if not 1 <= self.evidence_page_size <= 500:
            raise ConfigurationError("evidence_page_size must be between 1 and 500")

        if not 1 <= self.max_concurrent_fetches <= 64:
            raise ConfigurationError("max_concurrent_fetches must be between 1 and 64")

        if self.max_retries < 0 or self.max_retries > 10:
            raise ConfigurationError("max_retries must be between 0 and 10")

        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            raise ConfigurationError("retry delays must satisfy 0 <= base <= max")

    @classmethod
    def load(cls) -> Config:
        """Load configuration from CASE_REVIEW_* environment variables."""
        return cls(
            api_url=os.getenv(f"{ENV_PREFIX}API_URL", DEFAULT_API_URL),
            timeout_seconds=_parse_float_env(f"{ENV_PREFIX}TIMEOUT", 30.0),
            page_size=_parse_int_env(f"{ENV_PREFIX}PAGE_SIZE", 50),
            evidence_page_size=_parse_int_env(f"{ENV_PREFIX}EVIDENCE_PAGE_SIZE", 50),
            max_concurrent_fetches=_parse_int_env(f"{ENV_PREFIX}MAX_CONCURRENT_FETCHES", 8),
            max_retries=_parse_int_env(f"{ENV_PREFIX}MAX_RETRIES", 2),
            retry_base_delay=_parse_float_env(f"{ENV_PREFIX}RETRY_DELAY", 0.5),
            retry_max_delay=_parse_float_env(f"{ENV_PREFIX}RETRY_MAX_DELAY", 5.0),
            allow_direct_flip=_parse_bool_env(f"{ENV_PREFIX}ALLOW_DIRECT_FLIP", True),
            confirm_approvals=_parse_bool_env(f"{ENV_PREFIX}CONFIRM_APPROVALS", True),
            enforce_roles=_parse_bool_env(f"{ENV_PREFIX}ENFORCE_ROLES", False),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """Build configuration from the ``client`` section of a YAML file.

        Unknown keys are ignored with a warning. A file without a ``client``
        section is read as a flat mapping. Flags given as strings follow the
        same rule as environment variables.
        """
        raw = load_yaml_config(path)
        section = raw.get("client", raw)
        if not isinstance(section, dict):
            raise ConfigurationError(f"'client' section must be a mapping: {path}")

        known = {f.name for f in fields(cls)}
        flags = {f.name for f in fields(cls) if f.type in ("bool", bool)}
        values: dict[str, Any] = {}
        for key, value in section.items():
            if key not in known:
                if key != "session":
                    logger.warning("Ignoring unknown config key %r in %s", key, path)
                continue
            values[key] = _coerce_bool(value) if key in flags else value

        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


# =============================================================================
# URL Validation
# =============================================================================


def _validate_url(url: str) -> str:
    """Validate and normalize the API base URL."""
    url = (url or "").strip().rstrip("/")

    if not url:
        raise ConfigurationError("API URL cannot be empty")

    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(
            f"Invalid URL scheme: {parsed.scheme}. Use http or https."
        )

    if not parsed.netloc:
        raise ConfigurationError("Invalid URL: missing host")

    if parsed.scheme == "http":
        host = parsed.hostname or ""
        if host not in ("localhost", "127.0.0.1", "::1") and not host.startswith(
            ("10.", "192.168.")
        ):
            logger.warning(
                "Using HTTP for a non-local API - bearer token sent in plaintext",
                extra={"url": url},
            )

    return url
