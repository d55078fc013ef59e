"""Session context: bearer token and caller identity.

Sign-in happens elsewhere. This module only carries what the workflow needs
from an established session and is passed explicitly into every component
that talks to the backend.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import ConfigurationError, MissingIdentityError

logger = logging.getLogger(__name__)

TOKEN_FILE = Path.home() / ".config" / "case-review" / "token"


class SecretStr:
    """String type that hides its value in logs and repr."""

    def __init__(self, value: str) -> None:
        self._value = value

    def get_secret_value(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __repr__(self) -> str:
        return "SecretStr('***')"

    def __str__(self) -> str:
        return "***"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretStr):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


class Role(Enum):
    """Roles issued by the backend at sign-in."""

    TECHNICIAN = "tecnico"
    COORDINATOR = "coordinador"

    @classmethod
    def parse(cls, value: object) -> Role | None:
        """Return the matching role, or None for anything unexpected."""
        for role in cls:
            if value == role.value:
                return role
        return None


@dataclass(frozen=True)
class Identity:
    id: int
    name: str | None = None
    role: Role | None = None


@dataclass(frozen=True)
class Session:
    """An established session. ``identity`` is None when the backend did not
    report a usable user id."""

    token: SecretStr
    identity: Identity | None = None

    def __repr__(self) -> str:
        return f"Session(token=***, identity={self.identity!r})"


class SessionProvider(Protocol):
    def current(self) -> Session:
        """Return the session to use for the next request."""
        ...


class StaticSessionProvider:
    """Session provider holding one fixed session, replaceable on re-login."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def current(self) -> Session:
        return self._session

    def replace(self, session: Session) -> None:
        self._session = session


def require_identity(provider: SessionProvider) -> Identity:
    """Resolve the caller identity or raise MissingIdentityError."""
    identity = provider.current().identity
    if identity is None:
        raise MissingIdentityError()
    return identity


def parse_user_id(value: object) -> int | None:
    """Coerce a user id from storage or env; blank or non-numeric gives None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def build_session(
    token: str,
    user_id: object = None,
    user_name: str | None = None,
    role: object = None,
) -> Session:
    """Build a session from loosely typed values (env vars, YAML, login payload)."""
    uid = parse_user_id(user_id)
    identity = None
    if uid is not None:
        identity = Identity(id=uid, name=user_name or None, role=Role.parse(role))
    elif user_id not in (None, ""):
        logger.warning("Ignoring non-numeric user id for session identity")
    return Session(token=SecretStr(token), identity=identity)


def load_session(overrides: dict | None = None) -> Session:
    """Load the session from config overrides, environment and token file.

    Token sources (precedence order):
    1. ``token`` key in *overrides* (the YAML ``session`` section)
    2. CASE_REVIEW_TOKEN environment variable
    3. ~/.config/case-review/token (must not be group/world accessible)

    Raises:
        ConfigurationError: If no token is available
    """
    overrides = overrides or {}
    token = (overrides.get("token") or "").strip() or _load_token()
    if not token:
        raise ConfigurationError(
            "Session token not found. Set CASE_REVIEW_TOKEN or create "
            f"{TOKEN_FILE} with 600 permissions."
        )

    return build_session(
        token,
        user_id=overrides.get("user_id", os.getenv("CASE_REVIEW_USER_ID")),
        user_name=overrides.get("user_name", os.getenv("CASE_REVIEW_USER_NAME")),
        role=overrides.get("role", os.getenv("CASE_REVIEW_ROLE")),
    )


def _load_token() -> str | None:
    token = os.getenv("CASE_REVIEW_TOKEN")
    if token is not None and token.strip():
        logger.debug("Loaded token from CASE_REVIEW_TOKEN environment variable")
        return token.strip()
    return _load_token_file(TOKEN_FILE)


def _load_token_file(path: Path) -> str | None:
    """Load token from file with permission check.

    Refuses to load the token if the file is group or world accessible.
    """
    if not path.exists():
        return None

    mode = path.stat().st_mode
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        logger.warning(
            "Token file has insecure permissions",
            extra={"path": str(path), "mode": oct(mode)},
        )
        raise ConfigurationError(
            f"Token file {path} has insecure permissions. Run: chmod 600 {path}"
        )

    try:
        token = path.read_text().strip()
    except OSError as e:
        logger.warning("Failed to read token file: %s", e)
        return None
    return token or None
