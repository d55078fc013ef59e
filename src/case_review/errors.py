"""Exception hierarchy for the case review client.

Every exception carries a full message (for logs) and a ``safe_message``
meant for the person at the keyboard. Server-provided messages are passed
through verbatim as the safe message when the backend sends one.
"""

from __future__ import annotations


class CaseReviewError(Exception):
    """Base exception for the case review client.

    All custom exceptions inherit from this class, allowing callers to
    catch every workflow error with a single except clause.
    """

    def __init__(self, message: str, *, safe_message: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Full error message (for logging)
            safe_message: Message suitable for showing to the user
        """
        super().__init__(message)
        self._safe_message = safe_message or message

    @property
    def safe_message(self) -> str:
        """Return the user-facing error message."""
        return self._safe_message


class ConfigurationError(CaseReviewError):
    """Configuration or credential error.

    Raised when:
    - The API URL is invalid
    - Numeric settings are out of range
    - The token file has insecure permissions
    """

    pass


class ValidationError(CaseReviewError):
    """Client-side input validation failure.

    Raised before any network request is issued, e.g. for an empty
    justification, code or description.
    """

    pass


class InactiveCaseError(ValidationError):
    """Edit attempted on a deactivated case file."""

    def __init__(self, code: str) -> None:
        message = f"Case file {code} is inactive; activate it before editing."
        super().__init__(message)
        self.code = code


class TransitionError(ValidationError):
    """Review transition not allowed by the active transition policy."""

    def __init__(self, code: str, current: str, target: str) -> None:
        message = f"Case file {code} cannot move from {current} to {target}."
        super().__init__(message)
        self.code = code
        self.current = current
        self.target = target


class MissingIdentityError(CaseReviewError):
    """No approver identity could be resolved from the session."""

    def __init__(self, message: str = "No approver identity in the current session.") -> None:
        super().__init__(
            message,
            safe_message="Could not identify the reviewing user. Sign in again.",
        )


class PermissionDeniedError(CaseReviewError):
    """Session role is not allowed to perform the operation."""

    pass


class CaseBusyError(CaseReviewError):
    """Another mutation for the same case code is still in flight."""

    def __init__(self, code: str) -> None:
        message = f"An update for case file {code} is already in progress."
        super().__init__(message)
        self.code = code


class FetchError(CaseReviewError):
    """Transport failure or non-success HTTP status.

    Attributes:
        status_code: HTTP status, or None for transport failures/timeouts
        server_message: ``message`` field from the response body, if any
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        server_message: str | None = None,
        fallback: str | None = None,
    ) -> None:
        super().__init__(message, safe_message=server_message or fallback or message)
        self.status_code = status_code
        self.server_message = server_message


class NotFoundError(FetchError):
    """The backend does not know the requested case code."""

    pass


class DegradedJoinError(CaseReviewError):
    """Evidence for a single case could not be fetched or parsed.

    Never raised out of the aggregation; logged and replaced by an empty
    evidence list for that case.
    """

    def __init__(self, code: str, cause: Exception) -> None:
        message = f"Evidence for case file {code} unavailable: {type(cause).__name__}: {cause}"
        super().__init__(message, safe_message=f"Evidence for {code} could not be loaded.")
        self.code = code
        self.cause = cause
