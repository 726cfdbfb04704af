"""Exception taxonomy for Bubuverse Farm.

Every failure raised by the farm derives from :class:`FarmError`.  The
orchestrator converts per-account failures into an :class:`ErrorType` tag so
the run summary can report *why* an account was not processed.

Classes:
    ErrorType: Enum classifying errors for the run summary.
    FarmError: Base exception.
    ConfigError: Fatal configuration problem (startup only).
    InsufficientIdentities: Fewer identities than accounts.
    MalformedIdentity: A single identity string cannot be parsed.
    SessionError: Session acquisition failed or was blocked.
    RemoteError: The remote API returned a non-success response.
    SigningError: The account's credential cannot sign.
"""

from enum import Enum
from typing import Optional


class ErrorType(Enum):
    """Classification of per-account failures.

    Members:
        IDENTITY: The account's proxy entry could not be parsed.
        SESSION: Session acquisition failed (timeout, redirect, block page).
        REMOTE: The remote API rejected a call or answered non-2xx.
        SIGNING: The account's secret is malformed.
        UNKNOWN: Anything else raised while processing the account.
    """

    IDENTITY = "identity"
    SESSION = "session"
    REMOTE = "remote"
    SIGNING = "signing"
    UNKNOWN = "unknown"


class FarmError(Exception):
    """Base class for all farm errors."""

    error_type: ErrorType = ErrorType.UNKNOWN


class ConfigError(FarmError):
    """Configuration problem detected before the batch starts."""


class InsufficientIdentities(ConfigError):
    """Raised when the identity pool is smaller than the account list."""

    def __init__(self, needed: int, available: int) -> None:
        self.needed = needed
        self.available = available
        super().__init__(
            f"Not enough proxies: need {needed}, have {available}"
        )


class MalformedIdentity(ConfigError):
    """Raised when one identity entry cannot be parsed.

    Unlike its parent this is caught per account; a bad line in the pool
    never aborts the batch.
    """

    error_type = ErrorType.IDENTITY


class SessionError(FarmError):
    """Session could not be opened or landed on a blocked page."""

    error_type = ErrorType.SESSION


class RemoteError(FarmError):
    """Non-success response from the remote API.

    Attributes:
        operation: Short name of the API call (e.g. ``"check-in"``).
        status: HTTP status code, or ``None`` for application-level
            rejections carried in a 2xx body.
    """

    error_type = ErrorType.REMOTE

    def __init__(
        self,
        operation: str,
        message: str,
        status: Optional[int] = None,
    ) -> None:
        self.operation = operation
        self.status = status
        prefix = f"HTTP {status}: " if status is not None else ""
        super().__init__(f"{operation} failed: {prefix}{message}")


class SigningError(FarmError):
    """The account secret is malformed or does not match its address."""

    error_type = ErrorType.SIGNING


def classify_error(exc: BaseException) -> ErrorType:
    """Return the :class:`ErrorType` tag for *exc*."""
    if isinstance(exc, FarmError):
        return exc.error_type
    return ErrorType.UNKNOWN
