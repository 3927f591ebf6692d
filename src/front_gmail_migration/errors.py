"""Exception types shared across the Front and Gmail clients."""

from __future__ import annotations


class MigrationError(RuntimeError):
    """Base exception for migration errors."""


class AuthError(MigrationError):
    """Raised when a remote system rejects our credentials.

    Never retried; aborts the run.
    """


class RemoteApiError(MigrationError):
    """A failed remote call, classified as transient or not."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool) -> None:
        """Initialize the error.

        Args:
            message: Human readable description.
            status_code: HTTP status of the response, if there was one.
            retryable: Whether the call may succeed if repeated.
        """
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def is_retryable(exc: BaseException) -> bool:
    """Return True for failures the retry wrapper should repeat."""
    return isinstance(exc, RemoteApiError) and exc.retryable
