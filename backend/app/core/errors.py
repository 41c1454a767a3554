"""Error taxonomy shared by the journal service and the HTTP layer."""

from __future__ import annotations

from typing import Any

from fastapi import status


class JournalError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "InternalError"

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class ValidationError(JournalError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ValidationError"


class AuthError(JournalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AuthError"


class NotFoundError(JournalError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFoundError"


class ConflictError(JournalError):
    status_code = status.HTTP_409_CONFLICT
    code = "ConflictError"


class RateLimitError(JournalError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RateLimitError"

    def __init__(
        self, message: str, *, retry_after: float = 0.0, details: Any | None = None
    ) -> None:
        super().__init__(message, details=details)
        self.retry_after = retry_after


class ExternalServiceError(JournalError):
    code = "ExternalServiceError"


class StorageError(JournalError):
    code = "StorageError"


class ConfigurationError(RuntimeError):
    """Raised at startup when the configuration cannot produce a runnable app."""


def error_body(exc: JournalError, *, expose_detail: bool) -> dict[str, Any]:
    """Render an error for the client.

    Server-side failures only carry their message (and the underlying cause)
    outside production.
    """

    if exc.is_server_error and not expose_detail:
        return {"error": exc.code, "message": "internal error"}

    body: dict[str, Any] = {"error": exc.code, "message": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    if exc.is_server_error and exc.__cause__ is not None:
        body["cause"] = str(exc.__cause__)
    return body


__all__ = [
    "AuthError",
    "ConfigurationError",
    "ConflictError",
    "ExternalServiceError",
    "JournalError",
    "NotFoundError",
    "RateLimitError",
    "StorageError",
    "ValidationError",
    "error_body",
]
