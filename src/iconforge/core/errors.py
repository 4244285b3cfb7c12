"""Application error hierarchy.

Every error raised deliberately by the service layer derives from
:class:`AppError` and carries the HTTP status code the API should answer
with.  The FastAPI exception handlers in :mod:`iconforge.api.main` turn these
into the standard ``{"success": false, "error": {...}}`` envelope.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map onto an HTTP response.

    Attributes:
        message: Human-readable message returned to the client.
        status_code: HTTP status code for the response.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Invalid input supplied by the client."""

    status_code = 400


class NotFoundError(AppError):
    """Requested generation record does not exist."""

    status_code = 404


class RateLimitError(AppError):
    """The image provider throttled the request."""

    status_code = 429


class ExternalServiceError(AppError):
    """The image provider failed or returned something unusable."""

    status_code = 502


class ConfigurationError(AppError):
    """Required configuration (e.g. the API token) is missing."""

    status_code = 500


class PersistenceError(AppError):
    """A generation record could not be written to the database."""

    status_code = 500
