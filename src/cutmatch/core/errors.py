"""Error taxonomy shared by the gateway, the generation client, and the
client data helpers.

Every error carries the HTTP status and the short ``error`` title used in the
``{error, message}`` JSON payloads, so the FastAPI exception handlers in
:mod:`cutmatch.api.main` can convert any of them without a lookup table.
"""

from __future__ import annotations


class CutMatchError(Exception):
    """Base class for all expected CutMatch failures.

    Attributes:
        status_code: HTTP status used when the error reaches the gateway.
        error: Short, user-safe title for the ``error`` field.
        message: User-safe description for the ``message`` field.
        detail: Optional internal detail, only shown in development mode.
    """

    status_code: int = 500
    error: str = "Internal server error"
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ConfigurationError(CutMatchError):
    """A required credential or setting is missing."""

    status_code = 503
    error = "Service not configured"
    default_message = "Hairstyle generation is not configured on this server"


class ValidationError(CutMatchError):
    """The request body is malformed or references unknown data."""

    status_code = 400
    error = "Validation failed"
    default_message = "The request is invalid"


class RateLimitExceeded(CutMatchError):
    status_code = 429
    error = "Too many requests"
    default_message = "Please wait before making another request"


class UpstreamProviderError(CutMatchError):
    """The external generation service failed or timed out."""

    status_code = 502
    error = "AI generation failed"
    default_message = "Error generating hairstyles with AI"


class AuthenticationRequired(CutMatchError):
    status_code = 401
    error = "Authentication required"
    default_message = "User not authenticated"


class NotFoundError(CutMatchError):
    status_code = 404
    error = "Not found"
    default_message = "The requested resource was not found"


class BackendError(CutMatchError):
    """The managed data backend rejected or failed an operation."""

    status_code = 502
    error = "Backend request failed"
    default_message = "The data service could not complete the request"

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        code: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.code = code
        self.upstream_status = upstream_status
