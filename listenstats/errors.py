"""Error taxonomy and standardized error handlers.

Every failure that crosses a layer boundary is one of the ``DashboardError``
subclasses below. The upstream wrapper classifies and raises, the client
fetchers decide retry vs. terminal from ``retryable``, and the HTTP layer maps
the class to a status code and the stable ``{"error", "code"}`` body.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised at startup when required configuration is missing or unsafe."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class DashboardError(Exception):
    """Base class for classified failures."""

    status: int = 500
    code: str = "INTERNAL_ERROR"
    retryable: bool = False
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.upstream_status = upstream_status

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class AuthError(DashboardError):
    """Missing, expired or revoked credential. Requires re-authentication."""

    status = 401
    code = "TOKEN_EXPIRED"
    default_message = "Invalid or expired token. Please log in again."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        upstream_status: int | None = None,
    ):
        super().__init__(message, upstream_status=upstream_status)
        if code:
            self.code = code


class UpstreamClientError(DashboardError):
    """Upstream rejected the request with a 4xx other than 401/429."""

    status = 502
    code = "UPSTREAM_ERROR"
    default_message = "Spotify rejected the request"


class ForbiddenError(UpstreamClientError):
    status = 403
    code = "FORBIDDEN"
    default_message = "Access forbidden. Please check your Spotify permissions."


class NotFoundError(UpstreamClientError):
    status = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class RateLimitedError(DashboardError):
    """HTTP 429. ``retry_after`` is in seconds."""

    status = 429
    code = "RATE_LIMITED"
    retryable = True
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: float | None = None,
        upstream_status: int | None = 429,
    ):
        super().__init__(message, upstream_status=upstream_status)
        self.retry_after = retry_after


class ServiceUnavailableError(DashboardError):
    """Upstream 5xx."""

    status = 503
    code = "SERVICE_UNAVAILABLE"
    retryable = True
    default_message = "Spotify service temporarily unavailable. Please try again later."


class NetworkError(DashboardError):
    """Transport failure before any HTTP status was received."""

    status = 503
    code = "NETWORK_ERROR"
    retryable = True
    default_message = "Unable to connect to Spotify. Please check your internet connection."


class ValidationError(DashboardError):
    """Bad caller input. Never retried."""

    status = 400
    code = "INVALID_PARAMETER"
    default_message = "Invalid request parameter"

    def __init__(self, message: str | None = None, *, parameter: str | None = None):
        super().__init__(message)
        self.parameter = parameter

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.parameter:
            body["parameter"] = self.parameter
        return body


class UnknownUpstreamError(DashboardError):
    status = 500
    code = "INTERNAL_ERROR"


def error_for_status(
    status: int,
    message: str | None = None,
    *,
    retry_after: float | None = None,
    own_api: bool = False,
) -> DashboardError:
    """Classify an HTTP status code into the error taxonomy.

    A 400 from our own API is a caller validation failure; from Spotify it is
    an upstream client error surfaced verbatim.
    """
    if status == 400 and own_api:
        return ValidationError(message)
    if status == 401:
        return AuthError(message, upstream_status=status)
    if status == 403:
        return ForbiddenError(message, upstream_status=status)
    if status == 404:
        return NotFoundError(message, upstream_status=status)
    if status == 429:
        return RateLimitedError(message, retry_after=retry_after)
    if 500 <= status < 600:
        return ServiceUnavailableError(message, upstream_status=status)
    if 400 <= status < 500:
        return UpstreamClientError(message, upstream_status=status)
    return UnknownUpstreamError(
        message or f"Unexpected HTTP status {status}", upstream_status=status
    )


def parse_retry_after(value: str | None, default: float = 1.0) -> float:
    """Parse a ``Retry-After`` header given in seconds."""
    if value is None:
        return default
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def json_error(
    message: str,
    status: int,
    *,
    code: str | None = None,
    headers: dict[str, str] | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    """Create an error response with the ``{"error", "code"}`` contract."""
    body: dict[str, Any] = {"error": message}
    if code:
        body["code"] = code
    if extra:
        body.update(extra)
    return JSONResponse(body, status_code=status, headers=headers)


async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(exc.retry_after))
    level = logging.WARNING if exc.status < 500 else logging.ERROR
    logger.log(
        level,
        "request failed",
        extra={
            "meta": {
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "code": exc.code,
                "status": exc.status,
                "upstream_status": exc.upstream_status,
            }
        },
    )
    return JSONResponse(exc.to_body(), status_code=exc.status, headers=headers or None)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == 405:
        return json_error(
            "Method not allowed",
            405,
            code="METHOD_NOT_ALLOWED",
            headers=dict(exc.headers or {}),
        )
    if exc.status_code == 404:
        return json_error("Not found", 404, code="NOT_FOUND")
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    return json_error(message, exc.status_code, headers=dict(exc.headers or {}))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled error",
        extra={"meta": {"path": request.url.path, "error_type": type(exc).__name__}},
    )
    return json_error("An unexpected error occurred", 500, code="INTERNAL_ERROR")


def register_error_handlers(app) -> None:
    """Register the standardized handlers on a FastAPI app."""
    app.add_exception_handler(DashboardError, dashboard_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


__all__ = [
    "ConfigError",
    "DashboardError",
    "AuthError",
    "UpstreamClientError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "NetworkError",
    "ValidationError",
    "UnknownUpstreamError",
    "error_for_status",
    "parse_retry_after",
    "json_error",
    "register_error_handlers",
]
