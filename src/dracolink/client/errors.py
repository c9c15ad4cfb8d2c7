"""Typed errors raised by the dracolink client.

Every failure reaching a caller is one of these classes. The retry layer
uses them to classify failures:

- Unauthenticated: 401 or failed token refresh (one forced refresh only)
- RateLimited: 429 (retried with backoff)
- ServerError: 5xx (retried with backoff)
- ClientError: other 4xx (never retried)
- TransportError: connection/timeout failures (retried if ``retryable``)
- IntegrityError: chunk checksum or authentication tag mismatch
- TransferCancelledError: caller-initiated cancellation
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dracolink.client.transport import ApiResponse


class ApiError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        error_code: int | None = None,
        debug_info: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.debug_info = debug_info
        self.attempts = 1


class Unauthenticated(ApiError):
    """Token invalid, expired or revoked and could not be refreshed."""


class RateLimited(ApiError):
    """Too many requests (429)."""

    def __init__(
        self, message: str, status_code: int | None = 429, *, retry_after: float | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, status_code, **kwargs)
        self.retry_after = retry_after


class ServerError(ApiError):
    """Server-side failure (5xx)."""

    def __init__(
        self, message: str, status_code: int | None = 500, *, retry_after: float | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, status_code, **kwargs)
        self.retry_after = retry_after


class ClientError(ApiError):
    """Request rejected by the server (4xx other than 401/429)."""


class NotFoundError(ClientError):
    """Resource not found."""


class ConflictError(ClientError):
    """Resource already exists or version conflict."""


class TransportError(ApiError):
    """The request did not produce an HTTP response."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class IntegrityError(ApiError):
    """A downloaded chunk failed verification."""

    def __init__(self, message: str, chunk_index: int | None = None) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index


class TransferCancelledError(ApiError):
    """The caller cancelled the operation."""


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _describe(status_code: int, content: bytes) -> tuple[str, int | None, str | None]:
    """Extract (message, error_code, debug_info) from an error body."""
    try:
        body = json.loads(content) if content else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    if "error" in body:
        # OAuth2 error response
        description = body.get("error_description") or "Unknown"
        return f"{description} ({body['error']})", None, None
    message = body.get("message") or body.get("detail") or f"HTTP {status_code}"
    return str(message), body.get("errorCode"), body.get("debugInfo")


def error_from_response(response: ApiResponse) -> ApiError:
    """Map a non-success response to a typed error."""
    status = response.status_code
    message, error_code, debug_info = _describe(status, response.content)
    kwargs: dict[str, Any] = {"error_code": error_code, "debug_info": debug_info}
    retry_after = parse_retry_after(response.headers.get("retry-after"))

    if status == 401:
        return Unauthenticated(message, status, **kwargs)
    if status == 429:
        return RateLimited(message, status, retry_after=retry_after, **kwargs)
    if status >= 500:
        return ServerError(message, status, retry_after=retry_after, **kwargs)
    if status == 404:
        return NotFoundError(message, status, **kwargs)
    if status == 409:
        return ConflictError(message, status, **kwargs)
    return ClientError(message, status, **kwargs)
