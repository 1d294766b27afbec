"""Error hierarchy for the Socket SDK.

These exceptions travel inside the request core (attempt -> retry controller ->
dispatcher) and are turned into :class:`~socket_sdk.types.results.ApiFailure`
values at the dispatcher boundary.  Only :class:`ConfigurationError` and its
subclasses reach callers, because they signal misuse rather than an
environmental failure.
"""
from __future__ import annotations

from typing import Any


class SDKError(Exception):
    """Base error for all socket_sdk errors."""

    retryable: bool = False

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ApiStatusError(SDKError):
    """The API answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        reason: str = "",
        retryable: bool = False,
        retry_after: float | None = None,
        body: str = "",
        headers: dict[str, str] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.reason = reason
        self.retryable = retryable
        self.retry_after = retry_after
        self.body = body
        self.headers = headers or {}


# ---------------------------------------------------------------------------
# Status-specific errors
# ---------------------------------------------------------------------------


class AuthenticationError(ApiStatusError):
    """The API token was rejected (401)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


class AccessDeniedError(ApiStatusError):
    """The token lacks permission for the resource (403)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


class NotFoundError(ApiStatusError):
    """Resource not found (404)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class InvalidRequestError(ApiStatusError):
    """The request was malformed or invalid (400, 422)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class PayloadTooLargeError(ApiStatusError):
    """The request body exceeded the server's limits (413)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class RateLimitError(ApiStatusError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class ServerError(ApiStatusError):
    """Server-side error (5xx)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


# ---------------------------------------------------------------------------
# Transport and decode errors
# ---------------------------------------------------------------------------


class NetworkError(SDKError):
    """A network-level error occurred (connection refused, reset, ...)."""

    retryable = True


class RequestTimeoutError(SDKError):
    """A request attempt exceeded its timeout and was aborted."""

    retryable = True


class DecodeError(SDKError):
    """A response body could not be decoded."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.body = body


class MultipartError(SDKError):
    """A multipart body could not be assembled."""


# ---------------------------------------------------------------------------
# Precondition violations (raised to callers)
# ---------------------------------------------------------------------------


class ConfigurationError(SDKError):
    """Invalid SDK configuration or call arguments."""


class UploadError(ConfigurationError):
    """A file selected for upload is missing or unreadable."""

    def __init__(self, message: str, *, path: str, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def error_from_status_code(
    status_code: int,
    message: str,
    *,
    reason: str = "",
    body: str = "",
    headers: dict[str, str] | None = None,
    retry_after: float | None = None,
) -> ApiStatusError:
    """Map an HTTP status code to the appropriate error type."""
    common: dict[str, Any] = dict(
        status_code=status_code,
        reason=reason,
        body=body,
        headers=headers,
        retry_after=retry_after,
    )

    if status_code in (400, 422):
        return InvalidRequestError(message, **common)
    if status_code == 401:
        return AuthenticationError(message, **common)
    if status_code == 403:
        return AccessDeniedError(message, **common)
    if status_code == 404:
        return NotFoundError(message, **common)
    if status_code == 408:
        return ApiStatusError(message, retryable=True, **common)
    if status_code == 413:
        return PayloadTooLargeError(message, **common)
    if status_code == 429:
        return RateLimitError(message, **common)
    if 500 <= status_code <= 599:
        return ServerError(message, **common)

    # Remaining client errors are not transient
    return ApiStatusError(message, retryable=False, **common)
