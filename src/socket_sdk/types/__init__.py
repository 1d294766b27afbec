"""Public data types for the Socket SDK."""
from __future__ import annotations

from socket_sdk.types.config import (
    RequestConfig,
    RequestHooks,
    RequestInfo,
    ResponseInfo,
    ResponseType,
    RetryPolicy,
)
from socket_sdk.types.results import (
    ApiFailure,
    ApiResult,
    ApiSuccess,
    ErrorDescription,
    err,
    ok,
)

__all__ = [
    "ApiFailure",
    "ApiResult",
    "ApiSuccess",
    "ErrorDescription",
    "RequestConfig",
    "RequestHooks",
    "RequestInfo",
    "ResponseInfo",
    "ResponseType",
    "RetryPolicy",
    "err",
    "ok",
]
