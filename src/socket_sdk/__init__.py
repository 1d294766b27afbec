"""Socket SDK: async client for the Socket security-analysis API."""
from __future__ import annotations

import logging

from socket_sdk.constants import SDK_VERSION

# Types - Results
from socket_sdk.types.results import ApiFailure, ApiResult, ApiSuccess, ErrorDescription, err, ok

# Types - Config
from socket_sdk.types.config import (
    RequestConfig,
    RequestHooks,
    RequestInfo,
    ResponseInfo,
    ResponseType,
    RetryPolicy,
)

# Errors
from socket_sdk.errors import (
    SDKError,
    ApiStatusError,
    AuthenticationError,
    AccessDeniedError,
    NotFoundError,
    InvalidRequestError,
    PayloadTooLargeError,
    RateLimitError,
    ServerError,
    NetworkError,
    RequestTimeoutError,
    DecodeError,
    MultipartError,
    ConfigurationError,
    UploadError,
)

# Core
from socket_sdk._describe import describe_error
from socket_sdk._http import HttpClient
from socket_sdk._multipart import MultipartBody, MultipartBuilder, MultipartPart
from socket_sdk._ndjson import NdjsonDecoder, NdjsonLineError, NdjsonStreamError, decode_ndjson, iter_ndjson
from socket_sdk._retry import calculate_delay, with_retry
from socket_sdk.client import SocketSdk

__version__ = SDK_VERSION

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Results
    "ApiFailure",
    "ApiResult",
    "ApiSuccess",
    "ErrorDescription",
    "err",
    "ok",
    # Config
    "RequestConfig",
    "RequestHooks",
    "RequestInfo",
    "ResponseInfo",
    "ResponseType",
    "RetryPolicy",
    # Errors
    "SDKError",
    "ApiStatusError",
    "AuthenticationError",
    "AccessDeniedError",
    "NotFoundError",
    "InvalidRequestError",
    "PayloadTooLargeError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "RequestTimeoutError",
    "DecodeError",
    "MultipartError",
    "ConfigurationError",
    "UploadError",
    # Core
    "describe_error",
    "HttpClient",
    "MultipartBody",
    "MultipartBuilder",
    "MultipartPart",
    "NdjsonDecoder",
    "NdjsonLineError",
    "NdjsonStreamError",
    "decode_ndjson",
    "iter_ndjson",
    "calculate_delay",
    "with_retry",
    "SocketSdk",
]
