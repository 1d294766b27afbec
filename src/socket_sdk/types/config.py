"""Configuration types."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal

from socket_sdk.constants import DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRIES, DEFAULT_RETRY_DELAY

if TYPE_CHECKING:
    from socket_sdk._multipart import MultipartBody

ResponseType = Literal["json", "ndjson", "text", "response"]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for automatic retry behaviour.

    ``retries`` counts additional attempts, so a policy with ``retries=2``
    makes at most three requests.  Delays are in seconds.
    """

    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    backoff_multiplier: float = 2.0
    max_delay: float | None = None
    jitter: bool = True
    on_retry: Callable[[int, Exception, float], None] | None = field(
        default=None, compare=False, hash=False
    )


@dataclass(frozen=True)
class RequestConfig:
    """Everything needed to perform one logical API call.

    ``path`` is relative to the client's base URL.  At most one of ``json``
    and ``body`` may be given.
    """

    method: str
    path: str
    query: Mapping[str, Any] | None = None
    headers: Mapping[str, str] | None = None
    json: Any = None
    body: MultipartBody | None = None
    timeout: float = DEFAULT_HTTP_TIMEOUT
    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    response_type: ResponseType = "json"


@dataclass(frozen=True)
class RequestInfo:
    """Passed to ``RequestHooks.on_request`` before each attempt."""

    method: str
    url: str
    headers: dict[str, str]
    timeout: float
    attempt: int = 0


@dataclass(frozen=True)
class ResponseInfo:
    """Passed to ``RequestHooks.on_response`` after each attempt."""

    method: str
    url: str
    duration: float
    status: int | None = None
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None
    attempt: int = 0


@dataclass(frozen=True)
class RequestHooks:
    """Optional observers for outgoing requests and their responses."""

    on_request: Callable[[RequestInfo], None] | None = None
    on_response: Callable[[ResponseInfo], None] | None = None
