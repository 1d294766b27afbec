"""Retry logic with exponential backoff."""
from __future__ import annotations

import asyncio
import email.utils
import logging
import random
import time
from collections.abc import Awaitable
from typing import Callable, TypeVar

from socket_sdk.errors import AccessDeniedError, AuthenticationError, SDKError
from socket_sdk.types.config import RetryPolicy

T = TypeVar("T")

logger = logging.getLogger(__name__)


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """Compute the delay before retry number *attempt* (zero-indexed).

    ``retry_delay * backoff_multiplier ** attempt``, scaled up by at most 50%
    when jitter is on and clamped to *policy.max_delay* when one is set.
    """
    delay = policy.retry_delay * (policy.backoff_multiplier ** attempt)
    if policy.jitter:
        delay *= random.uniform(1.0, 1.5)
    if policy.max_delay is not None:
        delay = min(delay, policy.max_delay)
    return delay


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    delay = when.timestamp() - time.time()
    return delay if delay > 0 else None


def is_retryable(exc: BaseException) -> bool:
    """Whether *exc* is a transient failure worth another attempt."""
    if isinstance(exc, (AuthenticationError, AccessDeniedError)):
        return False
    return bool(getattr(exc, "retryable", False))


async def with_retry(fn: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
    """Await *fn*, retrying according to *policy* on transient failure.

    Only :class:`SDKError` subclasses are considered; anything else is a bug
    and propagates immediately.  When the budget is exhausted the last error
    is re-raised.
    """
    attempts = max(policy.retries, 0) + 1

    for attempt in range(attempts):
        try:
            return await fn()
        except SDKError as exc:
            if not is_retryable(exc):
                raise

            if attempt + 1 >= attempts:
                logger.debug("giving up after %d attempt(s): %s", attempt + 1, exc)
                raise

            retry_after: float | None = getattr(exc, "retry_after", None)
            if retry_after is not None and policy.max_delay is not None and retry_after > policy.max_delay:
                raise

            delay = retry_after if retry_after is not None else calculate_delay(attempt, policy)

            logger.debug(
                "attempt %d failed (%s); retrying in %.3fs", attempt + 1, exc, delay
            )
            if policy.on_retry is not None:
                policy.on_retry(attempt, exc, delay)

            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
