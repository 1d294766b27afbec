"""Request dispatcher: httpx calls in, :class:`ApiResult` values out."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Mapping
from dataclasses import replace
from functools import cached_property
from typing import Any

import httpx

from socket_sdk._describe import describe_error, describe_invalid_json, generic_message
from socket_sdk._headers import sanitize_headers
from socket_sdk._ndjson import NdjsonItem, NdjsonStreamError, decode_ndjson
from socket_sdk._retry import parse_retry_after, with_retry
from socket_sdk.constants import DEFAULT_HTTP_TIMEOUT
from socket_sdk.errors import (
    ApiStatusError,
    ConfigurationError,
    DecodeError,
    NetworkError,
    RequestTimeoutError,
    SDKError,
    error_from_status_code,
)
from socket_sdk.types.config import (
    RequestConfig,
    RequestHooks,
    RequestInfo,
    ResponseInfo,
    RetryPolicy,
)
from socket_sdk.types.results import ApiResult, ErrorDescription, err, ok

logger = logging.getLogger(__name__)


def normalize_base_url(base_url: str) -> str:
    """Ensure *base_url* ends with a slash so relative paths join beneath it."""
    return base_url if base_url.endswith("/") else f"{base_url}/"


def encode_query(query: Mapping[str, Any] | None) -> list[tuple[str, str]] | None:
    """Flatten *query* into ordered pairs.

    ``None`` and empty-string values are dropped, booleans become
    ``true``/``false`` and list values repeat the key.
    """
    if not query:
        return None
    params: list[tuple[str, str]] = []
    for key, value in query.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None or item == "":
                continue
            if isinstance(item, bool):
                params.append((key, "true" if item else "false"))
            else:
                params.append((key, str(item)))
    return params


class HttpClient:
    """Thin async wrapper around :mod:`httpx` that never raises for remote failures.

    Every call goes through :meth:`request`.  Non-2xx statuses, transport
    errors and undecodable bodies come back as :class:`ApiFailure`; only
    :class:`ConfigurationError` (caller misuse) is raised.
    """

    def __init__(
        self,
        base_url: str,
        headers: Mapping[str, str],
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        hooks: RequestHooks | None = None,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._headers = dict(headers)
        self._timeout = timeout
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy()
        self._hooks = hooks

    @property
    def base_url(self) -> str:
        return self._base_url

    @cached_property
    def _client(self) -> httpx.AsyncClient:
        # Created on first use, exactly once per HttpClient
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            transport=self._transport,
            timeout=httpx.Timeout(self._timeout),
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def request(self, config: RequestConfig) -> ApiResult[Any]:
        """Perform *config* with retries and decode the outcome."""
        if config.json is not None and config.body is not None:
            raise ConfigurationError("Provide either 'json' or 'body', not both")
        if config.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {config.timeout!r}")

        policy = replace(
            self._retry_policy,
            retries=config.retries,
            retry_delay=config.retry_delay,
        )
        attempts = 0

        async def attempt() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return await self._attempt(config, attempts - 1)

        try:
            response = await with_retry(attempt, policy)
        except ConfigurationError:
            raise
        except ApiStatusError as exc:
            description = describe_error(
                exc.body,
                exc.status_code,
                reason=exc.reason,
                retry_after=exc.headers.get("retry-after"),
            )
            return err(exc.status_code, description, exc, fatal=exc.status_code >= 500)
        except DecodeError as exc:
            return err(exc.status_code, ErrorDescription(message=str(exc)), exc)
        except SDKError as exc:
            return err(0, ErrorDescription(message=str(exc)), exc)

        return self._decode(response, config)

    async def _attempt(self, config: RequestConfig, attempt: int) -> httpx.Response:
        """One HTTP attempt; raises SDK errors for anything but a 2xx."""
        request = self._build_request(config)
        self._emit_request(request, config, attempt)
        logger.debug("%s %s (attempt %d)", request.method, request.url, attempt + 1)
        start = time.monotonic()

        try:
            response = await asyncio.wait_for(self._send(request, config), timeout=config.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            error: SDKError = RequestTimeoutError(
                f"Request timed out after {config.timeout:g}s: {request.method} {request.url}",
                cause=exc,
            )
            self._emit_response(request, start, attempt, error=error)
            raise error from exc
        except DecodeError as exc:
            self._emit_response(request, start, attempt, error=exc)
            raise
        except httpx.RequestError as exc:
            error = NetworkError(
                f"Network error: {request.method} {request.url}: {exc or type(exc).__name__}",
                cause=exc,
            )
            self._emit_response(request, start, attempt, error=error)
            raise error from exc

        self._emit_response(request, start, attempt, response=response)

        if response.is_success:
            return response

        headers = {k.lower(): v for k, v in response.headers.items()}
        raise error_from_status_code(
            response.status_code,
            generic_message(response.status_code, response.reason_phrase),
            reason=response.reason_phrase,
            body=response.text,
            headers=headers,
            retry_after=parse_retry_after(headers.get("retry-after")),
        )

    async def _send(self, request: httpx.Request, config: RequestConfig) -> httpx.Response:
        response = await self._client.send(request, stream=True)
        # NDJSON success bodies stay open for the caller to consume lazily
        if config.response_type != "ndjson" or not response.is_success:
            try:
                await response.aread()
            except httpx.DecodingError as exc:
                raise DecodeError(
                    f"Response body could not be decoded: {exc}",
                    status_code=response.status_code,
                    cause=exc,
                ) from exc
            finally:
                await response.aclose()
        return response

    def _build_request(self, config: RequestConfig) -> httpx.Request:
        headers: dict[str, str] = dict(config.headers or {})
        content: AsyncIterator[bytes] | None = None
        if config.body is not None:
            headers.update(config.body.headers)
            content = config.body.stream()
        return self._client.build_request(
            config.method.upper(),
            config.path,
            params=encode_query(config.query),
            headers=headers,
            json=config.json,
            content=content,
            timeout=httpx.Timeout(config.timeout),
        )

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def _decode(self, response: httpx.Response, config: RequestConfig) -> ApiResult[Any]:
        status = response.status_code
        if config.response_type == "ndjson":
            return ok(status, self._iter_ndjson(response))
        if config.response_type == "response":
            return ok(status, response)
        if config.response_type == "text":
            return ok(status, response.text)

        text = response.text
        if text == "":
            logger.debug("empty response body treated as {}")
            return ok(status, {})
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as exc:
            return err(
                status,
                describe_invalid_json(text, exc),
                DecodeError("Invalid JSON response", status_code=status, body=text, cause=exc),
            )
        return ok(status, data)

    @staticmethod
    async def _iter_ndjson(response: httpx.Response) -> AsyncIterator[NdjsonItem]:
        truncated: NdjsonStreamError | None = None
        try:
            async for item in decode_ndjson(response.aiter_bytes()):
                yield item
        except httpx.HTTPError as exc:
            logger.debug("NDJSON stream ended early: %s", exc)
            prefix = (
                "Response body could not be decoded"
                if isinstance(exc, httpx.DecodingError)
                else "Stream truncated"
            )
            truncated = NdjsonStreamError(
                message=f"{prefix}: {exc or type(exc).__name__}", cause=exc
            )
        finally:
            await response.aclose()
        if truncated is not None:
            yield truncated

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _emit_request(self, request: httpx.Request, config: RequestConfig, attempt: int) -> None:
        if self._hooks is None or self._hooks.on_request is None:
            return
        info = RequestInfo(
            method=request.method,
            url=str(request.url),
            headers=sanitize_headers(request.headers),
            timeout=config.timeout,
            attempt=attempt,
        )
        try:
            self._hooks.on_request(info)
        except Exception:
            logger.debug("on_request hook raised; ignoring", exc_info=True)

    def _emit_response(
        self,
        request: httpx.Request,
        start: float,
        attempt: int,
        *,
        response: httpx.Response | None = None,
        error: Exception | None = None,
    ) -> None:
        if self._hooks is None or self._hooks.on_response is None:
            return
        info = ResponseInfo(
            method=request.method,
            url=str(request.url),
            duration=time.monotonic() - start,
            status=response.status_code if response is not None else None,
            reason=response.reason_phrase if response is not None else "",
            headers=sanitize_headers(response.headers) if response is not None else {},
            error=error,
            attempt=attempt,
        )
        try:
            self._hooks.on_response(info)
        except Exception:
            logger.debug("on_response hook raised; ignoring", exc_info=True)

    async def aclose(self) -> None:
        """Close the connection pool if one was created.

        A caller-supplied transport is left open for its owner to close.
        """
        if "_client" not in self.__dict__:
            return
        client = self.__dict__.pop("_client")
        if self._transport is None:
            await client.aclose()
