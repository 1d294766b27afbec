"""Socket API client."""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import replace
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from socket_sdk._cache import TtlCache, ttl_for_endpoint
from socket_sdk._headers import basic_auth_header, build_user_agent
from socket_sdk._http import HttpClient, encode_query
from socket_sdk._multipart import MultipartBody, MultipartBuilder, json_part, parts_for_filepaths
from socket_sdk._ndjson import NdjsonLineError, NdjsonStreamError
from socket_sdk.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_CACHE_TTL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
    MAX_API_TOKEN_LENGTH,
    MAX_HTTP_TIMEOUT,
    MIN_HTTP_TIMEOUT,
    SOCKET_API_TOKENS_URL,
)
from socket_sdk.errors import ConfigurationError
from socket_sdk.types.config import RequestConfig, RequestHooks, ResponseType, RetryPolicy
from socket_sdk.types.results import ApiResult, ErrorDescription, err, ok

logger = logging.getLogger(__name__)

Component = Mapping[str, Any] | str

_CHUNK_DONE = object()


def validate_api_token(api_token: str) -> str:
    """Return *api_token* stripped of surrounding whitespace, or raise."""
    if not isinstance(api_token, str):
        raise ConfigurationError(f"API token must be a string, got {type(api_token).__name__}")
    token = api_token.strip()
    if not token:
        raise ConfigurationError(
            f"Socket API token is required.\n-> Create one at {SOCKET_API_TOKENS_URL}"
        )
    if len(token) > MAX_API_TOKEN_LENGTH:
        raise ConfigurationError(
            f"API token exceeds maximum length of {MAX_API_TOKEN_LENGTH} characters"
        )
    return token


def _org_path(org_slug: str, *segments: str) -> str:
    return "/".join(["orgs", quote(org_slug, safe=""), *(quote(s, safe="") for s in segments)])


def _component(value: Component) -> dict[str, Any]:
    return {"purl": value} if isinstance(value, str) else dict(value)


class SocketSdk:
    """Async client for the Socket security-analysis API.

    Every API method returns an :class:`ApiResult`; network failures,
    error statuses and malformed bodies never raise.  Invalid arguments
    raise :class:`ConfigurationError` before any request is made.

    Use as an async context manager, or call :meth:`close` when done::

        async with SocketSdk(token, retries=2) as sdk:
            result = await sdk.get_quota()
            if result.success:
                print(result.data["quota"])
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        user_agent: str | None = None,
        agent: httpx.AsyncBaseTransport | None = None,
        cache: bool = False,
        cache_ttl: float | Mapping[str, float] = DEFAULT_CACHE_TTL,
        hooks: RequestHooks | None = None,
    ) -> None:
        token = validate_api_token(api_token)
        if not MIN_HTTP_TIMEOUT <= timeout <= MAX_HTTP_TIMEOUT:
            raise ConfigurationError(
                f"timeout must be between {MIN_HTTP_TIMEOUT:g}s and "
                f"{MAX_HTTP_TIMEOUT:g}s, got {timeout!r}"
            )
        if retries < 0:
            raise ConfigurationError(f"retries must be >= 0, got {retries!r}")
        if retry_delay < 0:
            raise ConfigurationError(f"retry_delay must be >= 0, got {retry_delay!r}")

        self._defaults = RequestConfig(
            method="GET",
            path="",
            timeout=timeout,
            retries=retries,
            retry_delay=retry_delay,
        )
        self._http = HttpClient(
            base_url,
            {
                "Authorization": basic_auth_header(token),
                "User-Agent": build_user_agent(user_agent),
            },
            timeout=timeout,
            transport=agent,
            retry_policy=RetryPolicy(retries=retries, retry_delay=retry_delay),
            hooks=hooks,
        )
        self._cache_ttl = cache_ttl
        self._cache = TtlCache(ttl_for_endpoint(cache_ttl, None)) if cache else None

    @classmethod
    def from_env(cls, **kwargs: Any) -> SocketSdk:
        """Create a client from environment variables.

        Reads SOCKET_API_TOKEN (falling back to SOCKET_SECURITY_API_KEY) and
        the optional SOCKET_API_BASE_URL, SOCKET_API_TIMEOUT (seconds) and
        SOCKET_API_RETRIES.  Keyword arguments take precedence.
        """
        token = os.environ.get("SOCKET_API_TOKEN") or os.environ.get("SOCKET_SECURITY_API_KEY")
        if not token:
            raise ConfigurationError(
                "Set SOCKET_API_TOKEN to your Socket API token.\n"
                f"-> Create one at {SOCKET_API_TOKENS_URL}"
            )
        if os.environ.get("SOCKET_API_BASE_URL"):
            kwargs.setdefault("base_url", os.environ["SOCKET_API_BASE_URL"])
        if os.environ.get("SOCKET_API_TIMEOUT"):
            kwargs.setdefault("timeout", _env_number("SOCKET_API_TIMEOUT", float))
        if os.environ.get("SOCKET_API_RETRIES"):
            kwargs.setdefault("retries", _env_number("SOCKET_API_RETRIES", int))
        return cls(token, **kwargs)

    @property
    def base_url(self) -> str:
        return self._http.base_url

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        json: Any = None,
        body: MultipartBody | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        response_type: ResponseType = "json",
    ) -> ApiResult[Any]:
        """Perform one API call; per-call arguments override client defaults."""
        overrides: dict[str, Any] = {}
        if timeout is not None:
            overrides["timeout"] = timeout
        if retries is not None:
            overrides["retries"] = retries
        if retry_delay is not None:
            overrides["retry_delay"] = retry_delay
        config = replace(
            self._defaults,
            method=method,
            path=path,
            query=query,
            json=json,
            body=body,
            headers=headers,
            response_type=response_type,
            **overrides,
        )
        return await self._http.request(config)

    async def get_api(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        response_type: ResponseType = "json",
    ) -> ApiResult[Any]:
        """GET an arbitrary API path."""
        return await self.request("GET", path, query=query, response_type=response_type)

    async def send_api(
        self,
        path: str,
        *,
        json: Any = None,
        method: str = "POST",
    ) -> ApiResult[Any]:
        """Send a JSON body to an arbitrary API path."""
        return await self.request(method, path, json=json)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_quota(self) -> ApiResult[Any]:
        """Remaining API quota for the current token."""
        return await self._get_json("quota", endpoint="get_quota")

    async def get_organizations(self) -> ApiResult[Any]:
        return await self._get_json("organizations", endpoint="get_organizations")

    async def batch_package_fetch(
        self,
        components: Iterable[Component],
        query: Mapping[str, Any] | None = None,
    ) -> ApiResult[list[dict[str, Any]]]:
        """Look up many packages at once and collect the artifacts into a list.

        *components* are PURL strings or ``{"purl": ...}`` mappings.
        """
        result = await self._post_purl([_component(c) for c in components], query)
        if not result.success:
            return result
        artifacts: list[dict[str, Any]] = []
        async for item in result.data:
            if isinstance(item, NdjsonStreamError):
                return err(result.status, ErrorDescription(message=item.message), item.cause)
            if isinstance(item, dict):
                artifacts.append(item)
        return ok(result.status, artifacts)

    async def batch_package_stream(
        self,
        components: Iterable[Component],
        *,
        chunk_size: int = 100,
        concurrency_limit: int = 10,
        query: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ApiResult[dict[str, Any]]]:
        """Yield one result per artifact as chunks of *components* are answered.

        At most *concurrency_limit* chunk requests are in flight at once.  A
        chunk whose request fails yields a single failure result.  Results
        from different chunks interleave in arrival order.
        """
        if chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {chunk_size!r}")
        if concurrency_limit < 1:
            raise ConfigurationError(f"concurrency_limit must be >= 1, got {concurrency_limit!r}")

        items = [_component(c) for c in components]
        chunks = [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]
        if not chunks:
            return

        queue: asyncio.Queue[Any] = asyncio.Queue()
        semaphore = asyncio.Semaphore(concurrency_limit)

        async def run_chunk(chunk: list[dict[str, Any]]) -> None:
            try:
                async with semaphore:
                    async for result in self._stream_chunk(chunk, query):
                        await queue.put(result)
            finally:
                await queue.put(_CHUNK_DONE)

        tasks = [asyncio.create_task(run_chunk(chunk)) for chunk in chunks]
        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if item is _CHUNK_DONE:
                    remaining -= 1
                    continue
                yield item
            await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def upload_manifest_files(
        self,
        org_slug: str,
        filepaths: Iterable[str | os.PathLike[str]],
        *,
        paths_relative_to: str | os.PathLike[str] = ".",
    ) -> ApiResult[Any]:
        """Upload manifest files for *org_slug*.

        Raises :class:`UploadError` before sending anything if a file is
        missing or unreadable.
        """
        body = await self._build_upload(filepaths, paths_relative_to)
        return await self.request("POST", _org_path(org_slug, "upload-manifest-files"), body=body)

    async def create_full_scan(
        self,
        org_slug: str,
        filepaths: Iterable[str | os.PathLike[str]],
        *,
        paths_relative_to: str | os.PathLike[str] = ".",
        issue_rules: Mapping[str, bool] | None = None,
        **query: Any,
    ) -> ApiResult[Any]:
        """Create a full scan from manifest files.

        Extra keyword arguments (``repo``, ``branch``, ``commit_message`` ...)
        are sent as query parameters.  *issue_rules* travels as a JSON part
        after the files.
        """
        extra = [json_part(dict(issue_rules), "issueRules.json")] if issue_rules else []
        body = await self._build_upload(filepaths, paths_relative_to, extra)
        return await self.request("POST", _org_path(org_slug, "full-scans"), query=query, body=body)

    async def delete_full_scan(self, org_slug: str, scan_id: str) -> ApiResult[Any]:
        return await self.request("DELETE", _org_path(org_slug, "full-scans", scan_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release pooled connections."""
        await self._http.aclose()
        if self._cache is not None:
            self._cache.clear()

    async def __aenter__(self) -> SocketSdk:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        endpoint: str | None = None,
    ) -> ApiResult[Any]:
        if self._cache is None:
            return await self.request("GET", path, query=query)

        key = f"{path}?{urlencode(encode_query(query) or [])}"
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("cache hit for %s", key)
            return cached
        result = await self.request("GET", path, query=query)
        if result.success:
            self._cache.set(key, result, ttl_for_endpoint(self._cache_ttl, endpoint))
        return result

    async def _post_purl(
        self,
        components: list[dict[str, Any]],
        query: Mapping[str, Any] | None,
    ) -> ApiResult[Any]:
        return await self.request(
            "POST",
            "purl",
            query=query,
            json={"components": components},
            response_type="ndjson",
        )

    async def _stream_chunk(
        self,
        chunk: list[dict[str, Any]],
        query: Mapping[str, Any] | None,
    ) -> AsyncIterator[ApiResult[dict[str, Any]]]:
        result = await self._post_purl(chunk, query)
        if not result.success:
            yield result
            return
        async for item in result.data:
            if isinstance(item, NdjsonStreamError):
                yield err(result.status, ErrorDescription(message=item.message), item.cause)
                return
            if isinstance(item, NdjsonLineError):
                continue
            if isinstance(item, dict):
                yield ok(result.status, item)

    async def _build_upload(
        self,
        filepaths: Iterable[str | os.PathLike[str]],
        base_path: str | os.PathLike[str],
        extra: Iterable[Any] = (),
    ) -> MultipartBody:
        parts = parts_for_filepaths(filepaths, base_path)
        if not parts:
            raise ConfigurationError("No files to upload")
        builder = MultipartBuilder()
        for part in [*parts, *extra]:
            builder.add_part(part)
        return await asyncio.to_thread(builder.build)


def _env_number(name: str, kind: type) -> Any:
    raw = os.environ[name]
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", cause=exc) from exc
