"""Tests for the request dispatcher."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from socket_sdk._http import HttpClient, encode_query, normalize_base_url
from socket_sdk._multipart import MultipartBuilder
from socket_sdk._ndjson import NdjsonLineError, NdjsonStreamError
from socket_sdk.errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
)
from socket_sdk.types.config import RequestConfig, RequestHooks, RequestInfo, ResponseInfo

BASE_URL = "https://api.test.dev/v0"

Handler = Callable[[httpx.Request], Any]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(handler: Handler, **kwargs: Any) -> HttpClient:
    return HttpClient(
        BASE_URL,
        {"Authorization": "Basic dG9rZW46", "User-Agent": "test-agent"},
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _config(**kwargs: Any) -> RequestConfig:
    kwargs.setdefault("method", "GET")
    kwargs.setdefault("path", "quota")
    kwargs.setdefault("timeout", 5.0)
    kwargs.setdefault("retry_delay", 0.001)
    return RequestConfig(**kwargs)


def _sequence(*responses: httpx.Response) -> tuple[Handler, list[httpx.Request]]:
    """Handler that replays *responses* in order and records requests."""
    seen: list[httpx.Request] = []
    it = iter(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return next(it)

    return handler, seen


class BrokenStream(httpx.AsyncByteStream):
    def __init__(self, *chunks: bytes) -> None:
        self._chunks = chunks

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")


# ---------------------------------------------------------------------------
# URL and query construction
# ---------------------------------------------------------------------------


def test_normalize_base_url() -> None:
    assert normalize_base_url("https://x.dev/v0") == "https://x.dev/v0/"
    assert normalize_base_url("https://x.dev/v0/") == "https://x.dev/v0/"


def test_encode_query_drops_empty_values() -> None:
    assert encode_query({"a": "1", "b": None, "c": "", "d": 0}) == [("a", "1"), ("d", "0")]


def test_encode_query_booleans_and_lists() -> None:
    assert encode_query({"compact": True, "alerts": False, "purl": ["x", "y"]}) == [
        ("compact", "true"),
        ("alerts", "false"),
        ("purl", "x"),
        ("purl", "y"),
    ]


def test_encode_query_empty() -> None:
    assert encode_query(None) is None
    assert encode_query({}) is None


@pytest.mark.asyncio
async def test_path_joined_under_base_url() -> None:
    handler, seen = _sequence(httpx.Response(200, json={}))
    await _client(handler).request(_config(path="orgs/acme/full-scans", query={"repo": "web", "branch": None}))
    assert str(seen[0].url) == "https://api.test.dev/v0/orgs/acme/full-scans?repo=web"


@pytest.mark.asyncio
async def test_default_headers_sent() -> None:
    handler, seen = _sequence(httpx.Response(200, json={}))
    await _client(handler).request(_config(headers={"X-Extra": "1"}))
    assert seen[0].headers["authorization"] == "Basic dG9rZW46"
    assert seen[0].headers["user-agent"] == "test-agent"
    assert seen[0].headers["x-extra"] == "1"


@pytest.mark.asyncio
async def test_json_body() -> None:
    handler, seen = _sequence(httpx.Response(200, json={"ok": True}))
    await _client(handler).request(_config(method="post", path="purl", json={"components": []}))
    assert seen[0].method == "POST"
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == {"components": []}


@pytest.mark.asyncio
async def test_json_and_body_together_rejected() -> None:
    body = MultipartBuilder().add_bytes("a", b"x").build()
    client = _client(lambda request: httpx.Response(200))
    with pytest.raises(ConfigurationError):
        await client.request(_config(json={}, body=body))


# ---------------------------------------------------------------------------
# Success decoding
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_json_success() -> None:
    handler, _ = _sequence(httpx.Response(200, json={"quota": 42}))
    result = await _client(handler).request(_config())
    assert result.success is True
    assert result.status == 200
    assert result.data == {"quota": 42}


@pytest.mark.asyncio
async def test_json_array_success() -> None:
    handler, _ = _sequence(httpx.Response(200, json=[1, 2, 3]))
    result = await _client(handler).request(_config())
    assert result.data == [1, 2, 3]


@pytest.mark.asyncio
async def test_empty_body_is_empty_object() -> None:
    handler, _ = _sequence(httpx.Response(204))
    result = await _client(handler).request(_config(method="DELETE"))
    assert result.success is True
    assert result.status == 204
    assert result.data == {}


@pytest.mark.asyncio
async def test_invalid_json_is_failure() -> None:
    handler, seen = _sequence(httpx.Response(200, text="<html>oops</html>"))
    result = await _client(handler).request(_config(retries=3))
    assert result.success is False
    assert result.status == 200
    assert result.error.message == "Server returned invalid JSON"
    assert result.error.details is not None
    assert result.error.details["preview"] == "<html>oops</html>"
    assert isinstance(result.cause, DecodeError)
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_json_null_is_success_with_none_data() -> None:
    handler, _ = _sequence(httpx.Response(200, content=b"null"))
    result = await _client(handler).request(_config())
    assert result.success is True
    assert result.data is None
    assert result.error is None


@pytest.mark.asyncio
async def test_undecodable_content_encoding_is_failure() -> None:
    responses: list[ResponseInfo] = []
    handler, seen = _sequence(
        httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip"))
    )
    client = _client(handler, hooks=RequestHooks(on_response=responses.append))
    result = await client.request(_config(retries=3))
    assert result.success is False
    assert result.status == 200
    assert result.error.message.startswith("Response body could not be decoded")
    assert isinstance(result.cause, DecodeError)
    assert isinstance(result.cause.cause, httpx.DecodingError)
    assert len(seen) == 1
    assert isinstance(responses[0].error, DecodeError)


@pytest.mark.asyncio
async def test_text_response_type() -> None:
    handler, _ = _sequence(httpx.Response(200, text="plain body"))
    result = await _client(handler).request(_config(response_type="text"))
    assert result.data == "plain body"


@pytest.mark.asyncio
async def test_raw_response_type() -> None:
    handler, _ = _sequence(httpx.Response(200, content=b"\x00\x01", headers={"x-id": "7"}))
    result = await _client(handler).request(_config(response_type="response"))
    assert isinstance(result.data, httpx.Response)
    assert result.data.content == b"\x00\x01"
    assert result.data.headers["x-id"] == "7"


# ---------------------------------------------------------------------------
# NDJSON
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ndjson_lazy_sequence() -> None:
    body = b'{"purl":"pkg:npm/a@1"}\nnot json\n{"purl":"pkg:npm/b@1"}\n'
    handler, _ = _sequence(httpx.Response(200, content=body))
    result = await _client(handler).request(_config(method="POST", path="purl", response_type="ndjson"))
    assert result.success is True
    items = [item async for item in result.data]
    assert items[0] == {"purl": "pkg:npm/a@1"}
    assert isinstance(items[1], NdjsonLineError)
    assert items[2] == {"purl": "pkg:npm/b@1"}


@pytest.mark.asyncio
async def test_ndjson_error_status_is_failure() -> None:
    handler, _ = _sequence(httpx.Response(400, json={"error": {"message": "Bad purl"}}))
    result = await _client(handler).request(_config(response_type="ndjson"))
    assert result.success is False
    assert result.error.message == "Bad purl"


@pytest.mark.asyncio
async def test_ndjson_truncated_stream() -> None:
    stream = BrokenStream(b'{"a":1}\n{"b":')
    handler, _ = _sequence(httpx.Response(200, stream=stream))
    result = await _client(handler).request(_config(response_type="ndjson"))
    items = [item async for item in result.data]
    assert items[0] == {"a": 1}
    assert isinstance(items[-1], NdjsonStreamError)
    assert isinstance(items[-1].cause, httpx.ReadError)


@pytest.mark.asyncio
async def test_ndjson_undecodable_content_encoding_ends_stream() -> None:
    handler, _ = _sequence(
        httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip"))
    )
    result = await _client(handler).request(_config(response_type="ndjson"))
    assert result.success is True
    items = [item async for item in result.data]
    assert len(items) == 1
    assert isinstance(items[0], NdjsonStreamError)
    assert items[0].message.startswith("Response body could not be decoded")
    assert isinstance(items[0].cause, httpx.DecodingError)


# ---------------------------------------------------------------------------
# Error statuses
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_not_found_is_failure_with_description() -> None:
    handler, seen = _sequence(
        httpx.Response(404, json={"error": {"message": "Org not found", "details": "acme"}})
    )
    result = await _client(handler).request(_config(retries=3))
    assert result.success is False
    assert result.status == 404
    assert result.error.message == "Org not found"
    assert result.error.details == {"details": "acme"}
    assert result.error.guidance is not None
    assert isinstance(result.cause, NotFoundError)
    assert result.fatal is False
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_unauthorized_never_retried() -> None:
    handler, seen = _sequence(*(httpx.Response(401, text="") for _ in range(6)))
    result = await _client(handler).request(_config(retries=5))
    assert result.status == 401
    assert isinstance(result.cause, AuthenticationError)
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_server_errors_retried_then_fatal() -> None:
    handler, seen = _sequence(*(httpx.Response(503, text="") for _ in range(3)))
    result = await _client(handler).request(_config(retries=2))
    assert result.success is False
    assert result.status == 503
    assert result.fatal is True
    assert isinstance(result.cause, ServerError)
    assert result.error.message == "Socket API request failed (503): Service Unavailable"
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_server_error_then_success() -> None:
    handler, seen = _sequence(
        httpx.Response(503),
        httpx.Response(503),
        httpx.Response(200, json={"quota": 42}),
    )
    result = await _client(handler).request(_config(retries=2))
    assert result.success is True
    assert result.data == {"quota": 42}
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after() -> None:
    handler, seen = _sequence(
        httpx.Response(429, headers={"Retry-After": "0"}),
        httpx.Response(200, json={}),
    )
    result = await _client(handler).request(_config(retries=1))
    assert result.success is True
    assert len(seen) == 2


# ---------------------------------------------------------------------------
# Transport failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_network_error_is_status_zero() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    result = await _client(handler).request(_config(retries=2))
    assert result.success is False
    assert result.status == 0
    assert isinstance(result.cause, NetworkError)
    assert "connection refused" in result.error.message
    assert calls == 3


@pytest.mark.asyncio
async def test_network_error_then_success() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ReadError("reset", request=request)
        return httpx.Response(200, json={"ok": True})

    result = await _client(handler).request(_config(retries=1))
    assert result.success is True
    assert calls == 2


@pytest.mark.asyncio
async def test_timeout_aborts_attempt() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={})

    result = await _client(handler).request(_config(timeout=0.05))
    assert result.success is False
    assert result.status == 0
    assert isinstance(result.cause, RequestTimeoutError)
    assert "timed out" in result.error.message


@pytest.mark.asyncio
async def test_timeout_only_affects_its_own_call() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("slow"):
            await asyncio.sleep(5)
        return httpx.Response(200, json={"path": request.url.path})

    client = _client(handler)
    slow, fast = await asyncio.gather(
        client.request(_config(path="slow", timeout=0.05)),
        client.request(_config(path="fast", timeout=5.0)),
    )
    assert slow.success is False
    assert fast.success is True


# ---------------------------------------------------------------------------
# Multipart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_multipart_body_resent_on_retry(tmp_path: Path) -> None:
    manifest = tmp_path / "package.json"
    manifest.write_text('{"name":"demo"}')
    body = MultipartBuilder().add_file("package.json", manifest).build()
    received: list[bytes] = []
    statuses = iter([503, 200])

    async def handler(request: httpx.Request) -> httpx.Response:
        received.append(await request.aread())
        assert request.headers["content-type"] == body.content_type
        assert request.headers["content-length"] == str(body.content_length)
        return httpx.Response(next(statuses), json={"id": "scan"})

    result = await _client(handler).request(_config(method="POST", path="upload", body=body, retries=1))
    assert result.success is True
    assert len(received) == 2
    assert received[0] == received[1]
    assert b'{"name":"demo"}' in received[0]
    assert len(received[0]) == body.content_length


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_hooks_called_per_attempt() -> None:
    requests: list[RequestInfo] = []
    responses: list[ResponseInfo] = []
    hooks = RequestHooks(on_request=requests.append, on_response=responses.append)
    handler, _ = _sequence(
        httpx.Response(503),
        httpx.Response(200, json={}, headers={"Set-Cookie": "session=1"}),
    )
    await _client(handler, hooks=hooks).request(_config(retries=1))

    assert [r.attempt for r in requests] == [0, 1]
    assert requests[0].method == "GET"
    assert requests[0].url == "https://api.test.dev/v0/quota"
    assert requests[0].headers["authorization"] == "[REDACTED]"
    assert [r.status for r in responses] == [503, 200]
    assert responses[1].headers["set-cookie"] == "[REDACTED]"
    assert all(r.duration >= 0 for r in responses)


@pytest.mark.asyncio
async def test_hooks_see_transport_errors() -> None:
    responses: list[ResponseInfo] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    client = _client(handler, hooks=RequestHooks(on_response=responses.append))
    await client.request(_config())
    assert responses[0].status is None
    assert isinstance(responses[0].error, NetworkError)


@pytest.mark.asyncio
async def test_hook_errors_do_not_break_requests() -> None:
    def explode(info: Any) -> None:
        raise RuntimeError("hook bug")

    handler, _ = _sequence(httpx.Response(200, json={"ok": True}))
    client = _client(handler, hooks=RequestHooks(on_request=explode, on_response=explode))
    result = await client.request(_config())
    assert result.success is True


@pytest.mark.asyncio
async def test_hook_errors_logged_at_debug(caplog: pytest.LogCaptureFixture) -> None:
    def explode(info: Any) -> None:
        raise RuntimeError("hook bug")

    caplog.set_level(logging.DEBUG, logger="socket_sdk._http")
    handler, _ = _sequence(httpx.Response(200, json={}))
    client = _client(handler, hooks=RequestHooks(on_request=explode, on_response=explode))
    await client.request(_config())

    hook_records = [r for r in caplog.records if "hook raised" in r.getMessage()]
    assert [r.levelno for r in hook_records] == [logging.DEBUG, logging.DEBUG]
    assert all(r.exc_info is not None for r in hook_records)
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_client_created_lazily_once() -> None:
    handler, _ = _sequence(httpx.Response(200, json={}), httpx.Response(200, json={}))
    client = _client(handler)
    assert "_client" not in client.__dict__
    await client.request(_config())
    first = client._client
    await client.request(_config())
    assert client._client is first


@pytest.mark.asyncio
async def test_aclose_without_requests() -> None:
    client = _client(lambda request: httpx.Response(200))
    await client.aclose()
    assert "_client" not in client.__dict__


@pytest.mark.asyncio
async def test_aclose_owned_pool() -> None:
    client = HttpClient(BASE_URL, {})
    inner = client._client
    await client.aclose()
    assert inner.is_closed
