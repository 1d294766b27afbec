"""Turn a failed response body into an :class:`ErrorDescription`."""
from __future__ import annotations

import json
from typing import Any

import httpx

from socket_sdk.constants import SOCKET_API_TOKENS_URL, SOCKET_CONTACT_URL, SOCKET_DASHBOARD_URL
from socket_sdk.types.results import ErrorDescription

# Plain-text bodies longer than this are not folded into the message
_MAX_INLINE_BODY = 200

_GUIDANCE: dict[int, tuple[str, ...]] = {
    400: (
        "-> Bad request. Invalid parameters or request body.",
        "-> Check: All required parameters are provided and correctly formatted.",
        "-> Verify: Package URLs (PURLs) follow correct format.",
    ),
    401: (
        "-> Authentication failed. API token is invalid or expired.",
        "-> Check: Your API token is correct and active.",
        f"-> Generate a new token at: {SOCKET_API_TOKENS_URL}",
    ),
    403: (
        "-> Authorization failed. Insufficient permissions.",
        "-> Check: Your API token has required permissions for this operation.",
        "-> Check: You have access to the specified organization/repository.",
        f"-> Verify: Organization settings at {SOCKET_DASHBOARD_URL}",
    ),
    404: (
        "-> Resource not found.",
        "-> Verify: Package name, version, or resource ID is correct.",
        "-> Check: Organization or repository exists and is accessible.",
    ),
    413: (
        "-> Payload too large. Request exceeds size limits.",
        "-> Try: Reduce the number of files or packages in a single request.",
        "-> Try: Use batch operations with smaller chunks.",
    ),
}


def generic_message(status: int, reason: str | None = None) -> str:
    """Status-based fallback message."""
    phrase = reason or httpx.codes.get_reason_phrase(status) or "No status message"
    return f"Socket API request failed ({status}): {phrase}"


def guidance_for(status: int, retry_after: str | None = None) -> str | None:
    """Actionable hint for well-known failure statuses."""
    if status == 429:
        retry_msg = f"Retry after {retry_after} seconds." if retry_after else "Wait before retrying."
        return "\n".join(
            (
                "-> Rate limit exceeded. Too many requests.",
                f"-> {retry_msg}",
                "-> Try: Enable the SDK retry option or back off between calls.",
                f"-> Contact support to increase rate limits: {SOCKET_CONTACT_URL}",
            )
        )
    lines = _GUIDANCE.get(status)
    return "\n".join(lines) if lines else None


def describe_error(
    body: str | bytes | None,
    status: int,
    *,
    reason: str | None = None,
    retry_after: str | None = None,
) -> ErrorDescription:
    """Extract ``error.message`` / ``error.details`` from *body*.

    Falls back to a generic status-based message when the body is not JSON or
    does not carry a nested ``error`` object.  Never raises.
    """
    guidance = guidance_for(status, retry_after)
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else (body or "")

    try:
        parsed: Any = json.loads(text)
    except (ValueError, TypeError, RecursionError):
        parsed = None

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"].strip():
            details = error.get("details")
            if details is not None and not isinstance(details, dict):
                details = {"details": details}
            return ErrorDescription(
                message=error["message"].strip(),
                details=details or None,
                guidance=guidance,
            )
        if isinstance(error, str) and error.strip():
            return ErrorDescription(message=error.strip(), guidance=guidance)

    message = generic_message(status, reason)
    stripped = text.strip()
    if parsed is None and stripped and len(stripped) <= _MAX_INLINE_BODY:
        message = f"{message}: {stripped}"
    return ErrorDescription(message=message, guidance=guidance)


def describe_invalid_json(body: str, exc: Exception | None = None) -> ErrorDescription:
    """Description for a 2xx body that failed to parse as JSON."""
    preview = body[:100].strip()
    if len(body) > 100:
        preview += "..."
    details: dict[str, Any] = {"preview": preview}
    if exc is not None:
        details["reason"] = str(exc)
    return ErrorDescription(message="Server returned invalid JSON", details=details)
