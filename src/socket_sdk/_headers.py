"""Request header construction and redaction."""
from __future__ import annotations

import base64
import platform
from collections.abc import Mapping

from socket_sdk.constants import SDK_VERSION, SENSITIVE_HEADERS

HOMEPAGE = "https://github.com/SocketDev/socket-sdk-python"

DEFAULT_USER_AGENT = f"socket-sdk-python/{SDK_VERSION} ({HOMEPAGE})"


def build_user_agent(extra: str | None = None) -> str:
    """Return the default User-Agent, with *extra* appended when given."""
    base = f"{DEFAULT_USER_AGENT} python/{platform.python_version()}"
    extra = (extra or "").strip()
    return f"{base} {extra}" if extra else base


def basic_auth_header(api_token: str) -> str:
    """Encode *api_token* as the basic-auth username with an empty password."""
    encoded = base64.b64encode(f"{api_token}:".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def sanitize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Copy *headers* with credential-bearing values replaced by ``[REDACTED]``."""
    if not headers:
        return {}
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else str(value)
        for key, value in headers.items()
    }
