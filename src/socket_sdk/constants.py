"""Defaults and limits shared across the SDK."""
from __future__ import annotations

SDK_VERSION = "0.1.0"

DEFAULT_BASE_URL = "https://api.socket.dev/v0/"

# Seconds
DEFAULT_HTTP_TIMEOUT = 30.0
MIN_HTTP_TIMEOUT = 5.0
MAX_HTTP_TIMEOUT = 5 * 60.0

DEFAULT_RETRIES = 0
DEFAULT_RETRY_DELAY = 0.1

DEFAULT_CACHE_TTL = 5 * 60.0

MAX_API_TOKEN_LENGTH = 1024

# Upload files are streamed in chunks of this size
UPLOAD_CHUNK_SIZE = 1024 * 1024

SOCKET_API_TOKENS_URL = "https://socket.dev/dashboard/settings/api-tokens"
SOCKET_CONTACT_URL = "https://socket.dev/contact"
SOCKET_DASHBOARD_URL = "https://socket.dev/dashboard"

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "proxy-authorization",
        "www-authenticate",
        "proxy-authenticate",
    }
)
