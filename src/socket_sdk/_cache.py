"""In-memory TTL cache for successful GET results."""
from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any, Callable

from socket_sdk.constants import DEFAULT_CACHE_TTL


class TtlCache:
    """Maps keys to values that expire *ttl* seconds after insertion.

    Entries are only ever added for successful results; failures are never
    cached.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self._entries[key] = (self._clock() + (self.ttl if ttl is None else ttl), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def ttl_for_endpoint(cache_ttl: float | Mapping[str, float], endpoint: str | None) -> float:
    """Resolve the TTL for *endpoint* from a number or a per-endpoint mapping."""
    if isinstance(cache_ttl, Mapping):
        if endpoint is not None and endpoint in cache_ttl:
            return float(cache_ttl[endpoint])
        return float(cache_ttl.get("default", DEFAULT_CACHE_TTL))
    return float(cache_ttl)
