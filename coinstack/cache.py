"""Process-wide request state: TTL resource cache + in-flight registry.

Both are plain dict-backed objects owned by the fetch core.  No locks:
everything runs on one asyncio loop, so map mutations never interleave;
only the awaited gaps do, and those are what the in-flight registry is
for.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any


class ResourceCache:
    """Request key → ``(payload, timestamp)`` with a fixed time-to-live.

    ``get`` never serves an entry older than ``ttl_s``; stale entries stay
    in place until the next successful ``set`` for the key overwrites them.
    """

    def __init__(self, ttl_s: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._store: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        payload, ts = entry
        if self._clock() - ts >= self.ttl_s:
            return None
        return payload

    def set(self, key: str, payload: Any) -> None:
        self._store[key] = (payload, self._clock())

    def clear(self) -> None:
        """Drop every entry (credential change)."""
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class InflightRegistry:
    """Request key → pending future of the one upstream call for that key."""

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[Any]] = {}

    def get(self, key: str) -> asyncio.Future[Any] | None:
        return self._pending.get(key)

    def register(self, key: str, fut: asyncio.Future[Any]) -> None:
        self._pending[key] = fut

    def release(self, key: str) -> None:
        self._pending.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)
