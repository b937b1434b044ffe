"""In-memory cache client."""
import asyncio
import math
import time
from typing import Callable
from .base import CacheClient
from ..event_models import CacheEntry


class InMemoryCache(CacheClient):
    """In-process cache with lazy ttl expiry.

    Every operation runs under one asyncio lock, which makes each of them
    atomic with respect to concurrent invocations in the same loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, tuple[bytes, float | None]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> tuple[bytes, float | None] | None:
        item = self._entries.get(key)
        if item is None:
            return None
        _, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return item

    def _expiry(self, ttl: int | None) -> float | None:
        return None if ttl is None else self._clock() + ttl

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            item = self._live(key)
            return item[0] if item else None

    async def set_if_absent(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._expiry(ttl))
            return True

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._lock:
            item = self._live(key)
            if item is None:
                self._entries[key] = (b"1", self._expiry(ttl))
                return 1
            value, expires_at = item
            count = int(value) + 1
            self._entries[key] = (str(count).encode(), expires_at)
            return count

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            item = self._live(key)
            if item is None:
                return False
            self._entries[key] = (item[0], self._expiry(ttl))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def ping(self) -> bool:
        """In-memory cache is always reachable."""
        return True

    def snapshot(self) -> list[CacheEntry]:
        """Live entries, sorted by key. Remaining ttl is rounded up to whole seconds."""
        entries = []
        now = self._clock()
        for key in sorted(self._entries):
            item = self._live(key)
            if item is None:
                continue
            value, expires_at = item
            ttl = None if expires_at is None else max(1, math.ceil(expires_at - now))
            entries.append(CacheEntry(key=key, value=value, ttl=ttl))
        return entries
