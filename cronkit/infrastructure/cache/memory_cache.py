"""
In-Process TTL Cache

Bounded key-value store used as the fallback backend of ``TieredCache`` and as
its write-through mirror.

Implementation Details:
- OrderedDict for O(1) access and LRU ordering
- Every entry carries an absolute ``expires_at``; expired entries are removed
  lazily on read and in bulk by ``cleanup()`` (called by the maintenance task)
- Values are stored as already-serialized strings, so callers never share a
  cached object by reference
- asyncio.Lock guards every mutation, which makes ``add`` (check-then-set)
  atomic within one process. Nothing here coordinates across processes.
"""

import asyncio
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from cronkit.core.config.constants import MEMORY_CACHE_MAX_SIZE


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a Redis-style glob into an anchored regex.

    ``*`` matches any run of characters and ``?`` exactly one; every other
    character is literal.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


@dataclass
class MemoryEntry:
    value: str
    expires_at: float


class MemoryCache:
    """
    TTL + LRU in-memory cache.

    Usage:
        cache = MemoryCache(max_size=1000)
        await cache.set("user:42", '{"name": "Ada"}', ttl=300)
        raw = await cache.get("user:42")
    """

    def __init__(
        self,
        max_size: int = MEMORY_CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_size: Maximum entries before the least recently used is evicted
            clock: Returns the current time in seconds (injectable for tests)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, MemoryEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> MemoryEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def _store(self, key: str, value: str, ttl: int) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = MemoryEntry(value=value, expires_at=self._clock() + ttl)

        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: str, ttl: int) -> None:
        async with self._lock:
            self._store(key, value, ttl)

    async def add(self, key: str, value: str, ttl: int) -> bool:
        """Store ``value`` only if ``key`` holds no live entry. Returns True if stored."""
        async with self._lock:
            if self._live(key, self._clock()) is not None:
                return False
            self._store(key, value, ttl)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def has(self, key: str) -> bool:
        async with self._lock:
            return self._live(key, self._clock()) is not None

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl
            return True

    async def ttl(self, key: str) -> int:
        """Remaining seconds, or -2 when the key is absent."""
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return -2
            return max(0, int(entry.expires_at - now))

    async def keys(self, pattern: str = "*") -> list[str]:
        regex = glob_to_regex(pattern)
        async with self._lock:
            now = self._clock()
            return [
                key
                for key, entry in self._entries.items()
                if entry.expires_at > now and regex.match(key)
            ]

    async def delete_matching(self, pattern: str) -> int:
        """Delete every live key matching the glob ``pattern``."""
        regex = glob_to_regex(pattern)
        async with self._lock:
            doomed = [key for key in self._entries if regex.match(key)]
            now = self._clock()
            deleted = 0
            for key in doomed:
                entry = self._entries.pop(key)
                if entry.expires_at > now:
                    deleted += 1
            return deleted

    async def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def get_size(self) -> int:
        return len(self._entries)

    def get_max_size(self) -> int:
        return self._max_size

    def get_keys(self) -> list[str]:
        """All stored keys, oldest first. May include entries not yet swept."""
        return list(self._entries.keys())

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": self.get_size(),
            "max_size": self._max_size,
            "keys": self.get_keys(),
        }
