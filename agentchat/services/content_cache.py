"""In-process TTL cache with an LRU size cap."""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple


class ContentCache:
    """
    Maps a source key to extracted content.

    Entries expire ``ttl_seconds`` after they were written. When more than
    ``max_entries`` are live, the least recently used entry is dropped.
    """

    def __init__(self, ttl_seconds: float = 1800, max_entries: int = 256, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    async def set(self, key: str, value: Any):
        async with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "maxEntries": self.max_entries,
            "ttlSeconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "memoryUsage": sum(len(str(v)) for _, v in self._entries.values()),
        }
