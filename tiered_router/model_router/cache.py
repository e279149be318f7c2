"""Response cache for routing results.

Keyed by Task.fingerprint(), so identical work submitted under different
task ids is served without another execution. Only successful results
are stored. Entries expire after a TTL; when full, the least recently
used entry is evicted.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from tiered_router.model_router.models import RoutingResult

log = structlog.get_logger(__name__)


class _CacheEntry:
    """Single cached result."""

    __slots__ = ("result", "expires_at")

    def __init__(self, result: RoutingResult, expires_at: float) -> None:
        self.result = result
        self.expires_at = expires_at


class ResponseCache:
    """TTL + LRU bounded cache, guarded by an asyncio.Lock."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    async def get(self, key: str) -> RoutingResult | None:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None or self._clock() >= entry.expires_at:
                if entry is not None:
                    del self._store[key]
                self._misses += 1
                return None
            self._store.move_to_end(key)
            self._hits += 1
            return entry.result

    async def put(self, key: str, result: RoutingResult) -> None:
        if not result.succeeded:
            return
        async with self._lock:
            self._store[key] = _CacheEntry(result, self._clock() + self._ttl)
            self._store.move_to_end(key)
            while len(self._store) > self._max_entries:
                evicted, _ = self._store.popitem(last=False)
                self._evictions += 1
                log.debug("response_cache.evicted", key=evicted[:12])

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()
        log.info("response_cache.cleared")

    def __len__(self) -> int:
        return len(self._store)

    def info(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "entries": len(self._store),
            "max_entries": self._max_entries,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
        }
