"""In-memory LRU cache with per-entry TTL expiration.

Backs the buyer dashboard views. Entries are keyed "<user_id>:<view>" so an
order capture can drop every cached view for one buyer at once.
"""

import time
from collections import OrderedDict
from typing import Any

from storefront.config import settings


class TTLCache:
    """LRU cache with per-entry TTL. Safe for asyncio (single-threaded event loop)."""

    def __init__(self, maxsize: int = 1024, default_ttl: float = 300.0):
        self._maxsize = maxsize
        self._default_ttl = default_ttl
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        """Get value if exists and not expired. Moves to end (most recent)."""
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None
        value, expires_at = entry
        if time.monotonic() > expires_at:
            del self._cache[key]
            self._misses += 1
            return None
        self._cache.move_to_end(key)
        self._hits += 1
        return value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store value with TTL. Evicts LRU if at capacity."""
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl
        if key in self._cache:
            self._cache.move_to_end(key)
        self._cache[key] = (value, expires_at)
        while len(self._cache) > self._maxsize:
            self._cache.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        """Remove a specific key. Returns True if it existed."""
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns the number removed."""
        stale = [k for k in self._cache if k.startswith(prefix)]
        for k in stale:
            del self._cache[k]
        return len(stale)

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> dict:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._cache),
            "maxsize": self._maxsize,
            "hit_rate": round(self._hits / max(self._hits + self._misses, 1) * 100, 1),
        }


dashboard_cache = TTLCache(maxsize=1024, default_ttl=settings.dashboard_cache_ttl_seconds)


def invalidate_buyer_dashboard(user_id: str | None) -> None:
    """Drop cached dashboard, orders and library views for a buyer."""
    if user_id:
        dashboard_cache.invalidate_prefix(f"{user_id}:")
