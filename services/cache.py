"""In-process TTL cache used by the cache-aside traffic service."""

import time
from typing import Any, Dict, Optional

from cachetools import TTLCache as _ExpiringStore

from core.config import settings


class CacheMetrics:
    """Hit/miss counters."""

    def __init__(self):
        self.hits = 0
        self.misses = 0

    def record_hit(self):
        self.hits += 1

    def record_miss(self):
        self.misses += 1

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class TTLCache:
    """
    Bounded cache where every entry expires ``default_ttl`` seconds after
    it was written. Expired entries are purged on every write; once
    ``max_entries`` live keys are held the least recently used one is
    evicted.
    """

    def __init__(
        self,
        default_ttl: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock=time.monotonic
    ):
        self.default_ttl = default_ttl if default_ttl is not None else settings.CACHE_TTL
        self.max_entries = max_entries if max_entries is not None else settings.CACHE_MAX_ENTRIES
        self._entries = _ExpiringStore(maxsize=self.max_entries, ttl=self.default_ttl, timer=clock)
        self.metrics = CacheMetrics()

    def get(self, key: str) -> Optional[Any]:
        value = self._entries.get(key)
        if value is None:
            self.metrics.record_miss()
            return None

        self.metrics.record_hit()
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "keys": len(self),
            "hits": self.metrics.hits,
            "misses": self.metrics.misses,
            "hitRate": self.metrics.hit_rate,
        }


# Shared by request handlers and scheduled jobs
traffic_cache = TTLCache()
