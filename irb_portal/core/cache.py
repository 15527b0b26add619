"""
In-Process TTL Cache
====================
Thread-safe key/value cache with per-entry TTL and oldest-first eviction,
used for list and dashboard responses.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from irb_portal.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value with its expiry time (monotonic seconds)."""
    value: Any
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class TTLCache:
    """In-memory cache with TTL and a size cap."""

    def __init__(self, default_ttl: int = 300, max_entries: int = 1000):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats = CacheStats()
        self._lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return default
            if entry.is_expired:
                del self._entries[key]
                self._stats.misses += 1
                self._stats.evictions += 1
                return default
            self._stats.hits += 1
            return entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries under '{prefix}'")
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def purge_expired(self) -> int:
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired]
            for key in expired:
                del self._entries[key]
            self._stats.evictions += len(expired)
            return len(expired)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "evictions": self._stats.evictions,
                "hit_rate": round(self._stats.hit_rate, 3),
            }


# Cache key namespaces
STUDIES_PREFIX = "studies:"
DASHBOARD_PREFIX = "dashboard:"

# Singleton instance
_cache: Optional[TTLCache] = None


def get_cache() -> TTLCache:
    """Get singleton cache."""
    global _cache
    if _cache is None:
        _cache = TTLCache(default_ttl=settings.CACHE_TTL_SECONDS, max_entries=settings.CACHE_MAX_ENTRIES)
    return _cache


def invalidate_study_caches() -> None:
    """Drop cached study lists and dashboard stats after any study-related write."""
    cache = get_cache()
    cache.delete_prefix(STUDIES_PREFIX)
    cache.delete_prefix(DASHBOARD_PREFIX)


def invalidate_user_caches(user_id: str) -> None:
    """Drop one user's cached study lists and dashboard stats after their access changes."""
    cache = get_cache()
    cache.delete_prefix(f"{STUDIES_PREFIX}{user_id}:")
    cache.delete(f"{DASHBOARD_PREFIX}{user_id}")


def study_list_key(user_id: str, *parts) -> str:
    """Cache key for one user's filtered study list page."""
    digest = hashlib.sha256(repr(parts).encode()).hexdigest()[:32]
    return f"{STUDIES_PREFIX}{user_id}:{digest}"
