# utils/caching.py
"""
Caching utilities for the Atlas game core.

This module provides:
- BoundedCache: thread-safe, fixed-capacity in-memory cache with per-entry TTL
  and strict least-recently-used eviction
- Named global cache instances (scenario, profile, overview, place search)
- get_all_cache_stats(): diagnostic counters for every named cache

Expiry is lazy: an entry past its deadline is dropped when it is next looked
at. There is no background sweep.
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from config import CONFIG
from monitoring.metrics import record_cache_eviction, record_cache_operation

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class BoundedCache:
    """
    Fixed-capacity key -> value store with per-entry expiry and LRU eviction.

    The OrderedDict keeps entries from least- to most-recently used, so the
    eviction victim is always the first key. A single RLock serializes every
    operation; all of them are O(1) apart from ``remove_prefix``.
    """

    def __init__(self, name: str = "default", max_size: int = 200, default_ttl: float = 60.0):
        if int(max_size) < 1:
            raise ValueError(f"BoundedCache[{name}] max_size must be at least 1, got {max_size!r}")
        if float(default_ttl) <= 0:
            raise ValueError(f"BoundedCache[{name}] default_ttl must be positive, got {default_ttl!r}")

        self.name = name
        self.max_size = int(max_size)
        self.default_ttl = float(default_ttl)
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.lock = threading.RLock()
        logger.info(f"BoundedCache[{self.name}] init (max_size={self.max_size}, ttl={self.default_ttl}s)")

    def __len__(self) -> int:
        with self.lock:
            return len(self._store)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` when absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store ``value`` under ``key``. A missing or non-positive ``ttl`` uses the
        cache default. Overwriting a key refreshes its recency and never evicts.
        """
        now = time.time()
        effective_ttl = self._effective_ttl(ttl)
        with self.lock:
            if key in self._store:
                del self._store[key]
            elif len(self._store) >= self.max_size:
                self._evict_oldest()

            self._store[key] = CacheEntry(value=value, expires_at=now + effective_ttl, created_at=now)

    def has(self, key: str) -> bool:
        """Check presence without touching hit/miss counters. A live entry becomes most-recently used."""
        with self.lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(time.time()):
                self._remove_expired(key)
                return False
            self._store.move_to_end(key)
            return True

    def delete(self, key: str) -> bool:
        with self.lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry and reset the hit/miss counters."""
        with self.lock:
            self._store.clear()
            self.hits = self.misses = self.evictions = 0

    def remove_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns how many were removed."""
        with self.lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for k in keys:
                del self._store[k]
            return len(keys)

    def get_or_compute(self, key: str, supplier: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Return the live cached value, or call ``supplier`` once, cache its result
        and return it. Supplier errors propagate and nothing is cached.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = supplier()
        self.set(key, value, ttl)
        return value

    async def get_or_compute_async(
        self,
        key: str,
        supplier: Callable[[], Union[Awaitable[Any], Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Async flavour of get_or_compute. The supplier is called on the event
        loop and an awaitable result (coroutine, task, future) is awaited, so
        lambdas and partials wrapping coroutine functions cache their value.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = supplier()
        if inspect.isawaitable(value):
            value = await value

        self.set(key, value, ttl)
        return value

    def stats(self) -> Dict[str, Any]:
        with self.lock:
            total = self.hits + self.misses
            hit_rate = (self.hits / total) if total else 0.0
            return {
                "name": self.name,
                "size": len(self._store),
                "capacity": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(hit_rate, 4),
                "evictions": self.evictions,
            }

    # ---- internals ----

    def _lookup(self, key: str) -> Any:
        with self.lock:
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
                record_cache_operation(self.name, hit=False, size=len(self._store))
                return _MISSING
            if entry.is_expired(time.time()):
                self._remove_expired(key)
                self.misses += 1
                record_cache_operation(self.name, hit=False, size=len(self._store))
                return _MISSING

            self._store.move_to_end(key)
            self.hits += 1
            record_cache_operation(self.name, hit=True, size=len(self._store))
            return entry.value

    def _effective_ttl(self, ttl: Optional[float]) -> float:
        try:
            value = float(ttl) if ttl is not None else 0.0
        except (TypeError, ValueError):
            value = 0.0
        return value if value > 0 else self.default_ttl

    def _remove_expired(self, key: str) -> None:
        del self._store[key]
        record_cache_eviction(self.name, "ttl")

    def _evict_oldest(self) -> None:
        oldest_key, _ = self._store.popitem(last=False)
        self.evictions += 1
        record_cache_eviction(self.name, "capacity")
        logger.debug(f"BoundedCache[{self.name}]: evicted '{oldest_key}'")
        if self.evictions % 50 == 0:
            logger.info(f"BoundedCache[{self.name}]: evictions={self.evictions}")


# --- Global instances & env-config ------------------------------------------

SCENARIO_CACHE = BoundedCache(
    name="scenario",
    max_size=CONFIG.SCENARIO_CACHE_SIZE,
    default_ttl=CONFIG.SCENARIO_CACHE_TTL,
)
PROFILE_CACHE = BoundedCache(
    name="place_profile",
    max_size=CONFIG.PROFILE_CACHE_SIZE,
    default_ttl=CONFIG.PROFILE_CACHE_TTL,
)
# Single slot: the whole-dataset overview snapshot
OVERVIEW_CACHE = BoundedCache(
    name="overview",
    max_size=1,
    default_ttl=CONFIG.OVERVIEW_CACHE_TTL,
)
PLACE_SEARCH_CACHE = BoundedCache(
    name="place_search",
    max_size=CONFIG.PLACE_SEARCH_CACHE_SIZE,
    default_ttl=CONFIG.PLACE_SEARCH_CACHE_TTL,
)

NAMED_CACHES: Dict[str, BoundedCache] = {
    cache.name: cache
    for cache in (SCENARIO_CACHE, PROFILE_CACHE, OVERVIEW_CACHE, PLACE_SEARCH_CACHE)
}


def get_all_cache_stats() -> Dict[str, Dict[str, Any]]:
    """Return stats for every named global cache."""
    return {name: cache.stats() for name, cache in NAMED_CACHES.items()}
