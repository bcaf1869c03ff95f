import functools
import random
import time as pytime
from concurrent.futures import ThreadPoolExecutor

import pytest

from utils import caching
from utils.caching import BoundedCache, get_all_cache_stats


def _freeze(monkeypatch, at):
    monkeypatch.setattr(caching.time, "time", lambda: at)


def test_get_returns_stored_value_and_counts_hits_and_misses():
    cache = BoundedCache("t", max_size=4, default_ttl=60)

    assert cache.get("missing") is None
    cache.set("a", 1)
    assert cache.get("a") == 1

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(0.5)
    assert stats["size"] == 1
    assert stats["capacity"] == 4


def test_get_default_is_returned_on_miss():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    assert cache.get("nope", default="fallback") == "fallback"


def test_none_is_a_cacheable_value():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    calls = []

    def supplier():
        calls.append(1)
        return None

    assert cache.get_or_compute("k", supplier) is None
    assert cache.get_or_compute("k", supplier) is None
    assert len(calls) == 1


def test_least_recently_used_entry_is_evicted():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.get("a") == 1  # a becomes most recent
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert cache.stats()["evictions"] == 1
    assert len(cache) == 2


def test_overwriting_existing_key_never_evicts():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)

    assert len(cache) == 2
    assert cache.get("a") == 10
    assert cache.get("b") == 2
    assert cache.stats()["evictions"] == 0


def test_overwrite_refreshes_recency():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 1)
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")


def test_size_never_exceeds_capacity():
    cache = BoundedCache("t", max_size=3, default_ttl=60)
    for i in range(20):
        cache.set(f"k{i}", i)
        assert len(cache) <= 3

    assert cache.stats()["evictions"] == 17
    assert [cache.has(f"k{i}") for i in (17, 18, 19)] == [True, True, True]


def test_entry_expires_after_ttl(monkeypatch):
    cache = BoundedCache("t", max_size=4, default_ttl=10)
    base = pytime.time()

    _freeze(monkeypatch, base)
    cache.set("a", "value")

    _freeze(monkeypatch, base + 10)
    assert cache.get("a") == "value"

    _freeze(monkeypatch, base + 10.5)
    assert cache.get("a") is None
    assert len(cache) == 0
    assert cache.stats()["misses"] == 1


def test_per_entry_ttl_overrides_default(monkeypatch):
    cache = BoundedCache("t", max_size=4, default_ttl=100)
    base = pytime.time()
    _freeze(monkeypatch, base)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2)

    _freeze(monkeypatch, base + 5)
    assert cache.get("short") is None
    assert cache.get("long") == 2


@pytest.mark.parametrize("ttl", [0, -5, None])
def test_non_positive_ttl_falls_back_to_default(monkeypatch, ttl):
    cache = BoundedCache("t", max_size=4, default_ttl=30)
    base = pytime.time()
    _freeze(monkeypatch, base)
    cache.set("a", 1, ttl=ttl)

    _freeze(monkeypatch, base + 29)
    assert cache.get("a") == 1


def test_has_does_not_touch_counters_and_drops_expired(monkeypatch):
    cache = BoundedCache("t", max_size=4, default_ttl=5)
    base = pytime.time()
    _freeze(monkeypatch, base)
    cache.set("a", 1)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.stats()["hits"] == 0
    assert cache.stats()["misses"] == 0

    _freeze(monkeypatch, base + 6)
    assert not cache.has("a")
    assert len(cache) == 0


def test_has_refreshes_recency():
    cache = BoundedCache("t", max_size=2, default_ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.has("a")
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")


def test_delete_and_clear():
    cache = BoundedCache("t", max_size=4, default_ttl=60)
    cache.set("a", 1)
    cache.get("a")
    cache.get("x")

    assert cache.delete("a") is True
    assert cache.delete("a") is False

    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0
    stats = cache.stats()
    assert (stats["hits"], stats["misses"], stats["hit_rate"]) == (0, 0, 0.0)


def test_remove_prefix():
    cache = BoundedCache("t", max_size=8, default_ttl=60)
    cache.set("overview:10", 1)
    cache.set("overview:20", 2)
    cache.set("profile:paris", 3)

    assert cache.remove_prefix("overview:") == 2
    assert cache.has("profile:paris")
    assert not cache.has("overview:10")


def test_get_or_compute_does_not_cache_supplier_errors():
    cache = BoundedCache("t", max_size=4, default_ttl=60)

    def boom():
        raise RuntimeError("no")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", boom)
    assert not cache.has("k")
    assert cache.get_or_compute("k", lambda: 7) == 7


@pytest.mark.asyncio
async def test_get_or_compute_async_awaits_coroutine_suppliers():
    cache = BoundedCache("t", max_size=4, default_ttl=60)
    calls = []

    async def supplier():
        calls.append(1)
        return {"v": 1}

    first = await cache.get_or_compute_async("k", supplier)
    second = await cache.get_or_compute_async("k", supplier)

    assert first == second == {"v": 1}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_get_or_compute_async_runs_sync_suppliers():
    cache = BoundedCache("t", max_size=4, default_ttl=60)
    assert await cache.get_or_compute_async("k", lambda: "sync") == "sync"
    assert cache.get("k") == "sync"


@pytest.mark.parametrize("max_size,ttl", [(0, 10), (-1, 10), (5, 0), (5, -1)])
def test_invalid_construction_is_rejected(max_size, ttl):
    with pytest.raises(ValueError):
        BoundedCache("bad", max_size=max_size, default_ttl=ttl)


def test_global_cache_stats_cover_named_caches():
    stats = get_all_cache_stats()
    assert {"scenario", "place_profile", "overview", "place_search"} <= set(stats)
    assert stats["overview"]["capacity"] == 1


@pytest.mark.asyncio
async def test_get_or_compute_async_awaits_results_of_wrapped_coroutines():
    cache = BoundedCache("t", max_size=4, default_ttl=60)

    async def fetch(value=42):
        return value

    assert await cache.get_or_compute_async("lambda", lambda: fetch()) == 42
    assert cache.get("lambda") == 42

    assert await cache.get_or_compute_async("partial", functools.partial(fetch, 7)) == 7
    assert cache.get("partial") == 7


def test_concurrent_access_keeps_capacity_and_counters_consistent():
    capacity = 8
    cache = BoundedCache("t", max_size=capacity, default_ttl=60)
    workers = 8
    ops_per_worker = 2000

    def worker(seed):
        rng = random.Random(seed)
        lookups = 0
        for _ in range(ops_per_worker):
            key = f"k{rng.randint(0, 31)}"
            op = rng.random()
            if op < 0.4:
                cache.set(key, seed)
            elif op < 0.7:
                cache.get(key)
                lookups += 1
            else:
                cache.get_or_compute(key, lambda: seed)
                lookups += 1
            assert len(cache) <= capacity
        return lookups

    with ThreadPoolExecutor(max_workers=workers) as pool:
        total_lookups = sum(pool.map(worker, range(workers)))

    stats = cache.stats()
    assert len(cache) <= capacity
    assert stats["size"] <= capacity
    assert stats["hits"] + stats["misses"] == total_lookups
