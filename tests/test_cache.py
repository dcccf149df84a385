"""Tests for the Cache Layer."""

from typing import List

import pytest

from lore_kernel.cache.layer import CacheLayer
from lore_kernel.errors import StoreUnavailableError
from lore_kernel.models.cache import CacheKeyRegistry
from lore_kernel.models.config import CacheConfig
from lore_kernel.models.world import WorldAttributes
from lore_kernel.storage import keys
from lore_kernel.storage.kv import InMemoryKeyValueStore
from lore_kernel.storage.records import RecordStore


class FailingStore(InMemoryKeyValueStore):
    """A store whose reads and writes fail, for best-effort checks."""

    def get(self, key):
        raise StoreUnavailableError("store down")

    def compare_and_set(self, key, expected, value, ttl_seconds=None):
        raise StoreUnavailableError("store down")


@pytest.fixture
def cache(records, clock):
    return CacheLayer(records, CacheConfig(), clock=clock)


class Counter:
    def __init__(self, value):
        self.calls = 0
        self.value = value

    def __call__(self):
        self.calls += 1
        return self.value


class TestGetOrSet:
    def test_miss_then_hit(self, cache):
        fetch = Counter({"n": 1})
        assert cache.get_or_set("cache.a", fetch, 60) == {"n": 1}
        assert cache.get_or_set("cache.a", fetch, 60) == {"n": 1}
        assert fetch.calls == 1
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.total_requests) == (1, 1, 2)
        assert stats.hit_rate == 0.5

    def test_typed_values_round_trip(self, cache):
        fetch = Counter([WorldAttributes(stability=2), WorldAttributes(curiosity=-1)])
        cache.get_or_set("cache.list", fetch, 60, type_=List[WorldAttributes])
        cached = cache.get_or_set("cache.list", fetch, 60, type_=List[WorldAttributes])
        assert cached[1].curiosity == -1
        assert fetch.calls == 1

    def test_embedded_expiry(self, cache, clock):
        fetch = Counter("v")
        cache.get_or_set("cache.a", fetch, 10)
        clock.advance(seconds=11)
        cache.get_or_set("cache.a", fetch, 10)
        assert fetch.calls == 2

    def test_force_refresh(self, cache):
        fetch = Counter("v")
        cache.get_or_set("cache.a", fetch, 60)
        cache.get_or_set("cache.a", fetch, 60, force_refresh=True)
        assert fetch.calls == 2

    def test_disabled_cache_always_fetches(self, records, clock):
        cache = CacheLayer(records, CacheConfig(enabled=False), clock=clock)
        fetch = Counter("v")
        cache.get_or_set("cache.a", fetch, 60)
        cache.get_or_set("cache.a", fetch, 60)
        assert fetch.calls == 2
        assert records.kv.get("cache.a") is None

    def test_fetch_errors_propagate(self, cache):
        def boom():
            raise ValueError("fetch failed")

        with pytest.raises(ValueError):
            cache.get_or_set("cache.a", boom, 60)

    def test_corrupt_entry_falls_through(self, cache, records):
        records.kv.set("cache.a", "not json")
        assert cache.get_or_set("cache.a", lambda: "fresh", 60) == "fresh"
        assert cache.stats().errors == 1
        assert cache.get("cache.a") == "fresh"

    def test_store_failure_falls_through(self, clock):
        cache = CacheLayer(RecordStore(FailingStore()), clock=clock)
        assert cache.get_or_set("cache.a", lambda: 42, 60) == 42
        stats = cache.stats()
        assert stats.errors == 2
        assert stats.misses == 1


class TestInvalidation:
    def test_prefix_invalidation(self, cache, records):
        cache.set("cache.profile.a.stats", 1, 60)
        cache.set("cache.profile.b.stats", 2, 60)
        cache.set("cache.world.state", 3, 60)
        assert cache.invalidate("cache.profile.") == 2
        assert cache.get("cache.profile.a.stats") is None
        assert cache.get("cache.world.state") == 3
        registry = records.get(keys.CACHE_REGISTRY, CacheKeyRegistry)
        assert registry.keys == ["cache.world.state"]

    def test_delete_single_key(self, cache):
        cache.set("cache.a", "v", 60)
        assert cache.delete("cache.a") is True
        assert cache.get("cache.a") is None

    def test_clear(self, cache):
        cache.set("cache.a", 1, 60)
        cache.set("cache.b", 2, 60)
        assert cache.clear() == 2

    def test_reset_stats(self, cache, clock):
        cache.get("cache.missing")
        clock.advance(minutes=1)
        cache.reset_stats()
        stats = cache.stats()
        assert stats.total_requests == 0
        assert stats.last_reset == clock()
