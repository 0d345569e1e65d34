"""Test caching implementation."""

import time

from backend.app.cache import CacheEntry, TTLCache, make_cache_key


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheEntry:
    """Test cache entry functionality."""

    def test_entry_creation(self):
        """Cache entry should store value and expiry time."""
        entry = CacheEntry("test_value", time.time() + 10)
        assert entry.value == "test_value"
        assert not entry.is_expired()
        assert entry.hits == 0

    def test_entry_expiration(self):
        entry = CacheEntry("value", 100.0)
        assert entry.is_expired(now=100.0)
        assert not entry.is_expired(now=99.9)

    def test_entry_hit_tracking(self):
        entry = CacheEntry("value", time.time() + 10)
        entry.increment_hits()
        entry.increment_hits()
        assert entry.hits == 2


class TestTTLCache:
    """Test TTL cache functionality."""

    def test_cache_initialization(self):
        cache = TTLCache("test", max_size=100, default_ttl=60)
        assert cache.name == "test"
        assert cache.max_size == 100
        assert cache.default_ttl == 60
        assert cache.enabled is True

    def test_cache_get_set(self):
        cache = TTLCache("test")
        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"
        assert cache.get("missing") is None
        assert cache.get("missing", "fallback") == "fallback"

    def test_cached_none_is_distinguishable(self):
        """A stored miss is still a hit for `contains`."""
        cache = TTLCache("test")
        cache.set("geocode:atlantis", None)
        assert cache.contains("geocode:atlantis")
        assert not cache.contains("geocode:elsewhere")

    def test_cache_expiration(self):
        clock = FakeClock()
        cache = TTLCache("test", default_ttl=10, clock=clock)
        cache.set("short", "a", ttl=1)
        cache.set("long", "b")

        clock.advance(1)
        assert cache.get("short") is None
        assert not cache.contains("short")
        assert cache.get("long") == "b"

        clock.advance(9)
        assert cache.get("long") is None
        assert cache.stats()["expirations"] == 2

    def test_lru_eviction(self):
        cache = TTLCache("test", max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.get("a") == 1  # "b" is now least recently used
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert len(cache) == 2
        assert cache.stats()["evictions"] == 1

    def test_delete_and_clear(self):
        cache = TTLCache("test")
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        cache.delete("never-set")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_disabled_cache_stores_nothing(self):
        cache = TTLCache("test", enabled=False)
        cache.set("a", 1)
        assert cache.get("a") is None
        assert not cache.contains("a")
        assert len(cache) == 0

    def test_stats(self):
        cache = TTLCache("tools", max_size=4)
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        assert cache.stats() == {
            "name": "tools",
            "size": 1,
            "max_size": 4,
            "hits": 2,
            "misses": 1,
            "evictions": 0,
            "expirations": 0,
        }


class TestCacheKey:
    def test_key_is_stable_and_order_independent_for_kwargs(self):
        assert make_cache_key("geocode", lat=1.0, lng=2.0) == make_cache_key("geocode", lng=2.0, lat=1.0)
        assert len(make_cache_key("x")) == 32

    def test_key_distinguishes_arguments(self):
        assert make_cache_key("a", 1) != make_cache_key("a", 2)
        assert make_cache_key("a") != make_cache_key(kw="a")
