"""Unit tests for the TTL cache."""

from __future__ import annotations

from whale_agent.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_set_and_get(self):
        cache = TTLCache(default_ttl=60)
        cache.set("price:BTC", 95000.0)
        assert cache.get("price:BTC") == 95000.0

    def test_missing_key_returns_none(self):
        assert TTLCache().get("label:nobody") is None

    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("price:BTC", 95000.0)
        clock.now += 59
        assert cache.get("price:BTC") == 95000.0
        clock.now += 1
        assert cache.get("price:BTC") is None

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("label:a", "Binance", ttl=3600)
        clock.now += 100
        assert cache.get("label:a") == "Binance"

    def test_zero_ttl_is_not_stored(self):
        cache = TTLCache(default_ttl=60)
        cache.set("price:BTC", 1.0)
        cache.set("price:BTC", 2.0, ttl=0)
        assert cache.get("price:BTC") is None

    def test_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_len_ignores_expired(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)
        clock.now += 10
        assert len(cache) == 1

    def test_drops_oldest_write_when_full(self):
        cache = TTLCache(default_ttl=60, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 10
        assert cache.get("c") == 3
