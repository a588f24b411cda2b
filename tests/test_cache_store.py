"""
Tests for cache_store.TTLCache.

Covers:
  - get/set round trip and MISS sentinel
  - TTL expiry (injected clock, no sleeping)
  - Short TTL for FAILED domain results
  - LRU capacity
  - Single-flight get_or_compute under concurrency
  - ttl=0 disables storage
"""

import threading
import time

import pytest

from cache_store import MISS, TTLCache, get_cache
from domain_results import FireResult


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache("test", ttl_seconds=60, failed_ttl_seconds=10, clock=clock)


class TestBasicOperations:

    def test_miss_is_falsy_and_distinct_from_none(self, cache):
        assert cache.get("nope") is MISS
        assert not MISS
        cache.set("k", None)
        assert cache.get("k") is None

    def test_set_then_get(self, cache):
        cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}

    def test_overwrite(self, cache):
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k") == 2
        assert len(cache) == 1

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0
        assert cache.get("a") is MISS


class TestExpiry:

    def test_fresh_within_ttl(self, cache, clock):
        cache.set("k", "v")
        clock.advance(59)
        assert cache.get("k") == "v"

    def test_expired_at_ttl(self, cache, clock):
        """An entry is stale once its age reaches the TTL."""
        cache.set("k", "v")
        clock.advance(60)
        assert cache.get("k") is MISS
        assert len(cache) == 0

    def test_zero_ttl_stores_nothing(self, clock):
        cache = TTLCache("off", ttl_seconds=0, clock=clock)
        cache.set("k", "v")
        assert cache.get("k") is MISS
        assert len(cache) == 0

    def test_zero_ttl_get_or_compute_always_recomputes(self, clock):
        cache = TTLCache("off", ttl_seconds=0, clock=clock)
        calls = []
        cache.get_or_compute("k", lambda: calls.append(1) or "v")
        cache.get_or_compute("k", lambda: calls.append(1) or "v")
        assert len(calls) == 2


class TestFailedResultTTL:

    def test_failed_result_uses_short_ttl(self, cache, clock):
        failed = FireResult.make_failed(error="HTTP 503", message="Fire hazard data unavailable")
        cache.get_or_compute("k", lambda: failed)
        clock.advance(11)
        assert cache.get("k") is MISS

    def test_found_result_uses_full_ttl(self, cache, clock):
        found = FireResult.make_found("Fire hazard severity: High", severity="High")
        cache.get_or_compute("k", lambda: found)
        clock.advance(30)
        assert cache.get("k") is found

    def test_failed_ttl_never_exceeds_ttl(self, clock):
        cache = TTLCache("c", ttl_seconds=5, failed_ttl_seconds=600, clock=clock)
        assert cache.failed_ttl_seconds == 5


class TestLRU:

    def test_evicts_least_recently_used(self, clock):
        cache = TTLCache("lru", ttl_seconds=60, max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")          # a is now most recent
        cache.set("c", 3)       # evicts b
        assert cache.get("a") == 1
        assert cache.get("b") is MISS
        assert cache.get("c") == 3


class TestGetOrCompute:

    def test_second_call_is_cached(self, cache):
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert cache.get_or_compute("k", compute) == "value"
        assert cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1

    def test_exception_is_not_cached(self, cache):
        def boom():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            cache.get_or_compute("k", boom)
        assert cache.get("k") is MISS
        assert cache.get_or_compute("k", lambda: "recovered") == "recovered"

    def test_concurrent_callers_share_one_computation(self, cache):
        """Eight threads asking for the same key trigger one upstream call."""
        calls = []
        started = threading.Event()

        def slow():
            calls.append(1)
            started.set()
            time.sleep(0.2)
            return "shared"

        results = []

        def worker():
            results.append(cache.get_or_compute("k", slow))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(calls) == 1
        assert results == ["shared"] * 8

    def test_explicit_ttl_override(self, cache, clock):
        cache.get_or_compute("k", lambda: "v", ttl=5)
        clock.advance(6)
        assert cache.get("k") is MISS


class TestRegistry:

    def test_same_domain_same_instance(self):
        assert get_cache("flood") is get_cache("flood")

    def test_domains_are_isolated(self):
        get_cache("flood").set("k", "flood-value")
        assert get_cache("fire").get("k") is MISS
