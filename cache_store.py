"""
In-process TTL caches for upstream enrichment results.

One TTLCache per enrichment domain, each with its own lifetime.  Entries
live in memory only (never persisted, never shared across gunicorn
workers) and are bounded by an LRU capacity.

Thread safety: every read-check-write runs under the cache lock, and
get_or_compute() adds per-key single-flight so concurrent requests for
the same key share one upstream call instead of stampeding the provider.

Usage:
    from cache_store import get_cache

    cache = get_cache("fire")
    result = cache.get_or_compute(key, lambda: query_upstream(...))
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from enrichment_config import CACHE_POLICY

logger = logging.getLogger(__name__)


class _Miss:
    """Sentinel type for a cache miss (None is a legitimate cached value)."""

    def __repr__(self):
        return "MISS"

    def __bool__(self):
        return False


MISS = _Miss()


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class _Flight:
    """One in-progress computation that followers wait on."""

    def __init__(self):
        self.done = threading.Event()
        self.value: Any = MISS


class TTLCache:
    """Key/value store with per-entry TTL, LRU capacity and single-flight."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_entries: Optional[int] = None,
        failed_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        # Failures never outlive successes (ttl 0 disables both).
        self.failed_ttl_seconds = (
            ttl_seconds if failed_ttl_seconds is None
            else min(failed_ttl_seconds, ttl_seconds)
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, _Flight] = {}

    # ------------------------------------------------------------------
    # Basic operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any:
        """Return the cached value, or MISS if absent or expired."""
        with self._lock:
            return self._get_locked(key)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or overwrite *key*.  A ttl of 0 or less stores nothing."""
        if ttl is None:
            ttl = self.ttl_seconds
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock(), ttl)
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("[cache] %s evicted %s", self.name, evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[cache] %s cleared", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _get_locked(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        if entry.expired(self._clock()):
            del self._entries[key]
            return MISS
        self._entries.move_to_end(key)
        return entry.value

    # ------------------------------------------------------------------
    # Check-then-fetch-then-store
    # ------------------------------------------------------------------

    def ttl_for_value(self, value: Any) -> float:
        """Failed domain results get the short failure TTL."""
        if getattr(value, "is_failed", False):
            return self.failed_ttl_seconds
        return self.ttl_seconds

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value for *key*, computing it at most once.

        The first caller for a missing key runs *compute*; concurrent
        callers for the same key block until it finishes and receive the
        same value.  If *compute* raises, followers retry on their own.
        """
        while True:
            with self._lock:
                value = self._get_locked(key)
                if value is not MISS:
                    return value
                flight = self._inflight.get(key)
                leader = flight is None
                if leader:
                    flight = _Flight()
                    self._inflight[key] = flight
            if leader:
                break
            flight.done.wait()
            if flight.value is not MISS:
                return flight.value

        try:
            value = compute()
            self.set(key, value, ttl=self.ttl_for_value(value) if ttl is None else ttl)
            flight.value = value
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            flight.done.set()


# =============================================================================
# Per-domain registry
# =============================================================================

_registry: Dict[str, TTLCache] = {}
_registry_lock = threading.Lock()


def get_cache(domain: str, ttl_seconds: Optional[float] = None) -> TTLCache:
    """Return the process-wide cache for *domain*, creating it on first use."""
    with _registry_lock:
        cache = _registry.get(domain)
        if cache is None:
            cache = TTLCache(
                name=domain,
                ttl_seconds=(
                    CACHE_POLICY.ttl_for(domain) if ttl_seconds is None else ttl_seconds
                ),
                max_entries=CACHE_POLICY.max_entries,
                failed_ttl_seconds=CACHE_POLICY.failed_ttl_seconds,
            )
            _registry[domain] = cache
        return cache


def clear_all_caches() -> None:
    with _registry_lock:
        caches = list(_registry.values())
    for cache in caches:
        cache.clear()
