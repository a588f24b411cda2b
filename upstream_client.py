"""
Base class for the enrichment-domain clients.

Each client implements cache_key() and _query(); fetch() wraps them in
the shared contract:

  1. precheck()  - answers that need no I/O (missing key, no zip); not cached
  2. cache hit   - returned immediately, recorded in the trace as cache_hit
  3. _query()    - provider request(s) and normalization
  4. failures    - UpstreamError, requests errors and parse errors become a
                   FAILED DomainResult; they never escape fetch()
  5. store       - every resolved result is cached (FAILED ones with the
                   short failure TTL)

ConfigurationError is the one exception that propagates.
"""

import logging
from typing import Optional, Type

import requests

from cache_store import MISS, TTLCache, get_cache
from domain_results import DomainResult
from hs_trace import get_trace
from upstream_http import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

# Malformed payloads surface as these when normalization probes a field
# that is not there.
PARSE_ERRORS = (ValueError, KeyError, TypeError, IndexError, AttributeError)


class UpstreamClient:
    domain: str = ""
    service: str = ""
    result_type: Type[DomainResult] = DomainResult
    failure_message: str = "Data unavailable"

    def __init__(self, cache: Optional[TTLCache] = None):
        self._cache = cache

    @property
    def cache(self) -> TTLCache:
        if self._cache is None:
            self._cache = get_cache(self.domain)
        return self._cache

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def cache_key(self, *args, **kwargs) -> str:
        raise NotImplementedError

    def _query(self, *args, **kwargs) -> DomainResult:
        raise NotImplementedError

    def precheck(self, *args, **kwargs) -> Optional[DomainResult]:
        return None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def failure(self, error: str, **fields) -> DomainResult:
        return self.result_type.make_failed(
            error=error, message=self.failure_message, **fields
        )

    def fetch(self, *args, **kwargs) -> DomainResult:
        early = self.precheck(*args, **kwargs)
        if early is not None:
            return early

        key = self.cache_key(*args, **kwargs)
        cached = self.cache.get(key)
        if cached is not MISS:
            trace = get_trace()
            if trace:
                trace.record_cache_hit(self.service, self.domain)
            return cached

        return self.cache.get_or_compute(key, lambda: self._resolve(*args, **kwargs))

    def _resolve(self, *args, **kwargs) -> DomainResult:
        try:
            return self._query(*args, **kwargs)
        except ConfigurationError:
            raise
        except UpstreamError as e:
            logger.warning("[%s] upstream error: %s", self.domain, e)
            return self.failure(str(e))
        except requests.exceptions.RequestException as e:
            logger.warning("[%s] request failed: %s", self.domain, e)
            return self.failure(str(e))
        except PARSE_ERRORS as e:
            logger.warning(
                "[%s] could not parse provider response: %s: %s",
                self.domain, type(e).__name__, e,
            )
            return self.failure(f"{type(e).__name__}: {e}")
