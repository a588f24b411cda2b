"""
EPA Superfund (CERCLA) sites near an address.

Envirofacts exposes the national site list under a few table names that
have moved over the years; they are tried in order until one yields
sites within the search radius:

  SF_SITES -> CERCLIS -> CERCLIS_SITES

A table that answers but has no nearby sites is not an error.  The
domain is FAILED only when no sites were found and every table failed.

This dataset needed aggressive invalidation during development, so the
cache is tunable separately from the other 90-day domains:
  SUPERFUND_CACHE_TTL_SECONDS   override the TTL (0 disables caching)
  force_refresh=True            bypass the cache read for one call
  clear_superfund_cache()       drop every cached superfund result
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from cache_store import TTLCache, get_cache
from domain_results import SuperfundResult
from enrichment_config import CONFIG, SUPERFUND_CACHE_TTL
from geo_math import coordinate_key, haversine_miles
from upstream_client import PARSE_ERRORS, UpstreamClient
from upstream_http import UpstreamError, fetch_json

logger = logging.getLogger(__name__)

ENVIROFACTS_BASE = "https://enviro.epa.gov/enviro/efservice"
EPA_TABLES = ("SF_SITES", "CERCLIS", "CERCLIS_SITES")

_TABLE_ERRORS = (UpstreamError, requests.exceptions.RequestException) + PARSE_ERRORS


def _first(record: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return value
    return None


def table_rows(data: Any, table: str) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in (table, "sites", "data"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    raise ValueError(f"{table} returned {type(data).__name__}, expected list")


def sites_within(
    lat: float,
    lng: float,
    rows: List[Dict[str, Any]],
    radius_miles: float,
    limit: int,
) -> List[Dict[str, Any]]:
    """Nearest-first sites inside the radius.  Rows without coordinates are skipped."""
    sites = []
    for row in rows:
        try:
            site_lat = float(_first(row, "LATITUDE", "latitude", "LAT", "lat") or 0)
            site_lng = float(_first(row, "LONGITUDE", "longitude", "LON", "lng", "LNG") or 0)
        except (TypeError, ValueError):
            continue
        if not site_lat or not site_lng:
            continue
        distance = haversine_miles(lat, lng, site_lat, site_lng)
        if distance > radius_miles:
            continue
        sites.append({
            "name": _first(row, "SITE_NAME", "site_name", "NAME", "name", "SITE") or "Unknown Site",
            "status": _first(row, "STATUS", "status"),
            "city": _first(row, "CITY", "city"),
            "state": _first(row, "STATE", "state"),
            "distance": round(distance, 1),
        })
    sites.sort(key=lambda s: s["distance"])
    return sites[:limit]


class SuperfundClient(UpstreamClient):
    domain = "superfund"
    service = "epa_envirofacts"
    result_type = SuperfundResult
    failure_message = "Superfund site data unavailable"

    @property
    def cache(self) -> TTLCache:
        if self._cache is None:
            self._cache = get_cache(self.domain, ttl_seconds=SUPERFUND_CACHE_TTL)
        return self._cache

    def _radius(self, radius_miles: Optional[float]) -> float:
        return CONFIG.radii.superfund_miles if radius_miles is None else radius_miles

    def cache_key(self, lat: float, lng: float, radius_miles: Optional[float] = None) -> str:
        return coordinate_key(lat, lng, self._radius(radius_miles))

    def fetch(self, lat: float, lng: float, radius_miles: Optional[float] = None,
              force_refresh: bool = False) -> SuperfundResult:
        if not force_refresh:
            return super().fetch(lat, lng, radius_miles)

        logger.info("[superfund] force refresh for %.5f,%.5f", lat, lng)
        result = self._resolve(lat, lng, radius_miles)
        self.cache.set(self.cache_key(lat, lng, radius_miles), result,
                       ttl=self.cache.ttl_for_value(result))
        return result

    def _query(self, lat: float, lng: float, radius_miles: Optional[float] = None) -> SuperfundResult:
        radius = self._radius(radius_miles)
        errors: List[str] = []

        for table in EPA_TABLES:
            url = f"{ENVIROFACTS_BASE}/{table}/ROWS/0:1000/JSON"
            try:
                rows = table_rows(fetch_json(self.service, table.lower(), url), table)
            except _TABLE_ERRORS as e:
                logger.warning("[superfund] %s failed: %s", table, e)
                errors.append(f"{table}: {e}")
                continue

            sites = sites_within(lat, lng, rows, radius, CONFIG.limits.superfund)
            logger.info("[superfund] %s: %d rows, %d within %g mi", table, len(rows), len(sites), radius)
            if sites:
                return SuperfundResult.make_found(
                    f"Found {len(sites)} Superfund site(s) within {radius:g} miles",
                    sites=sites,
                    radius_miles=radius,
                    source=table,
                )

        if len(errors) == len(EPA_TABLES):
            return SuperfundResult.make_failed(
                error="; ".join(errors),
                message=self.failure_message,
                radius_miles=radius,
            )
        return SuperfundResult.make_not_found(
            f"No Superfund sites found within {radius:g} miles",
            radius_miles=radius,
        )


_client = SuperfundClient()


def get_superfund_sites(lat: float, lng: float, radius_miles: Optional[float] = None,
                        force_refresh: bool = False) -> SuperfundResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng, radius_miles, force_refresh=force_refresh)


def clear_superfund_cache() -> None:
    _client.cache.clear()
