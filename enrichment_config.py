"""
Enrichment configuration for HomeSwipe.

Owns the cache lifetimes, search radii, result limits, and timeouts used
by the upstream data clients.  Values that operators may need to tune in
production are read from the environment once at import time; everything
else is a frozen dataclass default.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

DAY_SECONDS = 24 * 60 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class CachePolicy:
    """Per-domain cache lifetimes (seconds).

    Crime statistics and transit inventories change monthly; FEMA flood
    maps, hazard layers and facility lists revise rarely.
    """
    ttl_seconds: Dict[str, int] = field(default_factory=lambda: {
        "geocode": 30 * DAY_SECONDS,
        "crime": 30 * DAY_SECONDS,
        "transit": 30 * DAY_SECONDS,
        "flood": 90 * DAY_SECONDS,
        "fire": 90 * DAY_SECONDS,
        "earthquake": 90 * DAY_SECONDS,
        "schools": 90 * DAY_SECONDS,
        "hospitals": 90 * DAY_SECONDS,
        "greenSpace": 90 * DAY_SECONDS,
        "superfund": 90 * DAY_SECONDS,
    })
    failed_ttl_seconds: int = 600
    max_entries: Optional[int] = 5000

    def ttl_for(self, domain: str) -> int:
        return self.ttl_seconds.get(domain, 30 * DAY_SECONDS)


@dataclass(frozen=True)
class SearchRadii:
    """Spatial query sizes.  Envelopes in meters, place searches in miles."""
    flood_envelope_m: int = 500
    fire_envelope_m: int = 500
    liquefaction_envelope_m: int = 1000
    state_parks_envelope_m: int = 50_000
    schools_miles: float = 5.0
    hospitals_miles: float = 10.0
    parks_miles: float = 31.0
    superfund_miles: float = 10.0


@dataclass(frozen=True)
class ResultLimits:
    """Top-N truncation per domain."""
    schools: int = 10
    hospitals: int = 10
    parks: int = 20
    superfund: int = 10
    faults: int = 5


@dataclass(frozen=True)
class Timeouts:
    """Network deadlines (seconds)."""
    upstream_request: float = 12.0
    domain: float = 15.0


@dataclass(frozen=True)
class EnrichmentConfig:
    cache: CachePolicy
    radii: SearchRadii
    limits: ResultLimits
    timeouts: Timeouts
    listing_workers: int = 5
    user_agent: str = "HomeSwipe/1.0"


# =============================================================================
# Active configuration
# =============================================================================

_superfund_ttl_override = os.environ.get("SUPERFUND_CACHE_TTL_SECONDS")

CACHE_POLICY = CachePolicy(
    failed_ttl_seconds=_env_int("FAILED_RESULT_TTL_SECONDS", 600),
    max_entries=_env_int("CACHE_MAX_ENTRIES", 5000) or None,
)

# SUPERFUND_CACHE_TTL_SECONDS=0 disables superfund caching entirely.
SUPERFUND_CACHE_TTL: Optional[int] = (
    _env_int("SUPERFUND_CACHE_TTL_SECONDS", CACHE_POLICY.ttl_for("superfund"))
    if _superfund_ttl_override is not None
    else None
)

CONFIG = EnrichmentConfig(
    cache=CACHE_POLICY,
    radii=SearchRadii(),
    limits=ResultLimits(),
    timeouts=Timeouts(
        upstream_request=_env_float("UPSTREAM_TIMEOUT_SECONDS", 12.0),
        domain=_env_float("DOMAIN_TIMEOUT_SECONDS", 15.0),
    ),
    listing_workers=_env_int("LISTING_ENRICHMENT_WORKERS", 5),
)


# =============================================================================
# Credentials
# =============================================================================
# Read at call time (not import time) so tests and long-running workers
# pick up changes to the environment.

_KEY_ALIASES: Dict[str, Tuple[str, ...]] = {
    "geocode": ("GOOGLE_MAPS_API_KEY", "GOOGLE_GEOCODING_API_KEY"),
    "places": ("GOOGLE_MAPS_API_KEY", "GOOGLE_PLACES_API_KEY"),
    "rapidapi": ("RAPIDAPI_KEY",),
    "gemini": ("GEMINI_API_KEY", "API_KEY"),
    "bart": ("BART_API_KEY",),
}


def api_key(kind: str) -> Optional[str]:
    """Return the first configured credential for *kind*, or None."""
    for name in _KEY_ALIASES[kind]:
        value = os.environ.get(name)
        if value:
            return value
    return None


def key_names(kind: str) -> Tuple[str, ...]:
    return _KEY_ALIASES[kind]
