"""
Address geocoding via the Google Geocoding API.

Resolves a free-text address to a GeocodeResult (coordinates, place ID,
normalized address, and the locality/county/postal-code components the
crime client and listing bullets use).  Results are cached for 30 days
keyed by the whitespace-normalized, lowercased address.

Unlike the enrichment clients, geocoding failures raise: every
downstream domain depends on the coordinates, so there is nothing to
degrade to.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cache_store import MISS, TTLCache, get_cache
from enrichment_config import api_key, key_names
from hs_trace import get_trace
from upstream_http import ConfigurationError, fetch_json

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GeocodingError(ValueError):
    """The provider could not resolve the address (ZERO_RESULTS etc.)."""

    def __init__(self, address: str, provider_status: str, detail: str = ""):
        msg = f"Geocoding failed: {provider_status}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
        self.address = address
        self.provider_status = provider_status


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lng: float
    place_id: Optional[str]
    normalized_address: str
    city: Optional[str] = None
    county: Optional[str] = None
    zip_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "placeId": self.place_id,
            "normalizedAddress": self.normalized_address,
            "city": self.city,
            "county": self.county,
            "zipCode": self.zip_code,
        }


def normalize_address_key(address: str) -> str:
    return re.sub(r"\s+", " ", address.strip().lower())


def _component(components: List[Dict[str, Any]], kind: str) -> Optional[str]:
    for comp in components:
        if kind in comp.get("types", []):
            return comp.get("long_name")
    return None


def parse_geocode_response(address: str, data: Dict[str, Any]) -> GeocodeResult:
    status = data.get("status", "")
    if status != "OK" or not data.get("results"):
        raise GeocodingError(address, status or "EMPTY", data.get("error_message", ""))

    top = data["results"][0]
    location = top["geometry"]["location"]
    components = top.get("address_components", [])
    return GeocodeResult(
        lat=float(location["lat"]),
        lng=float(location["lng"]),
        place_id=top.get("place_id"),
        normalized_address=top.get("formatted_address", address).lower(),
        city=_component(components, "locality"),
        county=_component(components, "administrative_area_level_2"),
        zip_code=_component(components, "postal_code"),
    )


class GoogleGeocoder:
    """Cached address -> coordinate resolution."""

    service = "google_maps"

    def __init__(self, cache: Optional[TTLCache] = None):
        self._cache = cache

    @property
    def cache(self) -> TTLCache:
        if self._cache is None:
            self._cache = get_cache("geocode")
        return self._cache

    def geocode(self, address: str) -> GeocodeResult:
        """Resolve *address*.

        Raises:
            ValueError: the address is blank.
            ConfigurationError: no geocoding key is configured.
            GeocodingError: the provider returned no usable result.
            UpstreamError: the provider could not be reached.
        """
        if not address or not address.strip():
            raise ValueError("address is required")

        key = normalize_address_key(address)
        cached = self.cache.get(key)
        if cached is not MISS:
            trace = get_trace()
            if trace:
                trace.record_cache_hit(self.service, "geocode")
            logger.info("[geocode] cache hit for %r", key)
            return cached

        google_key = api_key("geocode")
        if not google_key:
            raise ConfigurationError(
                "Geocoding requires a Google Maps API key",
                missing_keys=key_names("geocode"),
            )

        def _lookup() -> GeocodeResult:
            data = fetch_json(
                self.service, "geocode", GEOCODE_URL,
                params={"address": address, "key": google_key},
            )
            result = parse_geocode_response(address, data)
            logger.info(
                "[geocode] %r -> (%.5f, %.5f) %s",
                address, result.lat, result.lng, result.normalized_address,
            )
            return result

        return self.cache.get_or_compute(key, _lookup)


_geocoder = GoogleGeocoder()


def geocode_address(address: str) -> GeocodeResult:
    """Module-level convenience function."""
    return _geocoder.geocode(address)
