"""
Nearby schools and hospitals via the Google Places Nearby Search API.

Both domains share one query shape: a fixed-radius search around the
property (schools 5 mi, hospitals 10 mi), distances recomputed locally
with haversine, sorted ascending and truncated to the nearest 10.

A missing Places key short-circuits to FAILED without any network call
and without caching, so the domain recovers as soon as the key is set.
"""

import logging
from typing import Any, Dict, List, Optional

from domain_results import HospitalsResult, NearbyPlacesResult, SchoolsResult
from enrichment_config import CONFIG, api_key
from geo_math import coordinate_key, miles_to_meters, rounded_distance
from upstream_client import UpstreamClient
from upstream_http import UpstreamError, fetch_json

logger = logging.getLogger(__name__)

PLACES_NEARBY_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

_ACCEPTED_STATUSES = {"OK", "ZERO_RESULTS"}


def search_places_nearby(
    lat: float,
    lng: float,
    place_type: str,
    radius_miles: float,
    key: str,
) -> List[Dict[str, Any]]:
    """Raw Places results for *place_type* within *radius_miles*.

    Raises:
        UpstreamError: transport/HTTP failure or a provider status other
            than OK / ZERO_RESULTS (REQUEST_DENIED, OVER_QUERY_LIMIT, ...).
    """
    data = fetch_json(
        "google_maps", "places_nearby", PLACES_NEARBY_URL,
        params={
            "location": f"{lat},{lng}",
            "radius": miles_to_meters(radius_miles),
            "type": place_type,
            "key": key,
        },
    )
    status = data.get("status", "") if isinstance(data, dict) else ""
    if status not in _ACCEPTED_STATUSES:
        detail = data.get("error_message", "") if isinstance(data, dict) else ""
        raise UpstreamError(
            f"Places API error: {status or 'no status'} {detail}".rstrip(),
            service="google_maps",
            provider_status=status,
        )
    return data.get("results") or []


def rank_places(
    lat: float,
    lng: float,
    places: List[Dict[str, Any]],
    limit: int,
) -> List[Dict[str, Any]]:
    """Nearest-first display entries, truncated to *limit*.

    Places without a geometry are dropped; they cannot be ranked.
    """
    ranked = []
    for place in places:
        loc = (place.get("geometry") or {}).get("location") or {}
        if "lat" not in loc or "lng" not in loc:
            continue
        ranked.append({
            "name": place.get("name"),
            "address": place.get("vicinity") or place.get("formatted_address"),
            "rating": place.get("rating"),
            "distance": rounded_distance(lat, lng, loc["lat"], loc["lng"]),
            "types": place.get("types") or [],
            "lat": loc["lat"],
            "lng": loc["lng"],
        })
    ranked.sort(key=lambda p: p["distance"])
    return ranked[:limit]


class NearbyPlacesClient(UpstreamClient):
    service = "google_maps"
    place_type: str = ""
    label: str = ""              # plural noun for messages
    default_radius_miles: float = 5.0
    limit: int = 10

    def _radius(self, radius_miles: Optional[float]) -> float:
        return self.default_radius_miles if radius_miles is None else radius_miles

    def precheck(self, lat: float, lng: float, radius_miles: Optional[float] = None):
        if api_key("places"):
            return None
        return self.result_type.make_failed(
            error="Google Maps API key not configured",
            message=f"{self.label.capitalize()[:-1]} data unavailable - Google Maps API key missing",
            radius_miles=self._radius(radius_miles),
        )

    def cache_key(self, lat: float, lng: float, radius_miles: Optional[float] = None) -> str:
        return coordinate_key(lat, lng, self._radius(radius_miles))

    def _query(self, lat: float, lng: float, radius_miles: Optional[float] = None) -> NearbyPlacesResult:
        radius = self._radius(radius_miles)
        raw = search_places_nearby(lat, lng, self.place_type, radius, api_key("places"))
        places = rank_places(lat, lng, raw, self.limit)
        if not places:
            return self.result_type.make_not_found(
                f"No {self.label} found within {radius:g} miles",
                radius_miles=radius,
            )
        return self.result_type.make_found(
            f"Found {len(places)} {self.label[:-1]}(s) within {radius:g} miles",
            places=places,
            radius_miles=radius,
        )


class SchoolsClient(NearbyPlacesClient):
    domain = "schools"
    result_type = SchoolsResult
    failure_message = "School data unavailable"
    place_type = "school"
    label = "schools"
    default_radius_miles = CONFIG.radii.schools_miles
    limit = CONFIG.limits.schools


class HospitalsClient(NearbyPlacesClient):
    domain = "hospitals"
    result_type = HospitalsResult
    failure_message = "Hospital data unavailable"
    place_type = "hospital"
    label = "hospitals"
    default_radius_miles = CONFIG.radii.hospitals_miles
    limit = CONFIG.limits.hospitals


_schools = SchoolsClient()
_hospitals = HospitalsClient()


def get_nearby_schools(lat: float, lng: float, radius_miles: Optional[float] = None) -> SchoolsResult:
    """Module-level convenience function."""
    return _schools.fetch(lat, lng, radius_miles)


def get_nearby_hospitals(lat: float, lng: float, radius_miles: Optional[float] = None) -> HospitalsResult:
    """Module-level convenience function."""
    return _hospitals.fetch(lat, lng, radius_miles)
