"""
Green space near an address: CA State Parks + Google Places parks.

Two independent sources are merged into one nearest-first list:

  - California State Parks ArcGIS layer, queried over a 50 km envelope.
    Park positions are the centroid of the first polygon ring (or the
    point geometry for point features).
  - Google Places nearby search, type=park, ~31 mile radius.

Each source fails on its own; its error is reported alongside the other
source's parks (stateParksError / googleParksError).  The domain is
FAILED only when both sources fail.  A missing Places key fails the
whole domain up front, like the schools and hospitals clients.

Limitations:
  - Ring centroids are vertex averages, not area-weighted; large
    irregular parks can place the centroid well inside the boundary, so
    "distance" is to the park's middle, not its nearest edge.
  - The State Parks layer covers California only; elsewhere the list is
    Google-only.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from domain_results import GreenSpaceResult
from enrichment_config import CONFIG, api_key
from geo_math import bounding_envelope, coordinate_key, rounded_distance
from nearby_places import search_places_nearby
from upstream_client import PARSE_ERRORS, UpstreamClient
from upstream_http import UpstreamError, check_arcgis_error, fetch_json

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

CA_STATE_PARKS_URL = (
    "https://services.arcgis.com/QyETib8tONr0z1x0/arcgis/rest/services/"
    "California_State_Parks/FeatureServer/0"
)

SOURCE_STATE_PARKS = "CA State Parks"
SOURCE_GOOGLE = "Google Places"

_SOURCE_ERRORS = (UpstreamError, requests.exceptions.RequestException) + PARSE_ERRORS


# =============================================================================
# GEOMETRY
# =============================================================================

def feature_position(geometry: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """(lat, lng) for an ArcGIS polygon or point geometry, or None."""
    if not geometry:
        return None
    rings = geometry.get("rings")
    if rings and rings[0]:
        ring = rings[0]
        lng = sum(pt[0] for pt in ring) / len(ring)
        lat = sum(pt[1] for pt in ring) / len(ring)
        return lat, lng
    if geometry.get("x") is not None and geometry.get("y") is not None:
        return geometry["y"], geometry["x"]
    return None


# =============================================================================
# SOURCES
# =============================================================================

def fetch_state_parks(lat: float, lng: float) -> List[Dict[str, Any]]:
    env = bounding_envelope(lat, lng, CONFIG.radii.state_parks_envelope_m)
    params = {
        "f": "json",
        "geometry": env.to_esri_json(),
        "geometryType": "esriGeometryEnvelope",
        "inSR": "4326",
        "outSR": "4326",
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": "*",
        "returnGeometry": "true",
        "where": "1=1",
    }
    data = fetch_json("ca_state_parks", "parks_envelope", f"{CA_STATE_PARKS_URL}/query", params=params)
    features = check_arcgis_error(data, "ca_state_parks", "parks_envelope").get("features") or []

    parks = []
    for feature in features:
        pos = feature_position(feature.get("geometry"))
        if pos is None:
            continue
        attrs = feature.get("attributes") or {}
        parks.append({
            "name": attrs.get("NAME") or attrs.get("PARK_NAME") or "Unknown Park",
            "type": attrs.get("TYPE") or attrs.get("PARK_TYPE"),
            "county": attrs.get("COUNTY"),
            "region": attrs.get("REGION"),
            "source": SOURCE_STATE_PARKS,
            "lat": pos[0],
            "lng": pos[1],
            "distance": rounded_distance(lat, lng, pos[0], pos[1]),
        })
    return parks


def fetch_google_parks(lat: float, lng: float, key: str) -> List[Dict[str, Any]]:
    parks = []
    for place in search_places_nearby(lat, lng, "park", CONFIG.radii.parks_miles, key):
        loc = (place.get("geometry") or {}).get("location") or {}
        if loc.get("lat") is None or loc.get("lng") is None:
            continue
        parks.append({
            "name": place.get("name"),
            "address": place.get("vicinity") or place.get("formatted_address"),
            "rating": place.get("rating"),
            "source": SOURCE_GOOGLE,
            "lat": loc["lat"],
            "lng": loc["lng"],
            "distance": rounded_distance(lat, lng, loc["lat"], loc["lng"]),
        })
    return parks


# =============================================================================
# CLIENT
# =============================================================================

class GreenSpaceClient(UpstreamClient):
    domain = "greenSpace"
    service = "green_space"
    result_type = GreenSpaceResult
    failure_message = "Green space data unavailable"

    def precheck(self, lat: float, lng: float):
        if api_key("places"):
            return None
        return GreenSpaceResult.make_failed(
            error="Google Maps API key not configured",
            message="Green space data unavailable - Google Maps API key missing",
            radius_miles=CONFIG.radii.parks_miles,
        )

    def cache_key(self, lat: float, lng: float) -> str:
        return coordinate_key(lat, lng)

    def _query(self, lat: float, lng: float) -> GreenSpaceResult:
        radius = CONFIG.radii.parks_miles

        state_parks: List[Dict[str, Any]] = []
        state_error = None
        try:
            state_parks = fetch_state_parks(lat, lng)
        except _SOURCE_ERRORS as e:
            logger.warning("[green_space] CA State Parks query failed: %s", e)
            state_error = str(e)

        google_parks: List[Dict[str, Any]] = []
        google_error = None
        try:
            google_parks = fetch_google_parks(lat, lng, api_key("places"))
        except _SOURCE_ERRORS as e:
            logger.warning("[green_space] Google Places park search failed: %s", e)
            google_error = str(e)

        fields = dict(
            radius_miles=radius,
            state_parks_count=len(state_parks),
            google_parks_count=len(google_parks),
            state_parks_error=state_error,
            google_parks_error=google_error,
        )

        if state_error and google_error:
            return GreenSpaceResult.make_failed(
                error=f"state parks: {state_error}; google: {google_error}",
                message=self.failure_message,
                **fields,
            )

        all_parks = sorted(state_parks + google_parks, key=lambda p: p["distance"])
        if not all_parks:
            return GreenSpaceResult.make_not_found(
                f"No parks found within {radius:g} miles", **fields,
            )

        nearest = all_parks[0]
        return GreenSpaceResult.make_found(
            f"Nearest park is {nearest['name']} "
            f"({nearest['distance']} miles away, {nearest['source']})",
            parks=all_parks[:CONFIG.limits.parks],
            nearest_park=nearest,
            **fields,
        )


_client = GreenSpaceClient()


def get_green_space(lat: float, lng: float) -> GreenSpaceResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng)
