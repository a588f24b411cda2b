"""
Earthquake context: nearby faults/places (USGS) and liquefaction zones (CGS).

The two sub-queries fail independently.  Each produces its own
{found, message, error?} sub-object so a USGS outage does not blank the
liquefaction answer and vice versa; the overall result is FAILED only
when both are unavailable.

Like the fire layer, an empty CGS response means "not inside a mapped
liquefaction zone" and is reported as found with
isNotLiquefactionZone=True.
"""

import logging
from typing import Any, Dict, List

import requests

from domain_results import EarthquakeResult
from enrichment_config import CONFIG
from geo_math import bounding_envelope, coordinate_key
from upstream_client import PARSE_ERRORS, UpstreamClient
from upstream_http import UpstreamError, check_arcgis_error, fetch_json

logger = logging.getLogger(__name__)

USGS_PLACES_URL = "https://earthquake.usgs.gov/ws/geoserve/places.json"
CGS_LIQUEFACTION_URL = (
    "https://services.arcgis.com/ue9rwulIoeLAOUkX/arcgis/rest/services/"
    "CGS_Seismic_Hazard_Zones/FeatureServer/0"
)

_SUBQUERY_ERRORS = (UpstreamError, requests.exceptions.RequestException) + PARSE_ERRORS


def _usgs_features(data: Any) -> List[Dict[str, Any]]:
    """USGS returns features at the top level or under a per-type key."""
    if not isinstance(data, dict):
        raise ValueError("USGS geoserve returned a non-object body")
    if isinstance(data.get("features"), list):
        return data["features"]
    for value in data.values():
        if isinstance(value, dict) and isinstance(value.get("features"), list):
            return value["features"]
    return []


class EarthquakeClient(UpstreamClient):
    domain = "earthquake"
    service = "usgs"
    result_type = EarthquakeResult
    failure_message = "Earthquake risk data unavailable"

    def cache_key(self, lat: float, lng: float) -> str:
        return coordinate_key(lat, lng)

    def _faults(self, lat: float, lng: float) -> Dict[str, Any]:
        try:
            data = fetch_json(
                "usgs", "geoserve_places", USGS_PLACES_URL,
                params={"latitude": lat, "longitude": lng, "type": "neic-catalog"},
            )
            features = _usgs_features(data)
        except _SUBQUERY_ERRORS as e:
            logger.warning("[earthquake] USGS query failed: %s", e)
            return {
                "found": False,
                "nearbyFaults": [],
                "error": str(e),
                "message": "Fault data unavailable - API call failed",
            }

        nearby = [
            {
                "name": (f.get("properties") or {}).get("name") or "Unknown fault",
                "distance": (f.get("properties") or {}).get("distance"),
            }
            for f in features[:CONFIG.limits.faults]
        ]
        return {
            "found": bool(nearby),
            "nearbyFaults": nearby,
            "message": (
                f"Found {len(nearby)} nearby fault(s)" if nearby
                else "No nearby faults identified"
            ),
        }

    def _liquefaction(self, lat: float, lng: float) -> Dict[str, Any]:
        env = bounding_envelope(lat, lng, CONFIG.radii.liquefaction_envelope_m)
        params = {
            "f": "json",
            "geometry": env.to_esri_json(),
            "geometryType": "esriGeometryEnvelope",
            "inSR": "4326",
            "spatialRel": "esriSpatialRelIntersects",
            "outFields": "ZONE_TYPE",
            "returnGeometry": "false",
            "where": "1=1",
        }
        try:
            data = fetch_json("cgs", "liquefaction_envelope", f"{CGS_LIQUEFACTION_URL}/query", params=params)
            features = check_arcgis_error(data, "cgs", "liquefaction_envelope").get("features") or []
        except _SUBQUERY_ERRORS as e:
            logger.warning("[earthquake] CGS liquefaction query failed: %s", e)
            return {
                "found": False,
                "zoneType": None,
                "error": str(e),
                "message": "Liquefaction zone data unavailable - API call failed",
            }

        if not features:
            return {
                "found": True,
                "zoneType": None,
                "isNotLiquefactionZone": True,
                "message": "Not a liquefaction zone",
            }
        zone_type = (features[0].get("attributes") or {}).get("ZONE_TYPE") or "Unknown"
        return {
            "found": True,
            "zoneType": zone_type,
            "message": f"Liquefaction zone: {zone_type}",
        }

    def _query(self, lat: float, lng: float) -> EarthquakeResult:
        faults = self._faults(lat, lng)
        liquefaction = self._liquefaction(lat, lng)
        message = f"{faults['message']}; {liquefaction['message']}"

        if "error" in faults and "error" in liquefaction:
            return EarthquakeResult.make_failed(
                error=f"faults: {faults['error']}; liquefaction: {liquefaction['error']}",
                message=self.failure_message,
                faults=faults,
                liquefaction=liquefaction,
            )
        return EarthquakeResult.make_found(message, faults=faults, liquefaction=liquefaction)


_client = EarthquakeClient()


def get_earthquake_risk(lat: float, lng: float) -> EarthquakeResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng)
