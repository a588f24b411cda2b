"""
CAL FIRE Fire Hazard Severity Zone (FHSZ) lookup.

Queries the FHSZ ArcGIS feature layer over a 500 m envelope.  When
several zones intersect, the most severe wins:

  Very High (4) > High (3) > Moderate (2) > Low (1)

An empty feature set is NOT a failure: the layer only maps hazard
zones, so "no polygon" means the point is outside every mapped zone.
That comes back as FOUND with severity "Low" and isUnclassified=True.
It says nothing stronger than "the dataset had no matching polygon".
"""

import logging
from typing import Any, Dict, List

from domain_results import FireResult
from enrichment_config import CONFIG
from geo_math import bounding_envelope, coordinate_key
from upstream_client import UpstreamClient
from upstream_http import check_arcgis_error, fetch_json

logger = logging.getLogger(__name__)

CAL_FIRE_FHSZ_URL = (
    "https://services3.arcgis.com/T4QMspbfLg3qTGWY/arcgis/rest/services/"
    "Fire_Hazard_Severity_Zones/FeatureServer/0"
)

SEVERITY_RANK = {"Very High": 4, "High": 3, "Moderate": 2, "Low": 1}

UNCLASSIFIED_MESSAGE = "Fire hazard severity: Low (not in a mapped high-risk fire zone)"


def most_severe(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Attributes of the highest-ranked zone (unknown classes rank 0)."""
    attrs = [f.get("attributes") or {} for f in features]
    return max(attrs, key=lambda a: SEVERITY_RANK.get(a.get("HAZ_CLASS"), 0))


class FireHazardClient(UpstreamClient):
    domain = "fire"
    service = "calfire"
    result_type = FireResult
    failure_message = "Fire hazard data unavailable - API call failed"

    def cache_key(self, lat: float, lng: float) -> str:
        return coordinate_key(lat, lng)

    def _query(self, lat: float, lng: float) -> FireResult:
        env = bounding_envelope(lat, lng, CONFIG.radii.fire_envelope_m)
        params = {
            "f": "json",
            "geometry": env.to_esri_json(),
            "geometryType": "esriGeometryEnvelope",
            "inSR": "4326",
            "spatialRel": "esriSpatialRelIntersects",
            "outFields": "FHSZ,HAZ_CLASS",
            "returnGeometry": "false",
            "where": "1=1",
        }
        data = fetch_json(self.service, "fhsz_envelope", f"{CAL_FIRE_FHSZ_URL}/query", params=params)
        data = check_arcgis_error(data, self.service, "fhsz_envelope")
        features = data.get("features") or []

        if not features:
            return FireResult.make_found(
                UNCLASSIFIED_MESSAGE,
                severity="Low",
                zone=None,
                is_unclassified=True,
            )

        top = most_severe(features)
        severity = top.get("HAZ_CLASS") or "Unknown"
        zone = top.get("FHSZ")
        return FireResult.make_found(
            f"Fire hazard severity: {severity}",
            severity=severity,
            zone=str(zone) if zone is not None else None,
        )


_client = FireHazardClient()


def get_fire_hazard(lat: float, lng: float) -> FireResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng)
