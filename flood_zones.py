"""
FEMA National Flood Hazard Layer (NFHL) lookup.

Queries layer 28 (flood hazard zones) of the public NFHL ArcGIS service
for polygons around a coordinate.  The first query uses a ~500 m
envelope so a property near a zone boundary still sees the adjacent
zone; if that returns nothing, a pure point-in-polygon query is tried.

Each returned GeoJSON feature is annotated with:
  floodType        "100-year" | "500-year" | "none"
  riskLevel        "high" | "moderate" | "minimal"
  zoneCode         FEMA zone (A, AE, VE, X, ...)
  zoneDescription  "ZONE - SUBTYPE" when a subtype is present

Zone classification:
  A*, V*, or subtype mentioning "100"             -> 100-year / high
  X*, or subtype mentioning "500" or "0.2%"       -> 500-year / moderate
  anything else (D, open water, unmapped)         -> none / minimal
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from domain_results import FloodResult
from enrichment_config import CONFIG
from geo_math import bounding_envelope, coordinate_key
from upstream_client import UpstreamClient
from upstream_http import check_arcgis_error, fetch_json

logger = logging.getLogger(__name__)

FEMA_LAYER_URL = "https://hazards.fema.gov/arcgis/rest/services/public/NFHL/MapServer/28"
FEMA_QUERY_URL = f"{FEMA_LAYER_URL}/query"

_OUT_FIELDS = "FLD_ZONE,ZONE_SUBTY,SFHA_TF"

_RISK_ORDER = {"high": 3, "moderate": 2, "minimal": 1}


def classify_zone(zone: str, subtype: str) -> Tuple[str, str]:
    """Return (floodType, riskLevel) for a FEMA zone code and subtype."""
    zone = (zone or "").strip().upper()
    subtype = (subtype or "").upper()
    if re.match(r"^[AV]", zone) or "100" in subtype:
        return "100-year", "high"
    if re.match(r"^X", zone) or "500" in subtype or "0.2%" in subtype:
        return "500-year", "moderate"
    return "none", "minimal"


def annotate_feature(feature: Dict[str, Any]) -> Dict[str, Any]:
    props = dict(feature.get("properties") or {})
    zone = props.get("FLD_ZONE") or props.get("ZONE") or ""
    subtype = props.get("ZONE_SUBTY") or ""
    flood_type, risk_level = classify_zone(zone, subtype)
    props.update({
        "floodType": flood_type,
        "riskLevel": risk_level,
        "zoneCode": zone,
        "zoneDescription": f"{zone} - {subtype}" if subtype else zone,
    })
    return {
        "type": "Feature",
        "geometry": feature.get("geometry"),
        "properties": props,
    }


def highest_risk(features: List[Dict[str, Any]]) -> Optional[str]:
    levels = [f["properties"]["riskLevel"] for f in features]
    if not levels:
        return None
    return max(levels, key=lambda lvl: _RISK_ORDER[lvl])


class FloodZoneClient(UpstreamClient):
    domain = "flood"
    service = "fema"
    result_type = FloodResult
    failure_message = "Flood zone data unavailable - FEMA API call failed"

    def cache_key(self, lat: float, lng: float) -> str:
        return coordinate_key(lat, lng)

    def _base_params(self) -> Dict[str, str]:
        return {
            "f": "geojson",
            "inSR": "4326",
            "outSR": "4326",
            "spatialRel": "esriSpatialRelIntersects",
            "outFields": _OUT_FIELDS,
            "returnGeometry": "true",
            "where": "1=1",
        }

    def _query_features(self, endpoint: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        data = fetch_json(self.service, endpoint, FEMA_QUERY_URL, params=params)
        data = check_arcgis_error(data, self.service, endpoint)
        return data.get("features") or []

    def _query(self, lat: float, lng: float) -> FloodResult:
        env = bounding_envelope(lat, lng, CONFIG.radii.flood_envelope_m)
        params = self._base_params()
        params.update({
            "geometry": env.to_esri_json(),
            "geometryType": "esriGeometryEnvelope",
        })
        features = self._query_features("nfhl_envelope", params)
        mode = "envelope"

        if not features:
            logger.info("[flood] envelope empty at %.5f,%.5f; trying point query", lat, lng)
            params = self._base_params()
            params.update({
                "geometry": f"{lng},{lat}",
                "geometryType": "esriGeometryPoint",
            })
            features = self._query_features("nfhl_point", params)
            mode = "point"

        annotated = [annotate_feature(f) for f in features]
        collection = {"type": "FeatureCollection", "features": annotated}

        if not annotated:
            return FloodResult.make_not_found(
                "No FEMA flood zone mapped at this location",
                flood_zones=collection,
                query_mode=mode,
            )

        risk = highest_risk(annotated)
        zones = sorted({f["properties"]["zoneCode"] for f in annotated if f["properties"]["zoneCode"]})
        return FloodResult.make_found(
            f"FEMA flood zone {', '.join(zones) or 'unknown'} ({risk} risk)",
            flood_zones=collection,
            highest_risk=risk,
            query_mode=mode,
        )


_client = FloodZoneClient()


def get_flood_zones(lat: float, lng: float) -> FloodResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng)


def get_flood_layer_info() -> Dict[str, Any]:
    """FEMA layer 28 metadata (field list, extent, service version)."""
    return check_arcgis_error(
        fetch_json("fema", "nfhl_layer_info", FEMA_LAYER_URL, params={"f": "json"}),
        "fema", "nfhl_layer_info",
    )
