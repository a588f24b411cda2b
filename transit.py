"""
Nearest rail station across BART and Caltrain.

Two disjoint station inventories are merged:
  - BART, fetched from the BART legacy API (stn.aspx?cmd=stns).  Uses
    BART_API_KEY when set, otherwise BART's published public demo key;
    if the keyed call fails, one retry is made without a key.  The
    inventory itself is cached in the transit cache so each new
    coordinate does not refetch ~50 stations.
  - Caltrain, a static list of station platforms from the GTFS feed.

The globally nearest station (haversine) wins.  A BART outage degrades
to Caltrain-only with bartError set; it does not fail the domain.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from cache_store import MISS
from domain_results import TransitResult
from enrichment_config import api_key
from geo_math import coordinate_key, rounded_distance
from upstream_client import PARSE_ERRORS, UpstreamClient
from upstream_http import UpstreamError, fetch_json

logger = logging.getLogger(__name__)

BART_STATIONS_URL = "https://api.bart.gov/api/stn.aspx"

# BART publishes this key for public, non-commercial use.
BART_PUBLIC_KEY = "MW9S-E7SL-26DU-VV8V"

_INVENTORY_KEY = "inventory:bart"

CALTRAIN_STATIONS = [
    ("San Francisco (4th and King)", 37.776348, -122.394938),
    ("22nd Street", 37.757474, -122.392523),
    ("Bayshore", 37.710198, -122.401214),
    ("South San Francisco", 37.655238, -122.416523),
    ("San Bruno", 37.637238, -122.416523),
    ("Millbrae", 37.599238, -122.386523),
    ("Broadway", 37.486238, -122.348523),
    ("Burlingame", 37.579238, -122.344523),
    ("San Mateo", 37.568238, -122.324523),
    ("Hayward Park", 37.553238, -122.309523),
    ("Hillsdale", 37.537238, -122.299523),
    ("Belmont", 37.520238, -122.276523),
    ("San Carlos", 37.508238, -122.260523),
    ("Redwood City", 37.485238, -122.232523),
    ("Menlo Park", 37.454238, -122.181523),
    ("Palo Alto", 37.443238, -122.164523),
    ("California Avenue", 37.429238, -122.142523),
    ("San Antonio", 37.406238, -122.107523),
    ("Mountain View", 37.394238, -122.076523),
    ("Sunnyvale", 37.378238, -122.030523),
    ("Lawrence", 37.370238, -121.996523),
    ("Santa Clara", 37.353238, -121.936523),
    ("College Park", 37.342238, -121.914523),
    ("San Jose Diridon", 37.329238, -121.902523),
    ("Tamien", 37.314238, -121.884523),
    ("Capitol", 37.293238, -121.844523),
    ("Blossom Hill", 37.256238, -121.786523),
    ("Morgan Hill", 37.130238, -121.654523),
    ("San Martin", 37.085238, -121.610523),
    ("Gilroy", 37.006238, -121.568523),
]

_TRANSIT_ERRORS = (UpstreamError, requests.exceptions.RequestException) + PARSE_ERRORS


def caltrain_stations() -> List[Dict[str, Any]]:
    return [
        {"name": name, "system": "Caltrain", "abbreviation": None, "lat": lat, "lng": lng}
        for name, lat, lng in CALTRAIN_STATIONS
    ]


def extract_bart_stations(data: Any) -> List[Dict[str, Any]]:
    """Stations with usable coordinates from a stn.aspx JSON body.

    A single-station response comes back as an object, not a list.
    """
    raw: Any = []
    if isinstance(data, dict):
        root_stations = ((data.get("root") or {}).get("stations") or {})
        if isinstance(root_stations, dict) and "station" in root_stations:
            raw = root_stations["station"]
        elif "stations" in data:
            raw = data["stations"]
    elif isinstance(data, list):
        raw = data
    if isinstance(raw, dict):
        raw = [raw]

    stations = []
    for s in raw:
        try:
            lat = float(s.get("gtfs_latitude") or s.get("latitude") or 0)
            lng = float(s.get("gtfs_longitude") or s.get("longitude") or 0)
        except (TypeError, ValueError):
            continue
        if not lat or not lng:
            continue
        stations.append({
            "name": s.get("name") or s.get("abbr") or "Unknown Station",
            "system": "BART",
            "abbreviation": s.get("abbr") or s.get("code"),
            "lat": lat,
            "lng": lng,
        })
    return stations


def nearest_station(lat: float, lng: float, stations: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    best = None
    for s in stations:
        distance = rounded_distance(lat, lng, s["lat"], s["lng"])
        if best is None or distance < best["distance"]:
            best = {
                "name": s["name"],
                "system": s["system"],
                "abbreviation": s["abbreviation"],
                "distance": distance,
            }
    return best


class TransitClient(UpstreamClient):
    domain = "transit"
    service = "bart"
    result_type = TransitResult
    failure_message = "Transit data unavailable"

    def cache_key(self, lat: float, lng: float) -> str:
        return coordinate_key(lat, lng)

    def _fetch_bart(self, params: Dict[str, str], endpoint: str) -> List[Dict[str, Any]]:
        data = fetch_json(self.service, endpoint, BART_STATIONS_URL, params=params)
        return extract_bart_stations(data)

    def bart_inventory(self) -> List[Dict[str, Any]]:
        """BART stations, cached.  Raises when both keyed and keyless calls fail."""
        cached = self.cache.get(_INVENTORY_KEY)
        if cached is not MISS:
            return cached

        params = {"cmd": "stns", "json": "y", "key": api_key("bart") or BART_PUBLIC_KEY}
        try:
            stations = self._fetch_bart(params, "stations")
        except _TRANSIT_ERRORS as e:
            logger.info("[transit] keyed BART call failed (%s); retrying without key", e)
            stations = self._fetch_bart({"cmd": "stns", "json": "y"}, "stations_nokey")

        if stations:
            self.cache.set(_INVENTORY_KEY, stations)
        return stations

    def _query(self, lat: float, lng: float) -> TransitResult:
        bart: List[Dict[str, Any]] = []
        bart_error = None
        try:
            bart = self.bart_inventory()
        except _TRANSIT_ERRORS as e:
            logger.warning("[transit] BART station inventory unavailable: %s", e)
            bart_error = str(e)

        caltrain = caltrain_stations()
        nearest = nearest_station(lat, lng, bart + caltrain)
        fields = dict(
            bart_stations=len(bart),
            caltrain_stations=len(caltrain),
            bart_error=bart_error,
        )
        if nearest is None:
            return TransitResult.make_not_found(
                "No transit stations found with location data", **fields,
            )
        return TransitResult.make_found(
            f"Nearest {nearest['system']} station is {nearest['name']} "
            f"({nearest['distance']} miles away)",
            nearest_station=nearest,
            **fields,
        )


_client = TransitClient()


def get_transit_accessibility(lat: float, lng: float) -> TransitResult:
    """Module-level convenience function."""
    return _client.fetch(lat, lng)
