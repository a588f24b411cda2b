"""
Geometry helpers for spatial queries.

Pure functions, no I/O.  Distances are great-circle miles; envelope sizes
are meters converted to WGS84 degrees at the query latitude.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict

EARTH_RADIUS_MILES = 3959
METERS_PER_DEGREE_LAT = 111320
METERS_PER_MILE = 1609.34

# ~0.11 m at the equator; float noise below this collapses onto one key.
COORD_KEY_PRECISION = 6


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in miles."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def degrees_lat_per_meter(meters: float) -> float:
    return meters / METERS_PER_DEGREE_LAT


def degrees_lng_per_meter(meters: float, at_lat: float) -> float:
    # Undefined at the poles; listings never get near them.
    return meters / (METERS_PER_DEGREE_LAT * math.cos(math.radians(at_lat)))


def miles_to_meters(miles: float) -> int:
    """Places-search radius in whole meters."""
    return round(miles * METERS_PER_MILE)


def rounded_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine miles rounded to one decimal, the display precision."""
    return round(haversine_miles(lat1, lng1, lat2, lng2), 1)


@dataclass(frozen=True)
class Envelope:
    """Axis-aligned bounding box in WGS84 degrees."""
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def to_esri(self) -> Dict[str, Any]:
        return {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
            "spatialReference": {"wkid": 4326},
        }

    def to_esri_json(self) -> str:
        return json.dumps(self.to_esri())

    def contains(self, lat: float, lng: float) -> bool:
        return self.ymin <= lat <= self.ymax and self.xmin <= lng <= self.xmax


def bounding_envelope(lat: float, lng: float, radius_m: float) -> Envelope:
    """Square envelope extending *radius_m* from the point on each side."""
    d_lat = degrees_lat_per_meter(radius_m)
    d_lng = degrees_lng_per_meter(radius_m, lat)
    return Envelope(
        xmin=lng - d_lng,
        ymin=lat - d_lat,
        xmax=lng + d_lng,
        ymax=lat + d_lat,
    )


def coordinate_key(lat: float, lng: float, *extra: Any) -> str:
    """Cache key for a coordinate, rounded to COORD_KEY_PRECISION decimals.

    Extra parts (radius, flags) are appended verbatim so different query
    shapes at the same point get different entries.
    """
    parts = [
        f"{round(lat, COORD_KEY_PRECISION):.{COORD_KEY_PRECISION}f}",
        f"{round(lng, COORD_KEY_PRECISION):.{COORD_KEY_PRECISION}f}",
    ]
    parts.extend(str(e) for e in extra)
    return ",".join(parts)
