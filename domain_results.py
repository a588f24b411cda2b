"""
Typed results for the enrichment domains.

Every upstream client returns a DomainResult subclass, never raises past
its boundary (except for missing credentials).  A result is exactly one
of three outcomes:

  FOUND      the provider answered and there is something to show
  NOT_FOUND  the provider answered but nothing matched the query
  FAILED     the provider could not be reached or returned garbage

Every result carries a display-ready ``message``; ``error`` is present
only on FAILED.  to_dict() produces the camelCase JSON shape the
front end consumes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional


class ResultStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class DomainResult:
    status: ResultStatus
    message: str
    error: Optional[str] = None

    def __post_init__(self):
        if (self.status == ResultStatus.FAILED) != (self.error is not None):
            raise ValueError(
                f"{type(self).__name__}: error must be set exactly when status is FAILED "
                f"(status={self.status.value}, error={self.error!r})"
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def make_found(cls, message: str, **fields):
        return cls(status=ResultStatus.FOUND, message=message, **fields)

    @classmethod
    def make_not_found(cls, message: str, **fields):
        return cls(status=ResultStatus.NOT_FOUND, message=message, **fields)

    @classmethod
    def make_failed(cls, error: str, message: str, **fields):
        return cls(status=ResultStatus.FAILED, message=message, error=error, **fields)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def found(self) -> bool:
        return self.status == ResultStatus.FOUND

    @property
    def is_failed(self) -> bool:
        return self.status == ResultStatus.FAILED

    def payload(self) -> Dict[str, Any]:
        """Domain-specific fields in wire format."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"found": self.found}
        d.update(self.payload())
        d["message"] = self.message
        if self.error is not None:
            d["error"] = self.error
        return d


# =============================================================================
# Hazard domains
# =============================================================================

def empty_feature_collection() -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": []}


@dataclass
class FloodResult(DomainResult):
    flood_zones: Dict[str, Any] = field(default_factory=empty_feature_collection)
    highest_risk: Optional[str] = None
    query_mode: Optional[str] = None  # "envelope" | "point"

    def payload(self):
        return {
            "floodZones": self.flood_zones,
            "highestRisk": self.highest_risk,
            "zones": sorted({
                f.get("properties", {}).get("zoneCode")
                for f in self.flood_zones.get("features", [])
                if f.get("properties", {}).get("zoneCode")
            }),
        }


@dataclass
class FireResult(DomainResult):
    severity: Optional[str] = None
    zone: Optional[str] = None
    is_unclassified: bool = False

    def payload(self):
        d = {"severity": self.severity, "zone": self.zone}
        if self.is_unclassified:
            d["isUnclassified"] = True
        return d


@dataclass
class EarthquakeResult(DomainResult):
    # Sub-results keep their own found/error/message so one failing query
    # does not blank the other.
    faults: Dict[str, Any] = field(default_factory=dict)
    liquefaction: Dict[str, Any] = field(default_factory=dict)

    @property
    def fault_count(self) -> int:
        return len(self.faults.get("nearbyFaults") or [])

    def payload(self):
        return {"faults": self.faults, "liquefaction": self.liquefaction}


# =============================================================================
# Neighborhood domains
# =============================================================================

@dataclass
class CrimeResult(DomainResult):
    zip_code: Optional[str] = None
    overall_grade: Optional[str] = None
    violent_crime_grade: Optional[str] = None
    property_crime_grade: Optional[str] = None
    risk_level: Optional[str] = None
    risk_detail: Optional[str] = None

    def payload(self):
        return {
            "zipCode": self.zip_code,
            "overallGrade": self.overall_grade,
            "violentCrimeGrade": self.violent_crime_grade,
            "propertyCrimeGrade": self.property_crime_grade,
            "riskLevel": self.risk_level,
            "riskDetail": self.risk_detail,
        }


@dataclass
class NearbyPlacesResult(DomainResult):
    places: List[Dict[str, Any]] = field(default_factory=list)
    radius_miles: float = 0.0

    items_key: ClassVar[str] = "places"

    @property
    def count(self) -> int:
        return len(self.places)

    def payload(self):
        return {
            self.items_key: self.places,
            "count": self.count,
            "radiusMiles": self.radius_miles,
        }


@dataclass
class SchoolsResult(NearbyPlacesResult):
    items_key: ClassVar[str] = "schools"


@dataclass
class HospitalsResult(NearbyPlacesResult):
    items_key: ClassVar[str] = "hospitals"


@dataclass
class GreenSpaceResult(DomainResult):
    parks: List[Dict[str, Any]] = field(default_factory=list)
    nearest_park: Optional[Dict[str, Any]] = None
    radius_miles: float = 0.0
    state_parks_count: int = 0
    google_parks_count: int = 0
    state_parks_error: Optional[str] = None
    google_parks_error: Optional[str] = None

    def payload(self):
        d = {
            "nearestPark": self.nearest_park,
            "parks": self.parks,
            "count": len(self.parks),
            "radiusMiles": self.radius_miles,
            "stateParksCount": self.state_parks_count,
            "googleParksCount": self.google_parks_count,
        }
        if self.state_parks_error:
            d["stateParksError"] = self.state_parks_error
        if self.google_parks_error:
            d["googleParksError"] = self.google_parks_error
        return d


@dataclass
class TransitResult(DomainResult):
    nearest_station: Optional[Dict[str, Any]] = None
    bart_stations: int = 0
    caltrain_stations: int = 0
    bart_error: Optional[str] = None

    @property
    def distance(self) -> Optional[float]:
        return self.nearest_station["distance"] if self.nearest_station else None

    def payload(self):
        d = {
            "nearestStation": self.nearest_station,
            "distance": self.distance,
            "bartStations": self.bart_stations,
            "caltrainStations": self.caltrain_stations,
        }
        if self.bart_error:
            d["bartError"] = self.bart_error
        return d


@dataclass
class SuperfundResult(DomainResult):
    sites: List[Dict[str, Any]] = field(default_factory=list)
    radius_miles: float = 0.0
    source: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.sites)

    def payload(self):
        return {
            "sites": self.sites,
            "count": self.count,
            "radiusMiles": self.radius_miles,
            "source": self.source,
        }
