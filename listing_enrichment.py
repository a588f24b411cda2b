"""
Listing enrichment: run the deep-analysis fan-out for each search result
and condense it into one-line card bullets.

Listings are processed concurrently on a bounded pool
(LISTING_ENRICHMENT_WORKERS), one listing per worker; each worker's
orchestrator fans out across its own domains.  Output order matches
input order regardless of completion order.

A listing whose analysis raises (bad address, geocoder down, missing
credentials) gets placeholder bullets and the batch carries on.  Input
dicts are never mutated; enriched copies are returned.
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from deep_analysis import AggregateAnalysis, DeepAnalysisOrchestrator, get_orchestrator
from domain_results import (
    CrimeResult, DomainResult, EarthquakeResult, FireResult, FloodResult,
    GreenSpaceResult, NearbyPlacesResult, SuperfundResult, TransitResult,
)
from enrichment_config import CONFIG
from hs_trace import get_trace, set_trace

logger = logging.getLogger(__name__)

BULLET_CATEGORIES = ("risk", "safety", "schools", "hospitals", "transit", "greenSpace")

PLACEHOLDER_BULLETS: Dict[str, str] = {
    "risk": "Risk data unavailable",
    "safety": "Safety data unavailable",
    "schools": "School data unavailable",
    "hospitals": "Hospital data unavailable",
    "transit": "Transit data unavailable",
    "greenSpace": "Green space data unavailable",
}


# =============================================================================
# Bullets
# =============================================================================

def _flood_part(r: FloodResult) -> str:
    if r.is_failed:
        return "Flood n/a"
    if not r.found:
        return "No mapped flood zone"
    zones = r.payload()["zones"]
    return f"Flood zone {', '.join(zones) or '?'} ({r.highest_risk})"


def _fire_part(r: FireResult) -> str:
    if r.is_failed:
        return "Fire n/a"
    return f"Fire {r.severity or 'Low'}"


def _superfund_part(r: SuperfundResult) -> str:
    if r.is_failed:
        return "Superfund n/a"
    return f"{r.count} Superfund site{'' if r.count == 1 else 's'}"


def _fault_part(r: EarthquakeResult) -> str:
    if r.is_failed:
        return "Faults n/a"
    return f"{r.fault_count} fault{'' if r.fault_count == 1 else 's'} nearby"


def risk_bullet(data: Dict[str, DomainResult]) -> str:
    parts = (
        _flood_part(data["flood"]),
        _fire_part(data["fire"]),
        _superfund_part(data["superfund"]),
        _fault_part(data["earthquake"]),
    )
    if all(p.endswith("n/a") for p in parts):
        return PLACEHOLDER_BULLETS["risk"]
    return " · ".join(parts)


def safety_bullet(r: CrimeResult) -> str:
    if r.is_failed:
        return PLACEHOLDER_BULLETS["safety"]
    if not r.found:
        return r.message
    grades = ", ".join(
        f"{label} {grade}"
        for label, grade in (("violent", r.violent_crime_grade), ("property", r.property_crime_grade))
        if grade
    )
    return f"Crime grade {r.overall_grade}" + (f" ({grades})" if grades else "")


def nearby_bullet(r: NearbyPlacesResult, category: str, noun: str) -> str:
    if r.is_failed:
        return PLACEHOLDER_BULLETS[category]
    if not r.found or not r.places:
        return r.message
    nearest = r.places[0]
    return (
        f"{r.count} {noun}{'' if r.count == 1 else 's'} within {r.radius_miles:g} mi; "
        f"nearest {nearest['name']} ({nearest['distance']} mi)"
    )


def transit_bullet(r: TransitResult) -> str:
    if r.is_failed:
        return PLACEHOLDER_BULLETS["transit"]
    if not r.found:
        return r.message
    s = r.nearest_station
    return f"{s['name']} {s['system']} {s['distance']} mi"


def green_space_bullet(r: GreenSpaceResult) -> str:
    if r.is_failed:
        return PLACEHOLDER_BULLETS["greenSpace"]
    if not r.found:
        return r.message
    return f"{r.nearest_park['name']} {r.nearest_park['distance']} mi away"


def build_bullets(aggregate: AggregateAnalysis) -> Dict[str, str]:
    d = aggregate.data
    return {
        "risk": risk_bullet(d),
        "safety": safety_bullet(d["crime"]),
        "schools": nearby_bullet(d["schools"], "schools", "school"),
        "hospitals": nearby_bullet(d["hospitals"], "hospitals", "hospital"),
        "transit": transit_bullet(d["transit"]),
        "greenSpace": green_space_bullet(d["greenSpace"]),
    }


# =============================================================================
# Pipeline
# =============================================================================

class ListingEnrichmentPipeline:
    def __init__(self, orchestrator: Optional[DeepAnalysisOrchestrator] = None,
                 max_workers: Optional[int] = None):
        self._orchestrator = orchestrator
        self.max_workers = max_workers or CONFIG.listing_workers

    @property
    def orchestrator(self) -> DeepAnalysisOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = get_orchestrator()
        return self._orchestrator

    def enrich_one(self, listing: Dict[str, Any]) -> Dict[str, Any]:
        out = copy.deepcopy(listing)
        bullets = dict(out.get("insightBullets") or {})
        address = out.get("address")
        try:
            if not address:
                raise ValueError("listing has no address")
            aggregate = self.orchestrator.analyze(address)
            bullets.update(build_bullets(aggregate))
            out["enriched"] = True
        except Exception as e:
            logger.warning("[enrichment] %r: analysis failed (%s: %s)",
                           address, type(e).__name__, e)
            bullets.update(PLACEHOLDER_BULLETS)
            out["enriched"] = False
        out["insightBullets"] = bullets
        return out

    def _enrich_in_thread(self, parent_trace, listing: Dict[str, Any]) -> Dict[str, Any]:
        set_trace(parent_trace)
        try:
            return self.enrich_one(listing)
        finally:
            set_trace(None)

    def enrich(self, listings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Enriched copies of *listings*, in input order."""
        if not listings:
            return []
        parent_trace = get_trace()
        workers = max(1, min(self.max_workers, len(listings)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="enrich") as pool:
            futures = [pool.submit(self._enrich_in_thread, parent_trace, listing)
                       for listing in listings]
            results = [f.result() for f in futures]

        ok = sum(1 for r in results if r["enriched"])
        logger.info("[enrichment] %d/%d listings enriched", ok, len(results))
        return results


def enrich_listings(listings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Module-level convenience function."""
    return ListingEnrichmentPipeline().enrich(listings)
