"""
Deep analysis: one address in, nine enrichment domains out.

    geocode (cached)  ->  concurrent fan-out  ->  fan-in AggregateAnalysis

All nine domains depend only on the geocoded coordinates (crime uses the
ZIP), so they run concurrently on a thread pool: wall-clock time is the
slowest domain, not the sum.  Each domain fails independently.  An
exception, a missing credential or a blown deadline in one domain
becomes that domain's FAILED result; the aggregate always resolves.

Only geocoding problems escape analyze(): without coordinates there is
nothing to fan out.

The optional summary step receives summarizable_data(), the domains
that were found without error, so provider error text never reaches
generated prose.
"""

import argparse
import json
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from crime import CrimeClient, get_crime_data
from domain_results import (
    CrimeResult, DomainResult, EarthquakeResult, FireResult, FloodResult,
    GreenSpaceResult, HospitalsResult, SchoolsResult, SuperfundResult,
    TransitResult,
)
from earthquake import EarthquakeClient, get_earthquake_risk
from enrichment_config import CONFIG
from fire_hazard import FireHazardClient, get_fire_hazard
from flood_zones import FloodZoneClient, get_flood_zones
from geocoding import GeocodeResult, GoogleGeocoder
from green_space import GreenSpaceClient, get_green_space
from hs_trace import get_trace, set_trace
from nearby_places import (
    HospitalsClient, SchoolsClient, get_nearby_hospitals, get_nearby_schools,
)
from superfund import SuperfundClient, get_superfund_sites
from transit import TransitClient, get_transit_accessibility
from upstream_http import ConfigurationError

logger = logging.getLogger(__name__)

# A domain call receives the geocode and the raw address.
DomainCall = Callable[[GeocodeResult, str], DomainResult]

SUMMARY_UNAVAILABLE = (
    "A written summary is not available right now. "
    "The detailed results for each category are shown below."
)


# =============================================================================
# Domain table
# =============================================================================

# name -> (result type, message used when the domain blows up in the pool)
DOMAIN_RESULT_TYPES: Dict[str, Tuple[Type[DomainResult], str]] = {
    "flood": (FloodResult, FloodZoneClient.failure_message),
    "fire": (FireResult, FireHazardClient.failure_message),
    "earthquake": (EarthquakeResult, EarthquakeClient.failure_message),
    "crime": (CrimeResult, CrimeClient.failure_message),
    "schools": (SchoolsResult, SchoolsClient.failure_message),
    "hospitals": (HospitalsResult, HospitalsClient.failure_message),
    "transit": (TransitResult, TransitClient.failure_message),
    "greenSpace": (GreenSpaceResult, GreenSpaceClient.failure_message),
    "superfund": (SuperfundResult, SuperfundClient.failure_message),
}

DOMAINS = tuple(DOMAIN_RESULT_TYPES)


def default_domain_calls() -> Dict[str, DomainCall]:
    # Lambdas look the convenience functions up at call time, so tests
    # can patch e.g. deep_analysis.get_fire_hazard.
    return {
        "flood": lambda g, a: get_flood_zones(g.lat, g.lng),
        "fire": lambda g, a: get_fire_hazard(g.lat, g.lng),
        "earthquake": lambda g, a: get_earthquake_risk(g.lat, g.lng),
        "crime": lambda g, a: get_crime_data(address=a, zip_code=g.zip_code),
        "schools": lambda g, a: get_nearby_schools(g.lat, g.lng),
        "hospitals": lambda g, a: get_nearby_hospitals(g.lat, g.lng),
        "transit": lambda g, a: get_transit_accessibility(g.lat, g.lng),
        "greenSpace": lambda g, a: get_green_space(g.lat, g.lng),
        "superfund": lambda g, a: get_superfund_sites(g.lat, g.lng),
    }


def failed_domain_result(name: str, error: str) -> DomainResult:
    result_type, message = DOMAIN_RESULT_TYPES[name]
    return result_type.make_failed(error=error, message=message)


def _is_error_key(key: str) -> bool:
    return key == "error" or key.endswith("Error")


def without_errors(value: Any) -> Any:
    """Copy of a to_dict() payload with error keys and failed sub-objects removed."""
    if isinstance(value, dict):
        return {
            k: without_errors(v)
            for k, v in value.items()
            if not _is_error_key(k)
            and not (isinstance(v, dict) and v.get("error") is not None)
        }
    if isinstance(value, list):
        return [without_errors(v) for v in value]
    return value


# =============================================================================
# Aggregate
# =============================================================================

@dataclass
class AggregateAnalysis:
    geocode: GeocodeResult
    data: Dict[str, DomainResult]

    def failed_domains(self):
        return [name for name, r in self.data.items() if r.is_failed]

    def summarizable_data(self) -> Dict[str, Dict[str, Any]]:
        """Domains safe to hand to the summarizer: found, no error.

        Partial failures inside a found domain (a BART outage, one park
        source down, a failed liquefaction query) are stripped too, so no
        provider error text reaches the prompt.
        """
        return {
            name: without_errors(r.to_dict())
            for name, r in self.data.items()
            if r.found and r.error is None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geocode": self.geocode.to_dict(),
            "data": {name: r.to_dict() for name, r in self.data.items()},
        }


# =============================================================================
# Orchestrator
# =============================================================================

class DeepAnalysisOrchestrator:
    def __init__(
        self,
        geocoder: Optional[GoogleGeocoder] = None,
        domain_calls: Optional[Dict[str, DomainCall]] = None,
        domain_timeout: Optional[float] = None,
    ):
        self.geocoder = geocoder or GoogleGeocoder()
        self.domain_calls = domain_calls or default_domain_calls()
        self.domain_timeout = (
            CONFIG.timeouts.domain if domain_timeout is None else domain_timeout
        )

    def _run_domain(self, parent_trace, name: str, fn: DomainCall,
                    geo: GeocodeResult, address: str) -> DomainResult:
        """Worker body: trace propagation, stage timing, error capture."""
        set_trace(parent_trace)
        try:
            if parent_trace is None:
                return self._call_domain(name, fn, geo, address)
            with parent_trace.stage(name) as rec:
                result = self._call_domain(name, fn, geo, address)
                rec.domain_status = result.status.value
                return result
        finally:
            set_trace(None)

    @staticmethod
    def _call_domain(name: str, fn: DomainCall, geo: GeocodeResult, address: str) -> DomainResult:
        try:
            return fn(geo, address)
        except ConfigurationError as e:
            logger.warning("[deep-analysis] %s not configured: %s", name, e)
            return failed_domain_result(name, str(e))
        except Exception as e:
            logger.exception("[deep-analysis] %s raised", name)
            return failed_domain_result(name, f"{type(e).__name__}: {e}")

    def fan_out(self, geo: GeocodeResult, address: str) -> Dict[str, DomainResult]:
        parent_trace = get_trace()
        results: Dict[str, DomainResult] = {}

        pool = ThreadPoolExecutor(
            max_workers=len(self.domain_calls),
            thread_name_prefix="deep-analysis",
        )
        try:
            futures = {
                name: pool.submit(self._run_domain, parent_trace, name, fn, geo, address)
                for name, fn in self.domain_calls.items()
            }
            deadline = time.monotonic() + self.domain_timeout
            for name, future in futures.items():
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    results[name] = future.result(timeout=remaining)
                except FutureTimeout:
                    logger.warning(
                        "[deep-analysis] %s exceeded %.0fs deadline",
                        name, self.domain_timeout,
                    )
                    results[name] = failed_domain_result(
                        name, f"timed out after {self.domain_timeout:g}s",
                    )
        finally:
            # Stragglers finish in the background (their HTTP timeouts
            # bound them); the response does not wait.
            pool.shutdown(wait=False, cancel_futures=True)

        return results

    def analyze(self, address: str) -> AggregateAnalysis:
        """Geocode *address* and gather all nine domains.

        Raises:
            ValueError: blank address, or GeocodingError (a ValueError)
                when the provider cannot resolve it.
            ConfigurationError: no geocoding key.
            UpstreamError: the geocoder could not be reached.
        """
        trace = get_trace()
        if trace:
            with trace.stage("geocode"):
                geo = self.geocoder.geocode(address)
        else:
            geo = self.geocoder.geocode(address)

        data = self.fan_out(geo, address)
        ordered = {name: data[name] for name in self.domain_calls}
        aggregate = AggregateAnalysis(geocode=geo, data=ordered)

        failed = aggregate.failed_domains()
        logger.info(
            "[deep-analysis] %r: %d/%d domains ok%s",
            address, len(ordered) - len(failed), len(ordered),
            f" (failed: {', '.join(failed)})" if failed else "",
        )
        return aggregate


def summarize(aggregate: AggregateAnalysis, address: str,
              summarizer: Optional[Callable[[str, Dict[str, Any]], Dict[str, str]]] = None) -> str:
    """Generated prose for the aggregate; never raises."""
    if summarizer is None:
        from gemini_client import generate_analysis_summary
        summarizer = generate_analysis_summary

    usable = aggregate.summarizable_data()
    if not usable:
        return SUMMARY_UNAVAILABLE
    try:
        trace = get_trace()
        if trace:
            with trace.stage("summary"):
                return summarizer(address, usable)["summary"]
        return summarizer(address, usable)["summary"]
    except Exception:
        logger.warning("[deep-analysis] summary generation failed", exc_info=True)
        return SUMMARY_UNAVAILABLE


_orchestrator: Optional[DeepAnalysisOrchestrator] = None


def get_orchestrator() -> DeepAnalysisOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeepAnalysisOrchestrator()
    return _orchestrator


def deep_analysis_with_summary(address: str) -> Dict[str, Any]:
    """Aggregate plus generated summary, in the /api/deep-analysis shape."""
    aggregate = get_orchestrator().analyze(address)
    out = aggregate.to_dict()
    out["summary"] = summarize(aggregate, address)
    return out


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Run the full enrichment fan-out for one address"
    )
    parser.add_argument("address", nargs="?", help="Street address to analyze")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Also generate the natural-language summary (needs GEMINI_API_KEY)",
    )
    args = parser.parse_args()

    if not args.address:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    from dotenv import load_dotenv
    load_dotenv()

    if args.summary:
        out = deep_analysis_with_summary(args.address)
    else:
        out = get_orchestrator().analyze(args.address).to_dict()
    print(json.dumps(out, indent=2))


if __name__ == "__main__":
    main()
