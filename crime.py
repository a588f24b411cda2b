"""
Neighborhood crime grades by ZIP code (RapidAPI "Crime Data By Zipcode").

The provider grades each ZIP (A+ through F) for overall, violent and
property crime and attaches a short risk narrative.  Lookups are keyed
by the 5-digit ZIP, either passed explicitly (the geocoder's postal_code
component) or extracted from the free-text address.  No ZIP means no
lookup: the result is FAILED without touching the network.
"""

import logging
import re
from typing import Any, Dict, Optional

from domain_results import CrimeResult
from enrichment_config import api_key, key_names
from upstream_client import UpstreamClient
from upstream_http import ConfigurationError, UpstreamError, fetch_json

logger = logging.getLogger(__name__)

CRIME_API_HOST = "crime-data-by-zipcode-api.p.rapidapi.com"
CRIME_API_URL = f"https://{CRIME_API_HOST}/crime_data"

_ZIP_RE = re.compile(r"\b(\d{5})\b")
# A ZIP is the last token of the address (optionally ZIP+4, optionally
# followed by the country), never a leading house number.
_TRAILING_ZIP_RE = re.compile(
    r"(?:^|[\s,])(\d{5})(?:-\d{4})?(?:\s*,?\s*(?:USA|United States))?\s*$",
    re.IGNORECASE,
)

NO_ZIP_MESSAGE = "Crime data unavailable - no ZIP code found for address"


def extract_zip(address: Optional[str]) -> Optional[str]:
    """ZIP at the end of the address, or None (house numbers never count)."""
    if not address:
        return None
    m = _TRAILING_ZIP_RE.search(address.strip())
    return m.group(1) if m else None


def _resolve_zip(address: Optional[str], zip_code: Optional[str]) -> Optional[str]:
    if zip_code:
        m = _ZIP_RE.search(str(zip_code))
        if m:
            return m.group(1)
    return extract_zip(address)


def parse_crime_grades(data: Dict[str, Any]) -> Dict[str, Optional[str]]:
    overall = data.get("Overall")
    if not isinstance(overall, dict):
        raise ValueError("crime response has no 'Overall' block")
    return {
        "overall_grade": overall.get("Overall Crime Grade"),
        "violent_crime_grade": overall.get("Violent Crime Grade"),
        "property_crime_grade": overall.get("Property Crime Grade"),
        "risk_level": overall.get("Risk"),
        "risk_detail": overall.get("Risk Detail") or overall.get("Fact"),
    }


class CrimeClient(UpstreamClient):
    domain = "crime"
    service = "rapidapi_crime"
    result_type = CrimeResult
    failure_message = "Crime data unavailable"

    def precheck(self, address: Optional[str] = None, zip_code: Optional[str] = None):
        resolved = _resolve_zip(address, zip_code)
        if not resolved:
            return CrimeResult.make_failed(
                error="No ZIP code found in address",
                message=NO_ZIP_MESSAGE,
            )
        if not api_key("rapidapi"):
            raise ConfigurationError(
                "Crime lookups require RAPIDAPI_KEY",
                missing_keys=key_names("rapidapi"),
            )
        return None

    def cache_key(self, address: Optional[str] = None, zip_code: Optional[str] = None) -> str:
        return _resolve_zip(address, zip_code)

    def _query(self, address: Optional[str] = None, zip_code: Optional[str] = None) -> CrimeResult:
        resolved = _resolve_zip(address, zip_code)
        data = fetch_json(
            self.service, "crime_data", CRIME_API_URL,
            params={"zip": resolved},
            headers={
                "x-rapidapi-key": api_key("rapidapi"),
                "x-rapidapi-host": CRIME_API_HOST,
            },
        )
        if not isinstance(data, dict):
            raise ValueError("crime response is not an object")
        if data.get("success") is False:
            raise UpstreamError(
                f"crime API reported failure for ZIP {resolved}: {data.get('message', '')}".rstrip(": "),
                service=self.service,
                provider_status="unsuccessful",
            )

        grades = parse_crime_grades(data)
        if not grades["overall_grade"]:
            return CrimeResult.make_not_found(
                f"No crime statistics published for ZIP {resolved}",
                zip_code=resolved,
            )
        return CrimeResult.make_found(
            f"Overall crime grade {grades['overall_grade']} for ZIP {resolved}",
            zip_code=resolved,
            **grades,
        )


_client = CrimeClient()


def get_crime_data(address: Optional[str] = None, zip_code: Optional[str] = None) -> CrimeResult:
    """Module-level convenience function."""
    return _client.fetch(address=address, zip_code=zip_code)
