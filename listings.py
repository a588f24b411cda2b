"""
For-sale listing search via the Redfin Base API on RapidAPI.

    GET https://redfin-base.p.rapidapi.com/1.0/redfin/search/location/for-sale

The API has returned listings in more than one shape over time.  Each
record is classified by detect_variant() and normalized by the matching
parser.  Each parser reads only its own shape's fields.  A record that
matches no known shape, or lacks a price or street address in its
shape, raises ListingParseError and is skipped by search_listings()
(one bad record does not sink the page).

Normalized listings are dicts in the card shape the frontend renders:

    {id, title, price, address, description, listingUrl,
     specs{beds, baths, sqft}, insightBullets, matchInsights, analysis}

Listings are not cached: inventory is live.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote_plus

from enrichment_config import api_key, key_names
from upstream_http import ConfigurationError, UpstreamError, fetch_json

logger = logging.getLogger(__name__)

REDFIN_HOST = "redfin-base.p.rapidapi.com"
REDFIN_SEARCH_URL = f"https://{REDFIN_HOST}/1.0/redfin/search/location/for-sale"
REDFIN_WEB = "https://www.redfin.com"

MAX_LIMIT = 20

PROPERTY_TYPES = {
    "1": "House",
    "2": "Condo",
    "3": "Townhouse",
    "6": "Condo",
    "8": "Land",
}

# Rough monthly cost as a share of list price (mortgage, tax, insurance).
MONTHLY_COST_RATE = 0.004


class ListingParseError(ValueError):
    """A listing record matches no known shape or lacks a required field."""


# =============================================================================
# Variant detection
# =============================================================================

VARIANT_HOME_DATA = "home_data"  # {"homeData": {...}}
VARIANT_FLAT = "flat"            # boxed {"value": x} fields at top level

_FLAT_FIELDS = ("price", "streetLine")


def detect_variant(record: Any) -> str:
    if not isinstance(record, dict):
        raise ListingParseError(f"listing is {type(record).__name__}, expected object")
    if isinstance(record.get("homeData"), dict):
        return VARIANT_HOME_DATA
    if any(k in record for k in _FLAT_FIELDS):
        return VARIANT_FLAT
    raise ListingParseError(f"unrecognized listing keys: {sorted(record)[:8]}")


def response_records(data: Any) -> List[Any]:
    """Listing records from a root array or a ``{"data": [...]}`` wrapper."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"]
    raise ListingParseError("search response has no listing array")


# =============================================================================
# Variant parsers
# =============================================================================

@dataclass
class ParsedHome:
    """The fields every card needs, read from one known record shape."""
    property_id: Optional[str]
    url: Optional[str]
    price: int
    address: str
    beds: Any
    baths: Any
    sqft: int
    kind: str


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _required(home: Dict[str, Any], key: str, variant: str) -> Any:
    value = home.get(key)
    if value is None or value == "" or value == {}:
        raise ListingParseError(f"{variant} listing has no {key!r}")
    return value


def _boxed(home: Dict[str, Any], key: str, variant: str) -> Any:
    """Flat records wrap values as {"value": x}; a bare scalar is a schema change."""
    box = home.get(key)
    if box is None:
        return None
    if not isinstance(box, dict) or "value" not in box:
        raise ListingParseError(f"{variant} listing {key!r} is not a value object")
    return box["value"]


def _price(raw: Any, variant: str) -> int:
    price = _to_int(raw)
    if not price or price < 0:
        raise ListingParseError(f"{variant} listing price {raw!r} is not a positive number")
    return price


def _join_address(street: Any, city: Any, state: Any, zip_code: Any, variant: str) -> str:
    if not isinstance(street, str) or not street.strip():
        raise ListingParseError(f"{variant} listing has no street line")
    locality = " ".join(str(p) for p in (state, zip_code) if p)
    return ", ".join(p for p in (street.strip(), city, locality) if p)


def _kind(home: Dict[str, Any]) -> str:
    return PROPERTY_TYPES.get(str(home.get("propertyType")), "Property")


def _property_id(home: Dict[str, Any]) -> Optional[str]:
    pid = home.get("propertyId")
    return str(pid) if pid is not None else None


def parse_home_data(record: Dict[str, Any]) -> ParsedHome:
    """``{"homeData": {priceInfo.homePrice.int64Value, addressInfo{...}, sqftInfo.amount, ...}}``."""
    home = record["homeData"]
    price_info = _required(home, "priceInfo", VARIANT_HOME_DATA)
    home_price = price_info.get("homePrice") if isinstance(price_info, dict) else None
    if not isinstance(home_price, dict):
        raise ListingParseError("home_data listing priceInfo has no homePrice")

    info = _required(home, "addressInfo", VARIANT_HOME_DATA)
    if not isinstance(info, dict):
        raise ListingParseError("home_data listing addressInfo is not an object")

    sqft_info = home.get("sqftInfo") or {}
    return ParsedHome(
        property_id=_property_id(home),
        url=home.get("url"),
        price=_price(home_price.get("int64Value"), VARIANT_HOME_DATA),
        address=_join_address(info.get("formattedStreetLine"), info.get("city"),
                              info.get("state"), info.get("zip"), VARIANT_HOME_DATA),
        beds=home.get("beds") or 0,
        baths=home.get("baths") or 0,
        sqft=_to_int(sqft_info.get("amount")) or 0,
        kind=_kind(home),
    )


def parse_flat(record: Dict[str, Any]) -> ParsedHome:
    """Top-level ``{price{value}, streetLine{value}, city, state, zip, beds, baths, sqft{value}}``."""
    _required(record, "price", VARIANT_FLAT)
    _required(record, "streetLine", VARIANT_FLAT)
    return ParsedHome(
        property_id=_property_id(record),
        url=record.get("url"),
        price=_price(_boxed(record, "price", VARIANT_FLAT), VARIANT_FLAT),
        address=_join_address(_boxed(record, "streetLine", VARIANT_FLAT), record.get("city"),
                              record.get("state"), record.get("zip"), VARIANT_FLAT),
        beds=record.get("beds") or 0,
        baths=record.get("baths") or 0,
        sqft=_to_int(_boxed(record, "sqft", VARIANT_FLAT)) or 0,
        kind=_kind(record),
    )


def listing_url(url: Optional[str], location: str) -> str:
    if url:
        return url if url.startswith("http") else REDFIN_WEB + url
    return f"{REDFIN_WEB}/search?location={quote_plus(location)}"


def _plural(n: Any, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


# =============================================================================
# Normalization
# =============================================================================

def _card(home: ParsedHome, index: int, location: str) -> Dict[str, Any]:
    beds, baths, sqft, price, kind = home.beds, home.baths, home.sqft, home.price, home.kind

    description = f"{_plural(beds, 'bed')}, {_plural(baths, 'bath')} {kind.lower()}"
    if sqft:
        description += f" - {sqft:,} sq ft"

    return {
        "id": home.property_id or f"redfin-{index}",
        "title": f"{beds} bed {kind}",
        "price": f"${price:,}",
        "address": home.address,
        "description": description,
        "listingUrl": listing_url(home.url, location),
        "specs": {"beds": beds, "baths": baths, "sqft": sqft},
        "insightBullets": {
            "style": kind,
            "vibe": location,
            "financials": f"~${round(price * MONTHLY_COST_RATE):,}/month",
        },
        "matchInsights": [
            f"{_plural(beds, 'bedroom')}, {_plural(baths, 'bathroom')}",
            f"{sqft:,} sq ft" if sqft else "Square footage not available",
            f"Listed at ${price:,}",
        ],
        "analysis": {
            "nature": f"{location} area parks and amenities",
            "commute": f"Check commute options from {location}",
            "safety": f"Research {location} neighborhood safety data",
            "schools": f"Check local schools in {location}",
        },
    }


_PARSERS: Dict[str, Callable[[Dict[str, Any]], ParsedHome]] = {
    VARIANT_HOME_DATA: parse_home_data,
    VARIANT_FLAT: parse_flat,
}


def normalize_listing(record: Any, index: int, location: str) -> Dict[str, Any]:
    """One raw record -> card dict.  Raises ListingParseError."""
    variant = detect_variant(record)
    return _card(_PARSERS[variant](record), index, location)


# =============================================================================
# Search
# =============================================================================

def search_listings(params: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Search for-sale listings with Redfin API *params*.

    Raises:
        ConfigurationError: RAPIDAPI_KEY is not set.
        ValueError: no location.
        UpstreamError: the API call failed.
        ListingParseError: the response has no listing array.
    """
    key = api_key("rapidapi")
    if not key:
        raise ConfigurationError("RAPIDAPI_KEY not configured", missing_keys=key_names("rapidapi"))

    location = (params.get("location") or "").strip()
    if not location:
        raise ValueError("Location is required for search")

    limit = min(_to_int(params.get("limit")) or 10, MAX_LIMIT)
    query = {k: v for k, v in params.items() if v not in (None, "", [])}
    query["location"] = location
    query["limit"] = limit

    logger.info("[listings] searching %r (limit %d)", location, limit)
    data = fetch_json(
        "redfin",
        "search_for_sale",
        REDFIN_SEARCH_URL,
        params=query,
        headers={"x-rapidapi-key": key, "x-rapidapi-host": REDFIN_HOST},
    )
    if isinstance(data, dict) and data.get("status") is False:
        raise UpstreamError(
            f"redfin search failed: {data.get('message', 'unknown error')}",
            service="redfin",
            provider_status="api_error",
        )

    listings = []
    for index, record in enumerate(response_records(data)[:limit]):
        try:
            listings.append(normalize_listing(record, index, location))
        except ListingParseError as e:
            logger.warning("[listings] skipping record %d: %s", index, e)

    logger.info("[listings] %d listings for %r", len(listings), location)
    return listings
