"""
Natural-language search preferences -> Redfin search parameters.

Two steps, both backed by Gemini:

1. extract_preferences(query, existing)
   Free text ("3 bed near transit in San Mateo under 1.5M") becomes a flat
   preferences dict with lowercase_underscore keys.  Existing preferences
   are merged; new values win.  If generation fails the search still
   runs on the existing preferences plus the raw query.

2. map_preferences_to_search_params(preferences)
   Preferences become Redfin API params.  If the model is unavailable or
   replies with something unusable, manual_map_preferences() applies a
   fixed rule table.  Preferences with no Redfin filter ("modern",
   "quiet_neighborhood") are dropped here and left for ranking.
"""

import json
import logging
from typing import Any, Dict, Optional

from gemini_client import GeminiClient, GenerationError, parse_json_reply
from upstream_http import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = "Sunnyvale, CA"
DEFAULT_LIMIT = 10
DEFAULT_STATUS = 9  # Active + Coming Soon

ACRE_SQFT = 43560

HOME_TYPE_CODES = {
    "house": "1",
    "condo": "2",
    "townhouse": "3",
    "multi_family": "4",
    "multifamily": "4",
    "land": "5",
    "manufactured": "7",
    "coop": "8",
    "co_op": "8",
}

BOOLEAN_FILTERS = {
    "waterfront": "wf",
    "water_front": "wf",
    "fireplace": "fireplace",
    "has_fireplace": "fireplace",
    "air_conditioning": "ac",
    "ac": "ac",
    "has_ac": "ac",
    "pet_friendly": "pets_allowed",
    "pets_allowed": "pets_allowed",
    "allows_pets": "pets_allowed",
    "rv_parking": "rv_parking",
    "rv": "rv_parking",
    "green": "green",
    "energy_efficient": "green",
    "green_home": "green",
    "view": "view",
    "has_view": "view",
    "elevator": "elevator",
    "has_elevator": "elevator",
    "virtual_tour": "virtual_tour",
    "3d_tour": "virtual_tour",
    "fixer_upper": "fixer",
    "fixer": "fixer",
    "needs_work": "fixer",
    "basement_finished": "basement_finished",
    "finished_basement": "basement_finished",
    "basement_unfinished": "basement_unfinished",
    "unfinished_basement": "basement_unfinished",
    "washer_dryer": "wd",
    "wd": "wd",
    "guest_house": "guest_house",
    "accessible": "accessible",
    "primary_bed_on_main": "primary_bed_on_main",
}

SCHOOL_RATINGS = {"good": "7", "great": "8", "excellent": "9", "best": "10"}

MIN_WALK_SCORE = 70
MIN_TRANSIT_SCORE = 60
MIN_BIKE_SCORE = 60

_generator = GeminiClient()


# =============================================================================
# Extraction
# =============================================================================

_EXAMPLE_KEYS = """\
- location: "City, State" (REQUIRED IF FOUND)
- bedrooms: number
- bathrooms: number
- price_min: number
- price_max: number
- sqft_min: number
- sqft_max: number
- modern: boolean
- family_friendly: boolean
- near_school: boolean
- good_commute: boolean
- quiet_neighborhood: boolean
- walkable: boolean
- pet_friendly: boolean
- yard: boolean
- new_construction: boolean
- waterfront: boolean
- near_transit: boolean"""


def build_extraction_prompt(query: str, existing: Optional[Dict[str, Any]] = None) -> str:
    if existing:
        head = (
            "Analyze this real estate search query and extract ALL relevant preferences "
            "as a JSON object. Merge any new preferences with the existing preferences "
            f'provided below.\n\nUser query: "{query}"\n\n'
            f"Existing preferences:\n{json.dumps(existing, indent=2)}\n\n"
            "If the query modifies an existing preference, the new value wins. Keep "
            "existing preferences that the query does not contradict.\n"
        )
    else:
        head = (
            "Analyze this real estate search query and extract ALL relevant preferences "
            f'as a JSON object.\n\nUser query: "{query}"\n'
        )
    return (
        f"{head}\n"
        "You MUST extract the location/city if present, as \"location\": \"City, State\" "
        "(e.g. \"Sacramento, CA\").\n\n"
        f"Examples of keys (not limited to these):\n{_EXAMPLE_KEYS}\n\n"
        "Use lowercase keys with underscores and appropriate JSON types.\n"
        "Return ONLY the JSON object, nothing else. Include an \"originalQuery\" field."
    )


def extract_preferences(query: str, existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Structured preferences for *query*, merged over *existing*.

    Always returns a dict with ``location`` and ``originalQuery`` set.
    """
    existing = dict(existing or {})
    try:
        gen = _generator.generate(
            build_extraction_prompt(query, existing or None),
            temperature=0.3,
            max_output_tokens=2048,
            caller="preferences",
        )
        extracted = parse_json_reply(gen.text)
        if not isinstance(extracted, dict):
            raise ValueError(f"expected a JSON object, got {type(extracted).__name__}")
        preferences = {**existing, **extracted}
    except (ConfigurationError, GenerationError, ValueError) as e:
        logger.warning("[preferences] extraction failed, using existing preferences: %s", e)
        preferences = existing

    if existing.get("originalQuery"):
        preferences["originalQuery"] = f"{existing['originalQuery']}. Additionally: {query}"
    elif not preferences.get("originalQuery"):
        preferences["originalQuery"] = query

    if not preferences.get("location"):
        preferences["location"] = DEFAULT_LOCATION

    logger.info("[preferences] %d keys: %s", len(preferences), sorted(preferences))
    return preferences


# =============================================================================
# Mapping
# =============================================================================

def _first(prefs: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among *keys*, else None."""
    for key in keys:
        value = prefs.get(key)
        if value:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _lot_sqft(value: Any) -> Any:
    # Values under 100 are acres.
    if _is_number(value) and value < 100:
        return value * ACRE_SQFT
    return value


def manual_map_preferences(prefs: Dict[str, Any]) -> Dict[str, Any]:
    """Rule-based preferences -> Redfin params."""
    params: Dict[str, Any] = {"limit": DEFAULT_LIMIT, "status": DEFAULT_STATUS}

    if prefs.get("location"):
        params["location"] = prefs["location"]

    # Price and size
    simple = (
        ("min_price", ("price_min", "minprice", "min_price")),
        ("max_price", ("price_max", "maxprice", "max_price")),
        ("min_beds", ("bedrooms", "beds", "num_beds")),
        ("min_baths", ("bathrooms", "baths", "num_baths")),
        ("minSquareFeet", ("sqft_min", "min_sqft", "minSquareFeet")),
        ("maxSquareFeet", ("sqft_max", "max_sqft", "maxSquareFeet")),
        ("minStories", ("min_stories", "minStories")),
        ("maxStories", ("max_stories", "maxStories")),
        ("minYearBuilt", ("year_built_min", "min_year", "minYearBuilt")),
        ("maxYearBuilt", ("year_built_max", "max_year", "maxYearBuilt")),
        ("hoaFees", ("hoa_max", "max_hoa", "hoaFees")),
        ("propertyTaxes", ("property_tax_max", "propertyTaxes")),
        ("keyword", ("keyword", "keywords")),
    )
    for param, keys in simple:
        value = _first(prefs, *keys)
        if value:
            params[param] = value

    lot_min = _first(prefs, "lot_size_min", "minLotSize")
    if lot_min:
        params["minLotSize"] = _lot_sqft(lot_min)
    lot_max = _first(prefs, "lot_size_max", "maxLotSize")
    if lot_max:
        params["maxLotSize"] = _lot_sqft(lot_max)

    home_type = _first(prefs, "home_type", "property_type", "type", "homeType")
    if isinstance(home_type, str):
        params["homeType"] = HOME_TYPE_CODES.get(home_type.lower().replace("-", "_"), home_type)
    elif _is_number(home_type):
        params["homeType"] = str(home_type)

    garage = _first(prefs, "garage", "garage_spots", "garageSpots")
    if garage:
        params["garageSpots"] = str(garage)

    pool = _first(prefs, "pool", "has_pool", "private_pool")
    if pool is True or pool in ("true", "private"):
        params["pool"] = 1
    elif pool == "community":
        params["pool"] = 2
    elif pool == "any":
        params["pool"] = 3
    elif _is_number(pool):
        params["pool"] = pool

    filters = []
    for key, value in prefs.items():
        code = BOOLEAN_FILTERS.get(key.lower())
        if code and value is True and code not in filters:
            filters.append(code)
    if filters:
        params["booleanFilters"] = ",".join(filters)

    if _first(prefs, "school_rating", "schools", "good_schools", "greatSchoolsRating"):
        rating = prefs.get("greatSchoolsRating") or prefs.get("school_rating")
        if isinstance(rating, str):
            params["greatSchoolsRating"] = SCHOOL_RATINGS.get(rating.lower(), rating)
        elif _is_number(rating):
            params["greatSchoolsRating"] = str(rating)
        elif prefs.get("schools") or prefs.get("good_schools"):
            params["greatSchoolsRating"] = SCHOOL_RATINGS["good"]
        if params.get("greatSchoolsRating"):
            params.setdefault("schoolTypes", "2")

    if _first(prefs, "walkable", "walkability", "walkScore"):
        params["walkScore"] = prefs.get("walkScore") or MIN_WALK_SCORE
    if _first(prefs, "transit", "public_transit", "transitScore"):
        params["transitScore"] = prefs.get("transitScore") or MIN_TRANSIT_SCORE
    if _first(prefs, "bike_friendly", "bikeScore"):
        params["bikeScore"] = prefs.get("bikeScore") or MIN_BIKE_SCORE

    if _first(prefs, "new_construction", "new", "newly_built"):
        params["listingType"] = "5,6"
    elif _first(prefs, "foreclosure", "foreclosures"):
        params["listingType"] = "2,4"
    elif _first(prefs, "fsbo", "for_sale_by_owner"):
        params["listingType"] = "3"

    if _first(prefs, "fha", "fha_approved"):
        params["acceptedFinancing"] = 1
    elif _first(prefs, "va", "va_approved"):
        params["acceptedFinancing"] = 2

    open_house = prefs.get("open_house")
    if open_house in ("weekend", "this_weekend"):
        params["openHouse"] = 2
    elif open_house is True or open_house == "any":
        params["openHouse"] = 1
    elif _is_number(open_house):
        params["openHouse"] = open_house

    return params


_MAPPING_PROMPT = """\
You are a real estate API mapping expert. Map the user preferences below to
Redfin search API parameters.

User Preferences JSON:
{preferences}

Parameters:
- location (string, REQUIRED): "City, State"
- limit (number): default 10
- status (number): 9 (Active+Coming Soon), 1 (Active), 8 (Coming Soon), 131, 130
- min_price, max_price (number, dollars)
- min_beds, min_baths (number)
- minSquareFeet, maxSquareFeet, minLotSize, maxLotSize (number, sqft; 1 acre = 43560)
- homeType (string): comma list of 1 House, 2 Condo, 3 Townhouse, 4 Multi-family,
  5 Land, 7 Manufactured, 8 Co-op
- minStories, maxStories, minYearBuilt, maxYearBuilt (number)
- booleanFilters (string): comma list of fixer, rv_parking, ac, fireplace, wf,
  view, basement_finished, basement_unfinished, pets_allowed, wd, guest_house,
  accessible, elevator, green, virtual_tour, primary_bed_on_main
- garageSpots (string "1".."5"), pool (1 private, 2 community, 3 either)
- hoaFees, propertyTaxes (number, maximums)
- acceptedFinancing (1 FHA, 2 VA)
- greatSchoolsRating (string "1".."10"; good 7, great 8, excellent 9), schoolTypes
- walkScore (70 for walkable), transitScore (60), bikeScore (60)
- listingType (string): "5,6" new construction, "2,4" foreclosures, "3" FSBO
- openHouse (1 any time, 2 this weekend), keyword (string)

Use underscore notation for min_price, max_price, min_beds, min_baths.
Omit preferences with no matching parameter (e.g. "modern", "quiet").

Return ONLY the JSON object of parameters, nothing else."""


def map_preferences_to_search_params(prefs: Dict[str, Any]) -> Dict[str, Any]:
    """Redfin params for *prefs*; falls back to manual_map_preferences()."""
    try:
        gen = _generator.generate(
            _MAPPING_PROMPT.format(preferences=json.dumps(prefs, indent=2)),
            temperature=0.2,
            max_output_tokens=1024,
            caller="search_params",
        )
        params = parse_json_reply(gen.text)
        if not isinstance(params, dict):
            raise ValueError(f"expected a JSON object, got {type(params).__name__}")
    except (ConfigurationError, GenerationError, ValueError) as e:
        logger.warning("[preferences] model mapping failed, using manual rules: %s", e)
        return manual_map_preferences(prefs)

    if not params.get("location") and prefs.get("location"):
        params["location"] = prefs["location"]
    if not params.get("limit"):
        params["limit"] = DEFAULT_LIMIT
    logger.info("[preferences] mapped params: %s", sorted(params))
    return params
