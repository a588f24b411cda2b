"""
Tests for the Flask API: input validation, error-to-status mapping,
and response shapes.  Analyses and listing search are mocked at the
names app.py imports.
"""

from unittest.mock import MagicMock, patch

import pytest

from domain_results import FloodResult
from geocoding import GeocodeResult, GeocodingError
from listings import ListingParseError
from upstream_http import ConfigurationError, UpstreamError

GEO = GeocodeResult(lat=37.37608, lng=-122.05227, place_id="p",
                    normalized_address="1122 vasquez ave, sunnyvale, ca 94086, usa",
                    city="Sunnyvale", zip_code="94086")

ADDRESS = "1122 Vasquez Ave, Sunnyvale, CA 94086"


# ---------------------------------------------------------------------------
# /api/flood-analysis
# ---------------------------------------------------------------------------

class TestFloodAnalysis:

    def test_missing_address_400(self, client):
        resp = client.get("/api/flood-analysis")
        assert resp.status_code == 400
        assert "address" in resp.get_json()["error"]

    @patch("app.get_flood_zones")
    @patch("app.geocode_address")
    def test_success_shape(self, mock_geocode, mock_flood, client):
        mock_geocode.return_value = GEO
        mock_flood.return_value = FloodResult.make_not_found("No FEMA flood zone mapped at this location")
        resp = client.get("/api/flood-analysis", query_string={"address": ADDRESS})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["geocode"]["lat"] == pytest.approx(37.37608)
        assert data["floodZones"] == {"type": "FeatureCollection", "features": []}
        assert data["flood"]["found"] is False
        assert resp.headers["X-Request-ID"]
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    @patch("app.get_flood_zones")
    @patch("app.geocode_address")
    def test_flood_zones_is_the_feature_collection(self, mock_geocode, mock_flood, client):
        zones = {"type": "FeatureCollection", "features": [
            {"type": "Feature", "geometry": None,
             "properties": {"zoneCode": "AE", "floodType": "100-year", "riskLevel": "high"}},
        ]}
        mock_geocode.return_value = GEO
        mock_flood.return_value = FloodResult.make_found(
            "Property is in FEMA flood zone AE", flood_zones=zones, highest_risk="high")
        resp = client.get("/api/flood-analysis", query_string={"address": ADDRESS})
        data = resp.get_json()
        assert data["floodZones"]["type"] == "FeatureCollection"
        assert data["floodZones"]["features"][0]["properties"]["zoneCode"] == "AE"
        assert data["flood"]["highestRisk"] == "high"
        assert data["flood"]["zones"] == ["AE"]

    @patch("app.geocode_address")
    def test_unresolvable_address_400(self, mock_geocode, client):
        mock_geocode.side_effect = GeocodingError("zzz", "ZERO_RESULTS")
        resp = client.get("/api/flood-analysis", query_string={"address": "zzz"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Could not geocode address"

    @patch("app.geocode_address")
    def test_missing_key_503(self, mock_geocode, client):
        mock_geocode.side_effect = ConfigurationError(
            "Geocoding requires a Google Maps API key", ["GOOGLE_MAPS_API_KEY"])
        resp = client.get("/api/flood-analysis", query_string={"address": ADDRESS})
        assert resp.status_code == 503
        assert resp.get_json()["missing_keys"] == ["GOOGLE_MAPS_API_KEY"]

    @patch("app.geocode_address")
    def test_geocoder_outage_500(self, mock_geocode, client):
        mock_geocode.side_effect = UpstreamError("google_maps geocode HTTP 500")
        resp = client.get("/api/flood-analysis", query_string={"address": ADDRESS})
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "Analysis failed"


# ---------------------------------------------------------------------------
# /api/deep-analysis
# ---------------------------------------------------------------------------

class TestDeepAnalysis:

    def test_missing_address_400(self, client):
        assert client.get("/api/deep-analysis?address=%20").status_code == 400

    @patch("app.deep_analysis_with_summary")
    def test_success_passthrough(self, mock_deep, client):
        mock_deep.return_value = {
            "geocode": GEO.to_dict(),
            "data": {"fire": {"found": False, "error": "HTTP 500",
                              "message": "Fire hazard data unavailable - API call failed"}},
            "summary": "A quiet street.",
        }
        resp = client.get("/api/deep-analysis", query_string={"address": ADDRESS})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["summary"] == "A quiet street."
        assert data["data"]["fire"]["error"] == "HTTP 500"
        mock_deep.assert_called_once_with(ADDRESS)

    @patch("app.deep_analysis_with_summary")
    def test_geocoding_error_400(self, mock_deep, client):
        mock_deep.side_effect = GeocodingError(ADDRESS, "ZERO_RESULTS")
        resp = client.get("/api/deep-analysis", query_string={"address": ADDRESS})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# /api/search-listings
# ---------------------------------------------------------------------------

def _card(i):
    return {"id": str(i), "address": f"{i} Main St, Sunnyvale, CA 94086",
            "insightBullets": {"style": "House"}}


class TestSearchListings:

    def test_missing_query_400(self, client):
        resp = client.post("/api/search-listings", json={})
        assert resp.status_code == 400

    def test_non_string_query_400(self, client):
        resp = client.post("/api/search-listings", json={"query": 42})
        assert resp.status_code == 400

    def test_bad_existing_preferences_400(self, client):
        resp = client.post("/api/search-listings", json={"query": "3 bed", "existingPreferences": "x"})
        assert resp.status_code == 400

    @patch("app.extract_preferences")
    def test_missing_rapidapi_key_503_before_model_call(self, mock_extract, client, monkeypatch):
        monkeypatch.delenv("RAPIDAPI_KEY", raising=False)
        resp = client.post("/api/search-listings", json={"query": "3 bed in Sunnyvale"})
        assert resp.status_code == 503
        assert "RAPIDAPI_KEY" in resp.get_json()["details"]
        mock_extract.assert_not_called()

    @patch("app.ListingEnrichmentPipeline")
    @patch("app.search_listings")
    @patch("app.map_preferences_to_search_params")
    @patch("app.extract_preferences")
    def test_success(self, mock_extract, mock_map, mock_search, mock_pipeline, client):
        mock_extract.return_value = {"location": "Sunnyvale, CA", "bedrooms": 3,
                                     "originalQuery": "3 bed in Sunnyvale"}
        mock_map.return_value = {"location": "Sunnyvale, CA", "min_beds": 3, "limit": 10}
        mock_search.return_value = [_card(1), _card(2)]
        pipeline = MagicMock()
        pipeline.enrich.side_effect = lambda listings: [dict(l, enriched=True) for l in listings]
        mock_pipeline.return_value = pipeline

        resp = client.post("/api/search-listings", json={
            "query": "3 bed in Sunnyvale",
            "existingPreferences": {"price_max": 2000000},
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["count"] == 2
        assert [l["id"] for l in data["listings"]] == ["1", "2"]
        assert data["listings"][0]["enriched"] is True
        assert data["searchParams"]["min_beds"] == 3
        mock_extract.assert_called_once_with("3 bed in Sunnyvale", {"price_max": 2000000})

    @patch("app.search_listings")
    @patch("app.map_preferences_to_search_params")
    @patch("app.extract_preferences")
    def test_upstream_failure_502(self, mock_extract, mock_map, mock_search, client):
        mock_extract.return_value = {"location": "Sunnyvale, CA"}
        mock_map.return_value = {"location": "Sunnyvale, CA"}
        mock_search.side_effect = UpstreamError("redfin search_for_sale HTTP 502")
        resp = client.post("/api/search-listings", json={"query": "house"})
        assert resp.status_code == 502

    @patch("app.search_listings")
    @patch("app.map_preferences_to_search_params")
    @patch("app.extract_preferences")
    def test_parse_failure_502(self, mock_extract, mock_map, mock_search, client):
        mock_extract.return_value = {"location": "Sunnyvale, CA"}
        mock_map.return_value = {"location": "Sunnyvale, CA"}
        mock_search.side_effect = ListingParseError("search response has no listing array")
        resp = client.post("/api/search-listings", json={"query": "house"})
        assert resp.status_code == 502

    @patch("app.search_listings")
    @patch("app.map_preferences_to_search_params")
    @patch("app.extract_preferences")
    def test_unexpected_failure_500(self, mock_extract, mock_map, mock_search, client):
        mock_extract.return_value = {"location": "Sunnyvale, CA"}
        mock_map.return_value = {"location": "Sunnyvale, CA"}
        mock_search.side_effect = KeyError("boom")
        resp = client.post("/api/search-listings", json={"query": "house"})
        assert resp.status_code == 500


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

class TestMisc:

    def test_unknown_route_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}
