"""Tests for geocoding: response parsing, caching and failure modes."""

from unittest.mock import patch

import pytest

from cache_store import TTLCache
from geocoding import (
    GeocodingError,
    GoogleGeocoder,
    normalize_address_key,
    parse_geocode_response,
)
from upstream_http import ConfigurationError, UpstreamError

ADDRESS = "1122 Vasquez Ave, Sunnyvale, CA 94086"


def _vasquez_response():
    return {
        "status": "OK",
        "results": [{
            "formatted_address": "1122 Vasquez Ave, Sunnyvale, CA 94086, USA",
            "place_id": "ChIJvasquez",
            "geometry": {"location": {"lat": 37.37608, "lng": -122.05227}},
            "address_components": [
                {"long_name": "Sunnyvale", "types": ["locality", "political"]},
                {"long_name": "Santa Clara County", "types": ["administrative_area_level_2", "political"]},
                {"long_name": "94086", "types": ["postal_code"]},
            ],
        }],
    }


@pytest.fixture
def geocoder():
    return GoogleGeocoder(cache=TTLCache("geocode-test", ttl_seconds=3600))


class TestParse:

    def test_vasquez(self):
        result = parse_geocode_response(ADDRESS, _vasquez_response())
        assert result.lat == pytest.approx(37.37608)
        assert result.lng == pytest.approx(-122.05227)
        assert result.place_id == "ChIJvasquez"
        assert result.normalized_address == "1122 vasquez ave, sunnyvale, ca 94086, usa"
        assert result.city == "Sunnyvale"
        assert result.county == "Santa Clara County"
        assert result.zip_code == "94086"

    def test_zero_results_raises(self):
        with pytest.raises(GeocodingError) as exc:
            parse_geocode_response("nowhere", {"status": "ZERO_RESULTS", "results": []})
        assert exc.value.provider_status == "ZERO_RESULTS"
        assert "ZERO_RESULTS" in str(exc.value)

    def test_geocoding_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_geocode_response("x", {"status": "REQUEST_DENIED", "error_message": "bad key"})

    def test_to_dict_camel_case(self):
        d = parse_geocode_response(ADDRESS, _vasquez_response()).to_dict()
        assert d["placeId"] == "ChIJvasquez"
        assert d["zipCode"] == "94086"
        assert d["normalizedAddress"].startswith("1122 vasquez")


class TestNormalizeKey:

    def test_case_and_whitespace(self):
        assert normalize_address_key("  1122  Vasquez Ave,\tSunnyvale ") == "1122 vasquez ave, sunnyvale"


class TestGeocoder:

    @patch("geocoding.fetch_json")
    def test_geocode_calls_google(self, mock_fetch, geocoder):
        mock_fetch.return_value = _vasquez_response()
        result = geocoder.geocode(ADDRESS)
        assert result.zip_code == "94086"
        args, kwargs = mock_fetch.call_args
        assert args[:2] == ("google_maps", "geocode")
        assert kwargs["params"]["address"] == ADDRESS

    @patch("geocoding.fetch_json")
    def test_equivalent_addresses_share_cache_entry(self, mock_fetch, geocoder):
        mock_fetch.return_value = _vasquez_response()
        first = geocoder.geocode(ADDRESS)
        second = geocoder.geocode("  1122 VASQUEZ Ave,  Sunnyvale, CA 94086 ")
        assert first == second
        assert mock_fetch.call_count == 1

    def test_blank_address_rejected(self, geocoder):
        with pytest.raises(ValueError):
            geocoder.geocode("   ")

    def test_missing_key(self, geocoder, monkeypatch):
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_GEOCODING_API_KEY", raising=False)
        with pytest.raises(ConfigurationError) as exc:
            geocoder.geocode(ADDRESS)
        assert "GOOGLE_MAPS_API_KEY" in exc.value.missing_keys

    @patch("geocoding.fetch_json")
    def test_zero_results_not_cached(self, mock_fetch, geocoder):
        mock_fetch.return_value = {"status": "ZERO_RESULTS", "results": []}
        with pytest.raises(GeocodingError):
            geocoder.geocode("Not A Real Place 99999")
        with pytest.raises(GeocodingError):
            geocoder.geocode("Not A Real Place 99999")
        assert mock_fetch.call_count == 2

    @patch("geocoding.fetch_json")
    def test_upstream_error_propagates(self, mock_fetch, geocoder):
        mock_fetch.side_effect = UpstreamError("google_maps geocode HTTP 500", service="google_maps")
        with pytest.raises(UpstreamError):
            geocoder.geocode(ADDRESS)
