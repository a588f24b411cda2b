"""Tests for the post-deploy smoke test, with fetch() mocked."""

from unittest.mock import patch

import smoke_test
from smoke_test import check_flood_payload, run_tests

BASE = "http://smoke.test"

GOOD_FLOOD = {
    "geocode": {"lat": 37.37608, "lng": -122.05227},
    "floodZones": {"type": "FeatureCollection", "features": [
        {"properties": {"riskLevel": "minimal", "zoneCode": "X"}},
    ]},
    "flood": {"found": True, "highestRisk": "minimal"},
}


def _fake_fetch(healthz=(200, {"status": "ok", "missing_keys": []}),
                validation=(400, {"error": "address query parameter is required"}),
                flood=(200, GOOD_FLOOD)):
    def fetch(url, timeout=30):
        if url.endswith("/healthz"):
            return healthz
        if "address=" in url:
            return flood
        return validation
    return fetch


class TestCheckFloodPayload:

    def test_good_payload(self):
        assert check_flood_payload(GOOD_FLOOD) == []

    def test_not_a_dict(self):
        assert check_flood_payload(None) == ["body is not a JSON object"]

    def test_missing_coordinates(self):
        body = dict(GOOD_FLOOD, geocode={})
        assert "geocode lat/lng missing" in check_flood_payload(body)

    def test_unknown_risk_level(self):
        body = {
            "geocode": {"lat": 1.0, "lng": 2.0},
            "floodZones": {"type": "FeatureCollection",
                           "features": [{"properties": {"riskLevel": "extreme"}}]},
        }
        problems = check_flood_payload(body)
        assert len(problems) == 1
        assert "extreme" in problems[0]

    def test_wrapped_result_rejected(self):
        body = dict(GOOD_FLOOD, floodZones={"found": True, "floodZones": GOOD_FLOOD["floodZones"]})
        assert check_flood_payload(body) == ["floodZones is not a FeatureCollection"]


class TestRunTests:

    @patch("smoke_test.send_webhook_alert")
    def test_all_pass(self, mock_alert):
        with patch.object(smoke_test, "fetch", _fake_fetch()):
            assert run_tests(BASE) is True
        mock_alert.assert_not_called()

    @patch("smoke_test.send_webhook_alert")
    def test_missing_keys_fail_and_alert(self, mock_alert):
        fetch = _fake_fetch(healthz=(503, {"status": "degraded",
                                           "missing_keys": ["GOOGLE_MAPS_API_KEY"]}))
        with patch.object(smoke_test, "fetch", fetch):
            assert run_tests(BASE) is False
        failures = mock_alert.call_args.args[0]
        assert failures == ["healthz: missing keys ['GOOGLE_MAPS_API_KEY']"]

    @patch("smoke_test.send_webhook_alert")
    def test_degraded_provider_still_passes(self, mock_alert):
        fetch = _fake_fetch(healthz=(200, {"status": "degraded", "down_services": ["fema"]}))
        with patch.object(smoke_test, "fetch", fetch):
            assert run_tests(BASE) is True

    @patch("smoke_test.send_webhook_alert")
    def test_flood_outage_fails(self, mock_alert):
        with patch.object(smoke_test, "fetch", _fake_fetch(flood=(500, {"error": "Analysis failed"}))):
            assert run_tests(BASE) is False
        assert mock_alert.call_args.args[0] == ["flood: HTTP 500, expected 200"]

    def test_webhook_skipped_when_unset(self, monkeypatch):
        monkeypatch.delenv("SMOKE_ALERT_WEBHOOK", raising=False)
        with patch("smoke_test.urllib.request.urlopen") as mock_open:
            smoke_test.send_webhook_alert(["flood: HTTP 500"])
        mock_open.assert_not_called()
