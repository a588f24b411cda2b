"""
Tests for upstream health monitoring: rolling windows, probes, the merged
status view, and /healthz.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from health_monitor import (
    ACTIVE_PROBES,
    PASSIVE_SERVICES,
    ActiveProbe,
    HealthMonitor,
    ProviderWindow,
    run_probe,
    status_for_rate,
)

PROBE = ActiveProbe("fema", "https://example.test/layer", {"f": "json"})


@pytest.fixture
def monitor():
    """Fresh monitor whose thread is never started unless a test does it."""
    return HealthMonitor()


def _response(status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    return resp


class TestProviderWindow:

    def test_empty_is_unknown(self):
        result = ProviderWindow("epa_envirofacts").evaluate()
        assert result.status == "unknown"
        assert result.extra["sample_size"] == 0

    def test_bounded(self):
        window = ProviderWindow("redfin")
        for _ in range(200):
            window.add(MagicMock(success=True, latency_ms=10, error=None, timestamp=0.0))
        assert len(window) == 50

    def test_status_for_rate(self):
        assert status_for_rate(1.0) == "healthy"
        assert status_for_rate(0.7) == "degraded"
        assert status_for_rate(0.69) == "down"


class TestPassiveTracking:

    def test_every_provider_has_a_window(self, monitor):
        for svc in ("google_maps", "fema", "calfire", "rapidapi_crime", "redfin", "gemini"):
            assert len(monitor.window(svc)) == 0

    def test_record_call_tracks_outcomes(self, monitor):
        monitor.record_call("calfire", True, 100)
        monitor.record_call("calfire", False, 200, "timeout")

        records = monitor.window("calfire").records()
        assert len(records) == 2
        assert records[1].success is False
        assert records[1].error == "timeout"

    def test_unlisted_service_gets_a_window(self, monitor):
        monitor.record_call("someone_new", True, 5)
        assert monitor.passive_status("someone_new").status == "healthy"

    @pytest.mark.parametrize("successes,failures,expected", [
        (20, 0, "healthy"),
        (19, 1, "healthy"),     # exactly 95%
        (16, 4, "degraded"),
        (10, 10, "down"),
    ])
    def test_status_thresholds(self, monitor, successes, failures, expected):
        for _ in range(successes):
            monitor.record_call("bart", True, 100)
        for _ in range(failures):
            monitor.record_call("bart", False, 100, "HTTP 500")
        assert monitor.passive_status("bart").status == expected

    def test_latency_average_and_last_error(self, monitor):
        monitor.record_call("usgs", False, 100, "first error")
        monitor.record_call("usgs", True, 300)
        monitor.record_call("usgs", False, 200, "latest error")
        result = monitor.passive_status("usgs")
        assert result.latency_ms == 200
        assert result.error == "latest error"
        assert result.extra["success_rate"] == pytest.approx(0.333)


class TestProbes:

    @patch("health_monitor.requests.get")
    def test_healthy(self, mock_get):
        mock_get.return_value = _response(200)
        result = run_probe(PROBE)
        assert result.status == "healthy"
        assert result.mode == "active"
        assert mock_get.call_args.kwargs["params"] == {"f": "json"}

    @patch("health_monitor.requests.get")
    def test_non_200_degraded(self, mock_get):
        mock_get.return_value = _response(503)
        result = run_probe(PROBE)
        assert result.status == "degraded"
        assert result.error == "HTTP 503"

    @patch("health_monitor.requests.get")
    def test_timeout_down(self, mock_get):
        mock_get.side_effect = requests.Timeout("timed out")
        result = run_probe(PROBE)
        assert result.status == "down"
        assert result.error == "timeout"

    @patch("health_monitor.requests.get")
    def test_connection_error_down(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("DNS resolution failed")
        result = run_probe(PROBE)
        assert result.status == "down"
        assert "DNS" in result.error

    def test_only_keyless_providers_probed(self):
        assert {p.service for p in ACTIVE_PROBES} == {"fema", "usgs"}

    @patch("health_monitor.requests.get")
    def test_run_active_checks_stores_latest(self, mock_get, monitor):
        mock_get.return_value = _response(200)
        monitor.run_active_checks()
        assert monitor.probe_status("fema").status == "healthy"
        assert monitor.probe_status("usgs").status == "healthy"

    @patch("health_monitor.requests.get")
    def test_latest_probe_replaces_previous(self, mock_get, monitor):
        mock_get.return_value = _response(200)
        monitor.run_active_checks()
        mock_get.side_effect = requests.Timeout("timeout")
        monitor.run_active_checks()
        assert monitor.probe_status("fema").status == "down"


class TestGetAllStatus:

    def test_all_unknown_when_no_data(self, monitor):
        status = monitor.get_all_status()
        assert set(PASSIVE_SERVICES) <= set(status)
        assert all(s["status"] == "unknown" for s in status.values())

    @patch("health_monitor.requests.get")
    def test_probe_preferred_over_window(self, mock_get, monitor):
        for _ in range(10):
            monitor.record_call("fema", True, 50)
        mock_get.side_effect = requests.Timeout("timeout")
        monitor.run_active_checks()

        status = monitor.get_all_status()
        assert status["fema"]["status"] == "down"
        assert status["fema"]["mode"] == "active"

    def test_passive_only_services(self, monitor):
        for _ in range(10):
            monitor.record_call("gemini", True, 900)
        status = monitor.get_all_status()
        assert status["gemini"]["status"] == "healthy"
        assert status["gemini"]["mode"] == "passive"
        assert status["gemini"]["sample_size"] == 10


class TestHealthzEndpoint:

    def test_ok_when_config_present(self, client):
        with patch("health_monitor._monitor") as mock_monitor:
            mock_monitor.get_all_status.return_value = {
                "fema": {"status": "unknown", "mode": "passive"},
            }
            resp = client.get("/healthz")
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["status"] == "ok"
        assert data["missing_keys"] == []
        assert "fema" in data["services"]

    def test_provider_down_degrades_but_stays_200(self, client):
        with patch("health_monitor._monitor") as mock_monitor:
            mock_monitor.get_all_status.return_value = {
                "fema": {"status": "down", "mode": "active", "error": "timeout"},
                "google_maps": {"status": "healthy", "mode": "passive"},
            }
            resp = client.get("/healthz")
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["status"] == "degraded"
        assert data["down_services"] == ["fema"]

    def test_missing_key_is_503(self, client, monkeypatch):
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_GEOCODING_API_KEY", raising=False)
        resp = client.get("/healthz")
        assert resp.status_code == 503
        assert "GOOGLE_MAPS_API_KEY" in resp.get_json()["missing_keys"]


class TestThreadLifecycle:

    @patch("health_monitor.requests.get")
    def test_start_stop(self, mock_get):
        mock_get.return_value = _response(200)
        monitor = HealthMonitor(interval=60)
        monitor.start()
        assert monitor._thread.is_alive()
        monitor.stop()
        monitor._thread.join(timeout=2)
        assert not monitor._thread.is_alive()

    @patch("health_monitor.requests.get")
    def test_start_idempotent(self, mock_get):
        mock_get.return_value = _response(200)
        monitor = HealthMonitor(interval=60)
        monitor.start()
        first = monitor._thread
        monitor.start()
        assert monitor._thread is first
        monitor.stop()
        first.join(timeout=2)
