"""
Upstream health monitoring for HomeSwipe data providers.

Two sources of truth, merged per provider in get_status():

  Passive  Every real provider call made through upstream_http is
           reported via record_call() into a fixed-size rolling window.
           Status is derived from the window's success rate.
  Active   A daemon thread probes the keyless endpoints (FEMA NFHL layer
           metadata, USGS geoserve) every HEALTH_CHECK_INTERVAL seconds.
           A probe result, once available, overrides the passive view.

Google, RapidAPI and Gemini are never probed: a probe would spend quota,
so their status comes from real traffic only.

One HealthMonitor per process (gunicorn workers each start their own).
"""

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = int(os.environ.get("HEALTH_CHECK_INTERVAL", "300"))

PROBE_TIMEOUT_SECONDS = 10
WINDOW_SIZE = 50

# Success-rate floors
HEALTHY_RATE = 0.95
DEGRADED_RATE = 0.70

# Every service name upstream_http reports under.
PASSIVE_SERVICES = (
    "google_maps",
    "fema",
    "calfire",
    "usgs",
    "cgs",
    "rapidapi_crime",
    "ca_state_parks",
    "bart",
    "epa_envirofacts",
    "redfin",
    "gemini",
)


@dataclass(frozen=True)
class ActiveProbe:
    service: str
    url: str
    params: Dict[str, Any] = field(default_factory=dict)


ACTIVE_PROBES = (
    ActiveProbe(
        "fema",
        "https://hazards.fema.gov/arcgis/rest/services/public/NFHL/MapServer/28",
        {"f": "json"},
    ),
    ActiveProbe(
        "usgs",
        "https://earthquake.usgs.gov/ws/geoserve/places.json",
        {"latitude": 37.37608, "longitude": -122.05227, "type": "event"},
    ),
)


def status_for_rate(rate: float) -> str:
    if rate >= HEALTHY_RATE:
        return "healthy"
    if rate >= DEGRADED_RATE:
        return "degraded"
    return "down"


def _iso(ts: Optional[float] = None) -> str:
    if ts is None:
        ts = time.time()
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class HealthCheckResult:
    """One provider's status, from either a probe or the passive window."""
    service: str
    status: str          # healthy | degraded | down | unknown
    latency_ms: int
    last_checked: str
    mode: str            # active | passive
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": self.status,
            "mode": self.mode,
            "latency_ms": self.latency_ms,
            "last_checked": self.last_checked,
        }
        if self.error:
            out["error"] = self.error
        out.update(self.extra)
        return out


@dataclass
class CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


class ProviderWindow:
    """Last WINDOW_SIZE call outcomes for one provider.  Not locked itself."""

    def __init__(self, service: str, size: int = WINDOW_SIZE):
        self.service = service
        self._records: deque = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: CallRecord) -> None:
        self._records.append(record)

    def records(self) -> List[CallRecord]:
        return list(self._records)

    def evaluate(self) -> HealthCheckResult:
        records = self.records()
        if not records:
            return HealthCheckResult(
                service=self.service, status="unknown", latency_ms=0,
                last_checked=_iso(), mode="passive", extra={"sample_size": 0},
            )

        ok = [r for r in records if r.success]
        rate = len(ok) / len(records)
        failures = [r for r in records if not r.success and r.error]
        return HealthCheckResult(
            service=self.service,
            status=status_for_rate(rate),
            latency_ms=int(sum(r.latency_ms for r in records) / len(records)),
            last_checked=_iso(records[-1].timestamp),
            mode="passive",
            error=failures[-1].error if failures else None,
            extra={"success_rate": round(rate, 3), "sample_size": len(records)},
        )


def run_probe(probe: ActiveProbe) -> HealthCheckResult:
    """GET the probe URL once; non-200 is degraded, no answer is down."""
    started = time.monotonic()
    status, error = "healthy", None
    try:
        resp = requests.get(probe.url, params=probe.params, timeout=PROBE_TIMEOUT_SECONDS)
        if resp.status_code != 200:
            status, error = "degraded", f"HTTP {resp.status_code}"
    except requests.Timeout:
        status, error = "down", "timeout"
    except requests.RequestException as e:
        status, error = "down", str(e)
    return HealthCheckResult(
        service=probe.service,
        status=status,
        latency_ms=int((time.monotonic() - started) * 1000),
        last_checked=_iso(),
        mode="active",
        error=error,
    )


class HealthMonitor:

    def __init__(self, interval: int = HEALTH_CHECK_INTERVAL,
                 probes=ACTIVE_PROBES) -> None:
        self.interval = interval
        self.probes = tuple(probes)
        self._lock = threading.Lock()
        self._windows: Dict[str, ProviderWindow] = {
            svc: ProviderWindow(svc) for svc in PASSIVE_SERVICES
        }
        self._latest_probe: Dict[str, HealthCheckResult] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def record_call(self, service: str, success: bool, latency_ms: int,
                    error: Optional[str] = None) -> None:
        record = CallRecord(time.time(), success, latency_ms, error)
        with self._lock:
            window = self._windows.get(service)
            if window is None:
                window = self._windows[service] = ProviderWindow(service)
            window.add(record)

    def window(self, service: str) -> ProviderWindow:
        with self._lock:
            return self._windows.setdefault(service, ProviderWindow(service))

    def passive_status(self, service: str) -> HealthCheckResult:
        with self._lock:
            window = self._windows.get(service)
            if window is None:
                window = ProviderWindow(service)
            return window.evaluate()

    def probe_status(self, service: str) -> Optional[HealthCheckResult]:
        with self._lock:
            return self._latest_probe.get(service)

    def run_active_checks(self) -> None:
        for probe in self.probes:
            result = run_probe(probe)
            with self._lock:
                previous = self._latest_probe.get(probe.service)
                self._latest_probe[probe.service] = result

            if previous is not None and previous.status != result.status:
                logger.warning(
                    "[health] %s went %s -> %s (error=%s)",
                    probe.service, previous.status, result.status, result.error,
                )
            else:
                logger.info("[health] %s: %s (%dms)",
                            probe.service, result.status, result.latency_ms)

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        """Status per service, preferring the latest probe over the window."""
        with self._lock:
            services = sorted(set(self._windows) | set(self._latest_probe))
        return {
            svc: (self.probe_status(svc) or self.passive_status(svc)).to_dict()
            for svc in services
        }

    def _run(self) -> None:
        logger.info("[health] monitor thread up, probing every %ds", self.interval)
        while not self._stop_event.is_set():
            try:
                self.run_active_checks()
            except Exception:
                logger.exception("[health] active checks crashed")
            self._stop_event.wait(timeout=self.interval)
        logger.info("[health] monitor thread stopped")

    def start(self) -> None:
        """Start the probe thread; no-op when it is already running."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="health-monitor")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()


_monitor = HealthMonitor()


def record_call(service: str, success: bool, latency_ms: int,
                error: Optional[str] = None) -> None:
    """Passive outcome of one provider call (upstream_http guards this call)."""
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()


def start_monitor() -> None:
    _monitor.start()


def stop_monitor() -> None:
    _monitor.stop()
