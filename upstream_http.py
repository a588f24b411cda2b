"""
Shared HTTP layer for upstream data providers.

Every provider call in the application goes through fetch_json() (or
post_json() for generation endpoints).  It provides:
- A per-call timeout so one hung provider cannot stall a request
- Uniform error typing: transport failures, non-2xx responses and
  non-JSON bodies all surface as UpstreamError
- hs_trace recording for every call
- Passive health tracking via health_monitor.record_call()

Requests are made with the module-level requests.get/requests.post
(no shared Session; sessions are not thread-safe and the orchestrator
fans out across threads).
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional

import requests

from enrichment_config import CONFIG
from hs_trace import get_trace

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """A required credential is not configured.  Raised before any I/O."""

    def __init__(self, message: str, missing_keys: Iterable[str] = ()):
        super().__init__(message)
        self.missing_keys = list(missing_keys)


class UpstreamError(RuntimeError):
    """An upstream provider call failed (transport, HTTP status, or body)."""

    def __init__(
        self,
        message: str,
        service: str = "",
        status_code: int = 0,
        provider_status: str = "",
    ):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.provider_status = provider_status


def _record(service: str, endpoint: str, elapsed_ms: int, status_code: int,
            provider_status: str = "", success: bool = True,
            error: Optional[str] = None):
    trace = get_trace()
    if trace:
        trace.record_api_call(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
        )
    try:
        from health_monitor import record_call
        record_call(service, success, elapsed_ms, error)
    except Exception:
        logger.debug("health tracking failed for %s", service, exc_info=True)


def _send(method: str, url: str, timeout: float, **kwargs) -> requests.Response:
    if method == "POST":
        return requests.post(url, timeout=timeout, **kwargs)
    return requests.get(url, timeout=timeout, **kwargs)


def request_json(
    method: str,
    service: str,
    endpoint: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> Any:
    """Issue one HTTP request and return the parsed JSON body.

    Raises:
        UpstreamError: on transport failure, timeout, HTTP status >= 400,
            or a body that is not valid JSON.
    """
    if timeout is None:
        timeout = CONFIG.timeouts.upstream_request

    all_headers = {"Accept": "application/json", "User-Agent": CONFIG.user_agent}
    if headers:
        all_headers.update(headers)

    kwargs: Dict[str, Any] = {"headers": all_headers}
    if params is not None:
        kwargs["params"] = params
    if json_body is not None:
        kwargs["json"] = json_body

    t0 = time.time()
    try:
        resp = _send(method, url, timeout, **kwargs)
    except requests.exceptions.Timeout:
        elapsed_ms = int((time.time() - t0) * 1000)
        _record(service, endpoint, elapsed_ms, 0, "timeout", False, "timeout")
        raise UpstreamError(
            f"{service} {endpoint} timed out after {timeout}s",
            service=service,
            provider_status="timeout",
        )
    except requests.exceptions.RequestException as e:
        elapsed_ms = int((time.time() - t0) * 1000)
        _record(service, endpoint, elapsed_ms, 0, "exception", False, str(e))
        raise UpstreamError(
            f"{service} {endpoint} request failed: {e}",
            service=service,
            provider_status="exception",
        ) from e

    elapsed_ms = int((time.time() - t0) * 1000)
    status_code = resp.status_code

    if status_code >= 400:
        reason = getattr(resp, "reason", "") or ""
        _record(service, endpoint, elapsed_ms, status_code, "http_error",
                False, f"HTTP {status_code}")
        raise UpstreamError(
            f"{service} {endpoint} HTTP {status_code} {reason}".rstrip(),
            service=service,
            status_code=status_code,
            provider_status="http_error",
        )

    try:
        data = resp.json()
    except ValueError:
        _record(service, endpoint, elapsed_ms, status_code, "parse_error",
                False, "non-JSON response")
        raise UpstreamError(
            f"{service} {endpoint} returned non-JSON response (HTTP {status_code})",
            service=service,
            status_code=status_code,
            provider_status="parse_error",
        )

    provider_status = data.get("status", "") if isinstance(data, dict) else ""
    _record(service, endpoint, elapsed_ms, status_code,
            provider_status if isinstance(provider_status, str) else "")
    return data


def fetch_json(
    service: str,
    endpoint: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> Any:
    """GET *url* and return parsed JSON.  See request_json()."""
    return request_json("GET", service, endpoint, url, params=params,
                        headers=headers, timeout=timeout)


def post_json(
    service: str,
    endpoint: str,
    url: str,
    json_body: Dict[str, Any],
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> Any:
    """POST a JSON body to *url* and return parsed JSON."""
    return request_json("POST", service, endpoint, url, params=params,
                        headers=headers, json_body=json_body, timeout=timeout)


def check_arcgis_error(data: Any, service: str, endpoint: str) -> Dict[str, Any]:
    """ArcGIS reports query errors as HTTP 200 with an ``error`` object."""
    if not isinstance(data, dict):
        raise UpstreamError(
            f"{service} {endpoint} returned {type(data).__name__}, expected object",
            service=service,
            provider_status="parse_error",
        )
    err = data.get("error")
    if err:
        code = err.get("code", 0) if isinstance(err, dict) else 0
        msg = err.get("message", "") if isinstance(err, dict) else str(err)
        raise UpstreamError(
            f"{service} {endpoint} ArcGIS error {code}: {msg}",
            service=service,
            status_code=code if isinstance(code, int) else 0,
            provider_status="arcgis_error",
        )
    return data
