"""
Request-scoped tracing for HomeSwipe analysis requests.

A thread-local TraceContext records:
  - Per-stage timing (geocode, one stage per enrichment domain, summary)
  - Per-upstream-call timing (service, endpoint, elapsed_ms, HTTP status,
    provider status, cache hits)
  - End-of-request summary (total elapsed, calls, cache hits, outcome)

Usage:
    from hs_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

Worker threads do not inherit thread-locals, so fan-out code captures
the parent context and calls set_trace(parent) inside each worker.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

CACHE_HIT = "cache_hit"


# =============================================================================
# Records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound call (or cache hit standing in for one)."""
    service: str          # "google_maps" | "fema" | "calfire" | "usgs" | ...
    endpoint: str         # "geocode", "nfhl_envelope", "places_nearby", ...
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    stage: str = ""


@dataclass
class StageRecord:
    """One analysis stage; for enrichment domains, one per domain."""
    stage_name: str
    elapsed_ms: int = 0
    api_calls_made: int = 0
    domain_status: str = ""     # DomainResult status, when the stage produced one
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    # Stage attribution is per thread: nine domain workers share this
    # context and each runs its own stage.
    _stage_local: threading.local = field(default_factory=threading.local, repr=False)

    # ------------------------------------------------------------------
    # Stage lifecycle
    # ------------------------------------------------------------------

    @property
    def current_stage(self) -> str:
        return getattr(self._stage_local, "name", "")

    @contextmanager
    def stage(self, name: str) -> Iterator[StageRecord]:
        """Time a block as one stage.  Exceptions are recorded and re-raised."""
        previous = self.current_stage
        self._stage_local.name = name
        rec = StageRecord(stage_name=name)
        t0 = time.time()
        try:
            yield rec
        except Exception as exc:
            rec.error_class = type(exc).__name__
            rec.error_message = str(exc)[:200]
            raise
        finally:
            rec.elapsed_ms = int((time.time() - t0) * 1000)
            self._stage_local.name = previous
            self._finish_stage(rec)

    def _finish_stage(self, rec: StageRecord):
        with self._lock:
            rec.api_calls_made = sum(
                1 for c in self.api_calls
                if c.stage == rec.stage_name and c.provider_status != CACHE_HIT
            )
            self.stages.append(rec)

        status = "ERR" if rec.error_class else (rec.domain_status or "OK")
        err_info = f" err={rec.error_class}: {rec.error_message}" if rec.error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d%s",
            self.trace_id,
            rec.stage_name,
            status,
            rec.elapsed_ms,
            rec.api_calls_made,
            err_info,
        )

    # ------------------------------------------------------------------
    # API call recording
    # ------------------------------------------------------------------

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self.current_stage,
        )
        with self._lock:
            self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            rec.stage or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def record_cache_hit(self, service: str, endpoint: str):
        self.record_api_call(service, endpoint, 0, 200, provider_status=CACHE_HIT)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        with self._lock:
            stages = list(self.stages)
            calls = list(self.api_calls)

        errored = [s for s in stages if s.error_class]
        failed_domains = [s.stage_name for s in stages if s.domain_status == "failed"]
        ok = [s for s in stages if not s.error_class and s.domain_status != "failed"]

        if not stages:
            outcome = "empty"
        elif not ok:
            outcome = "error"
        elif errored or failed_domains:
            outcome = "partial"
        else:
            outcome = "success"

        cache_hits = sum(1 for c in calls if c.provider_status == CACHE_HIT)
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(calls) - cache_hits,
            "cache_hits": cache_hits,
            "stages_completed": len(ok),
            "stages_errored": len(errored),
            "failed_domains": failed_domains,
            "final_outcome": outcome,
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d cache_hits=%d "
            "completed=%d errored=%d failed_domains=%s outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["cache_hits"],
            s["stages_completed"],
            s["stages_errored"],
            ",".join(s["failed_domains"]) or "-",
            s["final_outcome"],
        )

    def full_trace_dict(self) -> Dict[str, Any]:
        """Summary plus per-stage and per-call detail."""
        summary = self.summary_dict()
        with self._lock:
            summary["stages"] = [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "api_calls": s.api_calls_made,
                    "status": s.domain_status or None,
                    "error": (
                        f"{s.error_class}: {s.error_message}"
                        if s.error_class else None
                    ),
                }
                for s in self.stages
            ]
            summary["api_calls"] = [
                {
                    "service": c.service,
                    "endpoint": c.endpoint,
                    "elapsed_ms": c.elapsed_ms,
                    "status_code": c.status_code,
                    "provider_status": c.provider_status,
                    "stage": c.stage,
                }
                for c in self.api_calls
            ]
        return summary


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
