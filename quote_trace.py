"""
Request-scoped tracing for quote requests.

One TraceContext per request collects two kinds of records:

  StageRecord         a pipeline stage (resolve, travel, features, pricing,
                      service_area) with its wall time and outcome
  ProviderCallRecord  an outbound Google call, or a cache hit that replaced one

The active trace lives in a thread-local.  Travel and feature estimation run
on worker threads that share the request's trace, so the current stage name
is tracked per thread and the record lists are appended under a lock.

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    try:
        location = service.verify_property_location(address)
    finally:
        ctx.log_summary()
        clear_trace()
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CACHE_HIT = "cache_hit"


@dataclass
class ProviderCallRecord:
    service: str          # "google_maps" | "address_validation" | "cache"
    endpoint: str
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    retried: bool = False
    stage: str = ""


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    provider_calls: int = 0
    error_class: str = ""
    error_message: str = ""

    @property
    def failed(self) -> bool:
        return bool(self.error_class)


def _outcome(stages: List[StageRecord]) -> str:
    if not stages:
        return "empty"
    failed = sum(1 for s in stages if s.failed)
    if not failed:
        return "success"
    return "error" if failed == len(stages) else "partial"


@dataclass
class TraceContext:
    trace_id: str
    model_version: str = ""
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    calls: List[ProviderCallRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
        retried: bool = False,
        stage: Optional[str] = None,
    ):
        """Record an outbound call; *stage* defaults to this thread's current stage."""
        record = ProviderCallRecord(
            service, endpoint, elapsed_ms, status_code, provider_status, retried,
            stage if stage is not None else current_stage(),
        )
        with self._lock:
            self.calls.append(record)
        logger.info(
            "  [call] trace=%s stage=%s %s.%s %dms http=%d %s%s",
            self.trace_id, record.stage or "-", service, endpoint,
            elapsed_ms, status_code, provider_status or "-",
            " (retried)" if retried else "",
        )

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        with self._lock:
            n_calls = sum(1 for c in self.calls if c.stage == stage_name)
            record = StageRecord(
                stage_name,
                int(round((end_ts - start_ts) * 1000)),
                n_calls,
                error_class,
                error_message,
            )
            self.stages.append(record)
        if record.failed:
            logger.info(
                "  [stage] trace=%s %s failed after %dms (%d calls): %s: %s",
                self.trace_id, stage_name, record.elapsed_ms, n_calls,
                error_class, error_message,
            )
        else:
            logger.info(
                "  [stage] trace=%s %s ok %dms (%d calls)",
                self.trace_id, stage_name, record.elapsed_ms, n_calls,
            )

    def summary_dict(self) -> Dict[str, Any]:
        with self._lock:
            stages = list(self.stages)
            calls = list(self.calls)
        cache_hits = sum(1 for c in calls if c.provider_status == CACHE_HIT)
        failed = sum(1 for s in stages if s.failed)
        summary = {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "provider_calls": len(calls) - cache_hits,
            "cache_hits": cache_hits,
            "stages_completed": len(stages) - failed,
            "stages_errored": failed,
            "final_outcome": _outcome(stages),
        }
        if self.model_version:
            summary["model_version"] = self.model_version
        return summary

    def log_summary(self):
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s outcome=%s %dms provider_calls=%d cache_hits=%d "
            "stages ok=%d failed=%d",
            s["trace_id"], s["final_outcome"], s["total_elapsed_ms"],
            s["provider_calls"], s["cache_hits"],
            s["stages_completed"], s["stages_errored"],
        )

    def full_trace_dict(self) -> Dict[str, Any]:
        """Summary plus every stage and call, for debugging a single quote."""
        result = self.summary_dict()
        with self._lock:
            result["stages"] = [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "provider_calls": s.provider_calls,
                    "error": f"{s.error_class}: {s.error_message}" if s.failed else None,
                }
                for s in self.stages
            ]
            result["calls"] = [asdict(c) for c in self.calls]
        return result


# =============================================================================
# Thread-local state
# =============================================================================

_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    return getattr(_local, "trace", None)


def set_trace(ctx: Optional[TraceContext]):
    _local.trace = ctx


def clear_trace():
    _local.trace = None


def current_stage() -> str:
    """Name of the stage running on this thread, or ""."""
    return getattr(_local, "stage", "")


@contextmanager
def timed_stage(stage_name: str, trace: Optional[TraceContext] = None):
    """Time a pipeline stage on *trace*, defaulting to this thread's trace.

    Pass the trace explicitly from worker threads; it is installed as the
    worker's trace for the duration of the stage.  Exceptions are recorded
    on the stage and re-raised.  Without any trace this is a no-op.
    """
    trace = trace or get_trace()
    if trace is None:
        yield
        return

    saved = (get_trace(), current_stage())
    _local.trace, _local.stage = trace, stage_name
    start = time.time()
    try:
        yield
    except Exception as e:
        trace.record_stage(stage_name, start, time.time(), type(e).__name__, str(e)[:200])
        raise
    else:
        trace.record_stage(stage_name, start, time.time())
    finally:
        _local.trace, _local.stage = saved
