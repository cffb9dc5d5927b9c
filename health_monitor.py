"""
Passive health tracking for the geo provider.

Each Google call made while quoting reports its outcome through
``record_call`` (see GoogleMapsClient._record_health).  Nothing here issues
requests of its own: every Maps / Address Validation call is billed, so
status is inferred only from traffic the quoting pipeline already makes.

Per service, the last WINDOW_SIZE calls are kept.  Status:
  healthy   success rate >= 95%
  degraded  success rate >= 70%
  down      anything lower
  unknown   no calls yet
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

WINDOW_SIZE = 50
HEALTHY_RATE = 0.95
DEGRADED_RATE = 0.70

# Reported by /healthz even before their first call.
MONITORED_SERVICES = ("google_maps", "address_validation")


@dataclass(frozen=True)
class ProviderCall:
    at: float
    ok: bool
    latency_ms: int
    endpoint: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class ProviderStatus:
    service: str
    status: str
    sample_size: int = 0
    success_rate: Optional[float] = None
    avg_latency_ms: int = 0
    p95_latency_ms: int = 0
    last_call_at: Optional[str] = None
    last_error: Optional[str] = None
    failing_endpoints: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"status": self.status, "sample_size": self.sample_size}
        if self.sample_size:
            d.update(
                success_rate=self.success_rate,
                avg_latency_ms=self.avg_latency_ms,
                p95_latency_ms=self.p95_latency_ms,
                last_call_at=self.last_call_at,
            )
        if self.last_error:
            d["last_error"] = self.last_error
        if self.failing_endpoints:
            d["failing_endpoints"] = list(self.failing_endpoints)
        return d


def classify_rate(rate: float) -> str:
    if rate >= HEALTHY_RATE:
        return "healthy"
    if rate >= DEGRADED_RATE:
        return "degraded"
    return "down"


def _percentile(values: Sequence[int], pct: float) -> int:
    """Nearest-rank percentile; 0 for an empty sequence."""
    if not values:
        return 0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct * len(ordered)))
    return ordered[rank - 1]


class HealthMonitor:
    """Rolling windows of provider call outcomes, safe to share across threads."""

    def __init__(self, window_size: int = WINDOW_SIZE, clock=time.time):
        self._window_size = window_size
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[ProviderCall]] = {
            svc: deque(maxlen=window_size) for svc in MONITORED_SERVICES
        }
        self._last_status: Dict[str, str] = {}

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
        endpoint: str = "",
    ) -> None:
        call = ProviderCall(self._clock(), success, latency_ms, endpoint, error)
        with self._lock:
            window = self._windows.get(service)
            if window is None:
                window = self._windows[service] = deque(maxlen=self._window_size)
            window.append(call)

    def window(self, service: str) -> Tuple[ProviderCall, ...]:
        with self._lock:
            return tuple(self._windows.get(service, ()))

    def compute_status(self, service: str) -> ProviderStatus:
        calls = self.window(service)
        if not calls:
            return ProviderStatus(service=service, status="unknown")

        failures = [c for c in calls if not c.ok]
        rate = 1 - len(failures) / len(calls)
        status = classify_rate(rate)
        last_error = next((c.error for c in reversed(failures) if c.error), None)
        latencies = [c.latency_ms for c in calls]

        self._note_transition(service, status, last_error)
        return ProviderStatus(
            service=service,
            status=status,
            sample_size=len(calls),
            success_rate=round(rate, 3),
            avg_latency_ms=int(sum(latencies) / len(latencies)),
            p95_latency_ms=_percentile(latencies, 0.95),
            last_call_at=datetime.fromtimestamp(calls[-1].at, tz=timezone.utc).isoformat(),
            last_error=last_error,
            failing_endpoints=tuple(sorted({c.endpoint for c in failures if c.endpoint})),
        )

    def _note_transition(self, service: str, status: str, last_error: Optional[str]) -> None:
        with self._lock:
            previous = self._last_status.get(service)
            self._last_status[service] = status
        if previous is not None and previous != status:
            logger.warning(
                "[health] %s status changed: %s -> %s (last error: %s)",
                service, previous, status, last_error,
            )

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            services = list(self._windows)
        return {svc: self.compute_status(svc).to_dict() for svc in services}


_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
    endpoint: str = "",
) -> None:
    _monitor.record_call(service, success, latency_ms, error, endpoint)


def get_status() -> Dict[str, Dict[str, Any]]:
    """Status of every service seen (or monitored) by this process."""
    return _monitor.snapshot()
