# Centralized Prometheus metrics. Detectors, the decision engine, the
# lookup cache and the event log writer all report here so dashboards
# can track block rates and upstream health.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

# Generic API latency + request counters, labelled by method and route.
REQUEST_DURATION_MS = Histogram(
    "zerospam_request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "zerospam_requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# One increment per detector per evaluated visitor. outcome is
# blocked|allowed|no_opinion|whitelisted.
DETECTOR_VERDICTS_TOTAL = Counter(
    "zerospam_detector_verdicts_total",
    "Detector verdicts by outcome",
    ["detector", "outcome"],
)
DETECTOR_DURATION_SECONDS = Histogram(
    "zerospam_detector_duration_seconds",
    "Time spent evaluating a single detector",
    ["detector"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)
REMOTE_FAILURES_TOTAL = Counter(
    "zerospam_remote_failures_total",
    "Upstream lookups that failed and degraded to no-opinion",
    ["detector", "reason"],
)

# When a decision blocks a visitor, we record which detector fired.
DECISIONS_TOTAL = Counter(
    "zerospam_decisions_total",
    "Access decisions by outcome and triggering detector",
    ["outcome", "detector"],
)

EVENT_LOG_WRITE_FAILURES_TOTAL = Counter(
    "zerospam_event_log_write_failures_total",
    "Event log appends that failed",
)
BLOCK_STORE_WRITES_TOTAL = Counter(
    "zerospam_block_store_writes_total",
    "Block store upserts by source and result",
    ["source", "result"],
)

CACHE_HIT_TOTAL = Counter(
    "zerospam_cache_hit_total",
    "Cache hits by cache name",
    ["cache"],
)
CACHE_MISS_TOTAL = Counter(
    "zerospam_cache_miss_total",
    "Cache misses by cache name",
    ["cache"],
)
CACHE_SET_TOTAL = Counter(
    "zerospam_cache_set_total",
    "Cache sets by cache name",
    ["cache"],
)
CACHE_PAYLOAD_BYTES = Histogram(
    "zerospam_cache_payload_bytes",
    "Cached payload size in bytes",
    ["cache"],
    buckets=[100, 500, 1000, 5000, 10000, 50000, 100000],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    # Wraps every request to capture latency and a status-labelled count.
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_verdict(detector: str, outcome: str, duration_seconds: float | None = None) -> None:
    DETECTOR_VERDICTS_TOTAL.labels(detector=_label(detector), outcome=_label(outcome)).inc()
    if duration_seconds is not None:
        DETECTOR_DURATION_SECONDS.labels(detector=_label(detector)).observe(duration_seconds)


def record_remote_failure(detector: str, reason: str) -> None:
    REMOTE_FAILURES_TOTAL.labels(detector=_label(detector), reason=_label(reason)).inc()


def record_decision(blocked: bool, detector: str | None) -> None:
    DECISIONS_TOTAL.labels(
        outcome="blocked" if blocked else "allowed",
        detector=_label(detector, "none"),
    ).inc()


def record_log_write_failure() -> None:
    EVENT_LOG_WRITE_FAILURES_TOTAL.inc()


def record_block_store_write(source: str | None, *, success: bool) -> None:
    BLOCK_STORE_WRITES_TOTAL.labels(
        source=_label(source, "manual"),
        result="ok" if success else "failed",
    ).inc()


def record_cache_hit(cache_name: str) -> None:
    CACHE_HIT_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_miss(cache_name: str) -> None:
    CACHE_MISS_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_set(cache_name: str, payload_bytes: int | None = None) -> None:
    CACHE_SET_TOTAL.labels(cache=_label(cache_name, "default")).inc()
    if payload_bytes is not None:
        CACHE_PAYLOAD_BYTES.labels(cache=_label(cache_name, "default")).observe(payload_bytes)
