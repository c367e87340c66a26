"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_REGISTRY = CollectorRegistry()

TRANSPORT_ATTEMPTS = Counter(
    "aircon_transport_attempts_total",
    "Status/command attempts per transport and outcome",
    ["transport", "operation", "result"],
    registry=_REGISTRY,
)
TRANSPORT_FALLBACKS = Counter(
    "aircon_transport_fallbacks_total",
    "Fallback hops taken after a primary transport failed",
    ["source", "target", "result"],
    registry=_REGISTRY,
)
TRANSPORT_HEALTH = Gauge(
    "aircon_transport_healthy",
    "Transport health per device (1=healthy, 0=unhealthy)",
    ["device_id", "transport"],
    registry=_REGISTRY,
)
OPERATION_DURATION = Histogram(
    "aircon_operation_duration_seconds",
    "Time spent executing a registry status/command operation",
    ["operation", "result"],
    registry=_REGISTRY,
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)
DISCOVERY_CANDIDATES = Counter(
    "aircon_discovery_candidates_total",
    "Candidate devices reported by a discovery method",
    ["method"],
    registry=_REGISTRY,
)
DISCOVERY_ERRORS = Counter(
    "aircon_discovery_errors_total",
    "Discovery method failures",
    ["method", "reason"],
    registry=_REGISTRY,
)
DISCOVERY_DURATION = Histogram(
    "aircon_discovery_duration_seconds",
    "Time spent performing a full discovery run",
    ["result"],
    registry=_REGISTRY,
    buckets=[0.5, 1, 2, 5, 8, 10, 15, 30],
)
DISCOVERY_CACHE_HITS = Counter(
    "aircon_discovery_cache_hits_total",
    "Discovery requests served from the cache",
    registry=_REGISTRY,
)


def get_registry() -> CollectorRegistry:
    """Return the registry holding the bridge metrics."""

    return _REGISTRY


def latest_metrics() -> bytes:
    """Render the latest metrics payload for scraping."""

    return generate_latest(_REGISTRY)


def record_transport_attempt(transport: str, operation: str, result: str) -> None:
    """Record the outcome of a single transport attempt."""

    TRANSPORT_ATTEMPTS.labels(transport=transport, operation=operation, result=result).inc()


def record_fallback(source: str, target: str, result: str) -> None:
    """Record a fallback hop and whether it succeeded."""

    TRANSPORT_FALLBACKS.labels(source=source, target=target, result=result).inc()


def record_transport_health(device_id: str, transport: str, healthy: bool) -> None:
    """Expose the current healthy flag for a device transport."""

    TRANSPORT_HEALTH.labels(device_id=device_id, transport=transport).set(1 if healthy else 0)


def observe_operation(operation: str, result: str, duration_seconds: float) -> None:
    """Record how long a registry operation took."""

    OPERATION_DURATION.labels(operation=operation, result=result).observe(duration_seconds)


def record_discovery_candidates(method: str, count: int) -> None:
    """Record candidates reported by a discovery method."""

    if count > 0:
        DISCOVERY_CANDIDATES.labels(method=method).inc(count)


def record_discovery_error(method: str, reason: str) -> None:
    """Record a failed or timed-out discovery method."""

    DISCOVERY_ERRORS.labels(method=method, reason=reason).inc()


def observe_discovery_run(result: str, duration_seconds: float) -> None:
    """Record the duration of a discovery run."""

    DISCOVERY_DURATION.labels(result=result).observe(duration_seconds)


def record_discovery_cache_hit() -> None:
    """Record a discovery request answered from the cache."""

    DISCOVERY_CACHE_HITS.inc()
