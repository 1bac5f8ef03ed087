"""Prometheus metrics for the retrieval gateway.

Collectors live in the default ``prometheus_client`` registry; exposing them
is up to the host process (for example ``prometheus_client.start_http_server``
or the web app's ``/metrics`` route).

Metrics:
    rag_gateway_requests_total{strategy, outcome}
    rag_gateway_latency_ms{strategy}
    rag_circuit_breaker_state{breaker}   0=closed, 1=half_open, 2=open
"""
import logging

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# Gateway outcomes
OUTCOME_FRESH = "fresh"
OUTCOME_CACHE_HIT = "cache_hit"
OUTCOME_STALE_FALLBACK = "stale_fallback"
OUTCOME_EMPTY_FALLBACK = "empty_fallback"

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


def _get_or_create(collector_cls, name: str, documentation: str, labelnames, **kwargs):
    """Register a collector, reusing an existing one on module reload."""
    try:
        return collector_cls(name, documentation, labelnames, **kwargs)
    except ValueError:
        # Already registered, get the existing collector
        existing = REGISTRY._names_to_collectors.get(name)
        if existing is None:
            raise
        return existing


gateway_requests = _get_or_create(
    Counter,
    "rag_gateway_requests_total",
    "Retrieval gateway requests by outcome",
    ["strategy", "outcome"],
)

gateway_latency = _get_or_create(
    Histogram,
    "rag_gateway_latency_ms",
    "Retrieval gateway latency in milliseconds",
    ["strategy"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

circuit_state = _get_or_create(
    Gauge,
    "rag_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)


def record_retrieval(strategy: str, outcome: str, latency_ms: float) -> None:
    """Count one gateway request and observe its latency."""
    gateway_requests.labels(strategy=strategy, outcome=outcome).inc()
    gateway_latency.labels(strategy=strategy).observe(latency_ms)


def record_circuit_state(breaker: str, state: str) -> None:
    """Publish the current state of a circuit breaker."""
    circuit_state.labels(breaker=breaker).set(CIRCUIT_STATE_VALUES[state])
