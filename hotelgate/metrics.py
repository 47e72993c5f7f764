"""
Prometheus metrics for the gateway.

Each HotelMetrics owns its CollectorRegistry so several apps (and tests)
can live in one process without duplicate registration errors.
"""

from typing import TYPE_CHECKING

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

if TYPE_CHECKING:
    from hotelgate.services.circuit_breaker import CircuitState
    from hotelgate.services.orchestrator import CacheOutcome

CIRCUIT_STATE_VALUES = {"CLOSED": 0, "OPEN": 1, "HALF_OPEN": 2}

# Cache outcome -> (operation type, outcome label)
CACHE_OPERATION_LABELS = {
    "hit": ("read", "hit"),
    "rebuild": ("write", "rebuild"),
    "coalesced": ("read", "coalesced"),
    "stale": ("read", "stale_served"),
    "replay": ("read", "replay"),
}


class HotelMetrics:
    """
    Request, cache, supplier and circuit metrics.

    Usage:
        metrics = HotelMetrics()
        metrics.record_request("/api/product/v2/hotels/{property_id}", 200, 0.012)
        body = metrics.render()
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        if registry is None:
            registry = CollectorRegistry()
            ProcessCollector(registry=registry)
            PlatformCollector(registry=registry)
            GCCollector(registry=registry)
        self.registry = registry

        self.requests_total = Counter(
            "hotel_requests_total",
            "Total hotel requests",
            ["endpoint", "status_code"],
            registry=registry,
        )
        self.cache_operations_total = Counter(
            "hotel_cache_operations_total",
            "Cache operations",
            ["type", "outcome"],
            registry=registry,
        )
        self.response_duration_seconds = Histogram(
            "hotel_response_duration_seconds",
            "Response duration",
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
            registry=registry,
        )
        self.supplier_requests_total = Counter(
            "supplier_requests_total",
            "Supplier requests",
            ["status"],
            registry=registry,
        )
        self.supplier_latency_seconds = Histogram(
            "supplier_latency_seconds",
            "Supplier latency",
            buckets=(0.1, 0.5, 1, 2, 5),
            registry=registry,
        )
        self.circuit_state = Gauge(
            "circuit_state",
            "Circuit breaker state (0: closed, 1: open, 2: half-open)",
            ["service"],
            registry=registry,
        )

    def record_request(self, endpoint: str, status_code: int, duration: float) -> None:
        self.requests_total.labels(endpoint=endpoint, status_code=str(status_code)).inc()
        self.response_duration_seconds.observe(duration)

    def record_cache_outcome(self, outcome: "CacheOutcome") -> None:
        op_type, label = CACHE_OPERATION_LABELS[outcome.value]
        self.cache_operations_total.labels(type=op_type, outcome=label).inc()

    def record_supplier_call(self, status: str, latency: float) -> None:
        """``status`` is one of success, not_found, timeout, error."""
        self.supplier_requests_total.labels(status=status).inc()
        self.supplier_latency_seconds.observe(latency)

    def set_circuit_state(self, service_id: str, state: "CircuitState") -> None:
        self.circuit_state.labels(service=service_id).set(CIRCUIT_STATE_VALUES[state.value])

    def on_circuit_state_change(
        self, service_id: str, old: "CircuitState", new: "CircuitState"
    ) -> None:
        """CircuitBreaker ``on_state_change`` callback."""
        self.set_circuit_state(service_id, new)

    def render(self) -> bytes:
        return generate_latest(self.registry)
