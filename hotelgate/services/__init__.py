"""
Service layer infrastructure - resilience patterns for supplier reads.

Provides:
- CacheStore: Jittered TTL cache with a stale shadow copy
- LockManager: Advisory per-key locks for stampede control
- CircuitBreaker: Rolling error-rate breaker per upstream operation
- IdempotencyLedger: Replays responses for retried client requests
- RequestDeduplicator: Coalesces concurrent loads within a process
- ReadThroughOrchestrator: Composes all of the above for one resource
- SupplierClient: HTTP client for the upstream provider
"""

from hotelgate.services.errors import (
    ServiceError,
    CircuitOpenError,
    RequestTimeoutError,
    UpstreamNotFoundError,
    UpstreamUnavailableError,
)
from hotelgate.services.backend import KeyValueBackend, MemoryBackend, RedisBackend
from hotelgate.services.cache import CacheStore, CacheStats
from hotelgate.services.lock import LockManager
from hotelgate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from hotelgate.services.idempotency import IdempotencyLedger, IdempotencyRecord
from hotelgate.services.deduplicator import RequestDeduplicator
from hotelgate.services.orchestrator import (
    CacheOutcome,
    ReadThroughOrchestrator,
    ReadThroughResult,
)
from hotelgate.services.client import SupplierClient

__all__ = [
    # Errors
    "ServiceError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "UpstreamNotFoundError",
    "UpstreamUnavailableError",
    # Backends
    "KeyValueBackend",
    "MemoryBackend",
    "RedisBackend",
    # Cache / locks / ledger
    "CacheStore",
    "CacheStats",
    "LockManager",
    "IdempotencyLedger",
    "IdempotencyRecord",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Orchestration
    "RequestDeduplicator",
    "CacheOutcome",
    "ReadThroughOrchestrator",
    "ReadThroughResult",
    # Client
    "SupplierClient",
]
