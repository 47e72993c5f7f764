"""
ReadThroughOrchestrator - Fetch-or-serve decision for one kind of resource.

Combines:
- IdempotencyLedger to replay responses for retried client requests
- CacheStore for fresh reads and the stale fallback
- LockManager and RequestDeduplicator to limit duplicate upstream loads
- CircuitBreaker around the upstream fetch

The resource is described by three functions: how to derive the cache
key from a query, how to fetch raw data upstream, and how to transform
raw data into the cached response. Property info and room lists are two
instances of this class.
"""

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from hotelgate.metrics import HotelMetrics
from hotelgate.services.cache import CacheStore
from hotelgate.services.circuit_breaker import CircuitBreaker
from hotelgate.services.deduplicator import RequestDeduplicator
from hotelgate.services.errors import (
    CircuitOpenError,
    ServiceError,
    UpstreamNotFoundError,
    UpstreamUnavailableError,
)
from hotelgate.services.idempotency import IdempotencyLedger
from hotelgate.services.lock import LockManager

Q = TypeVar("Q")


class CacheOutcome(str, Enum):
    """How a response was produced."""

    HIT = "hit"  # Fresh cache entry
    REBUILD = "rebuild"  # Fetched upstream and cached
    COALESCED = "coalesced"  # Filled by a concurrent loader
    STALE = "stale"  # Upstream failed, stale shadow served
    REPLAY = "replay"  # Idempotent replay of an earlier response


@dataclass
class ReadThroughResult:
    """Result of a read-through fetch."""

    data: Any
    outcome: CacheOutcome
    retry_after: int | None = None

    @property
    def is_stale(self) -> bool:
        return self.outcome == CacheOutcome.STALE


class ReadThroughOrchestrator(Generic[Q]):
    """
    Read-through cache in front of one upstream operation.

    Usage:
        rooms = ReadThroughOrchestrator(
            name="rooms",
            cache=cache, locks=locks, breaker=registry.get("rooms"),
            ledger=ledger,
            key_fn=lambda q: rooms_cache_key(...),
            fetch_fn=fetch_rooms_and_closed_dates,
            transform_fn=price_rooms,
            ttl_seconds=300,
        )
        result = await rooms.fetch(query, idempotency_key="abc")
    """

    def __init__(
        self,
        name: str,
        cache: CacheStore,
        locks: LockManager,
        breaker: CircuitBreaker,
        ledger: IdempotencyLedger,
        key_fn: Callable[[Q], str],
        fetch_fn: Callable[[Q], Awaitable[Any]],
        transform_fn: Callable[[Q, Any], Any],
        ttl_seconds: int,
        fingerprint_fn: Callable[[Q], str] | None = None,
        deduplicator: RequestDeduplicator | None = None,
        lock_ttl_seconds: int = 10,
        lock_wait: float = 0.1,
        retry_after_seconds: int = 60,
        metrics: HotelMetrics | None = None,
    ):
        self.name = name
        self._cache = cache
        self._locks = locks
        self._breaker = breaker
        self._ledger = ledger
        self._key_fn = key_fn
        self._fetch_fn = fetch_fn
        self._transform_fn = transform_fn
        self._ttl_seconds = ttl_seconds
        self._fingerprint_fn = fingerprint_fn
        self._deduplicator = deduplicator
        self._lock_ttl_seconds = lock_ttl_seconds
        self._lock_wait = lock_wait
        self._retry_after_seconds = retry_after_seconds
        self._metrics = metrics

    async def fetch(
        self, query: Q, idempotency_key: str | None = None
    ) -> ReadThroughResult:
        """
        Serve ``query`` from the ledger, the cache, or the upstream.

        Raises:
            UpstreamNotFoundError: Upstream reported the resource missing
            UpstreamUnavailableError: Upstream failed with no stale copy
        """
        fingerprint = self._fingerprint_fn(query) if self._fingerprint_fn else None

        if idempotency_key:
            record = await self._ledger.lookup(idempotency_key, fingerprint)
            if record is not None:
                logger.info(f"[{self.name}] Idempotent replay for key '{idempotency_key}'")
                return self._observe(
                    ReadThroughResult(
                        data=record.response,
                        outcome=CacheOutcome.REPLAY,
                        retry_after=record.retry_after,
                    )
                )

        cache_key = self._key_fn(query)

        cached = await self._cache.get(cache_key)
        if cached is not None:
            result = ReadThroughResult(data=cached, outcome=CacheOutcome.HIT)
        else:
            try:
                result = await self._load_shared(query, cache_key)
            except UpstreamNotFoundError:
                raise
            except ServiceError as e:
                result = await self._serve_stale(cache_key, e)

        if idempotency_key:
            await self._ledger.record(
                idempotency_key,
                result.data,
                fingerprint=fingerprint,
                retry_after=result.retry_after,
                stale=result.is_stale,
            )
        return self._observe(result)

    def _observe(self, result: ReadThroughResult) -> ReadThroughResult:
        if self._metrics is not None:
            self._metrics.record_cache_outcome(result.outcome)
        return result

    async def _load_shared(self, query: Q, cache_key: str) -> ReadThroughResult:
        if self._deduplicator is None:
            return await self._load(query, cache_key)

        result, joined = await self._deduplicator.run(
            cache_key, lambda: self._load(query, cache_key)
        )
        if joined:
            return ReadThroughResult(data=result.data, outcome=CacheOutcome.COALESCED)
        return result

    async def _load(self, query: Q, cache_key: str) -> ReadThroughResult:
        """Lock, fetch through the breaker, transform and cache."""
        locked = await self._locks.acquire(cache_key, self._lock_ttl_seconds)
        if not locked:
            # Someone else is probably loading; give them a moment, then go anyway
            await asyncio.sleep(self._lock_wait)
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return ReadThroughResult(data=cached, outcome=CacheOutcome.COALESCED)

        try:
            data = await self._breaker.call(self._fetch_and_transform, query)
            await self._cache.set(cache_key, data, self._ttl_seconds)
            logger.info(f"[{self.name}] Cache rebuild: {cache_key[:80]}")
            return ReadThroughResult(data=data, outcome=CacheOutcome.REBUILD)
        finally:
            if locked:
                await self._locks.release(cache_key)

    async def _fetch_and_transform(self, query: Q) -> Any:
        """Upstream fetch plus transform; an unusable payload is an upstream error."""
        raw = await self._fetch_fn(query)
        try:
            return self._transform_fn(query, raw)
        except Exception as e:
            logger.error(f"[{self.name}] Malformed upstream payload: {e!r}")
            raise ServiceError(
                f"Malformed upstream payload: {e!r}", service_id=self.name
            ) from e

    async def _serve_stale(
        self, cache_key: str, error: ServiceError
    ) -> ReadThroughResult:
        retry_after = self._retry_after_for(error)
        stale = await self._cache.get_stale(cache_key)
        if stale is None:
            logger.error(f"[{self.name}] Upstream failed, no stale copy: {error}")
            raise UpstreamUnavailableError(self.name, retry_after, str(error)) from error

        logger.warning(f"[{self.name}] Upstream failed, serving stale data: {error}")
        return ReadThroughResult(
            data=stale, outcome=CacheOutcome.STALE, retry_after=retry_after
        )

    def _retry_after_for(self, error: ServiceError) -> int:
        if isinstance(error, CircuitOpenError) and error.reset_after_seconds > 0:
            return max(1, math.ceil(error.reset_after_seconds))
        return self._retry_after_seconds
