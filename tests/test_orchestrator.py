"""
Tests for the read-through orchestrator.

Tests cover:
1. Cache hit/miss and idempotent replay
2. Stale fallback and unavailability on upstream failure
3. Lock wait-and-recheck and in-process coalescing
4. Degraded operation when the backing store is down
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from hotelgate.services.cache import CacheStore
from hotelgate.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from hotelgate.services.deduplicator import RequestDeduplicator
from hotelgate.services.errors import (
    RequestTimeoutError,
    ServiceError,
    UpstreamNotFoundError,
    UpstreamUnavailableError,
)
from hotelgate.services.idempotency import IdempotencyLedger
from hotelgate.services.lock import LockManager
from hotelgate.services.orchestrator import CacheOutcome, ReadThroughOrchestrator

TTL = 60


@pytest.fixture
def upstream() -> AsyncMock:
    return AsyncMock(return_value={"price": 100})


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(
        "rooms",
        CircuitBreakerConfig(volume_threshold=3),
        clock=clock,
    )


def build(cache, locks, ledger, breaker, upstream, **kwargs) -> ReadThroughOrchestrator:
    options = dict(
        name="rooms",
        cache=cache,
        locks=locks,
        breaker=breaker,
        ledger=ledger,
        key_fn=lambda q: f"rooms:{q}",
        fetch_fn=upstream,
        transform_fn=lambda q, raw: {"id": q, "rooms": [raw]},
        fingerprint_fn=lambda q: f"fp:{q}",
        ttl_seconds=TTL,
        lock_wait=0.01,
        retry_after_seconds=60,
    )
    options.update(kwargs)
    return ReadThroughOrchestrator(**options)


@pytest.fixture
def orchestrator(cache, locks, ledger, breaker, upstream) -> ReadThroughOrchestrator:
    return build(cache, locks, ledger, breaker, upstream)


class TestReadThrough:
    """Fresh path: miss, rebuild, hit."""

    @pytest.mark.asyncio
    async def test_miss_fetches_transforms_and_caches(self, orchestrator, upstream, cache):
        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.REBUILD
        assert result.data == {"id": "123", "rooms": [{"price": 100}]}
        assert result.retry_after is None
        upstream.assert_awaited_once_with("123")
        assert await cache.get("rooms:123") == result.data
        assert await cache.get_stale("rooms:123") == result.data

    @pytest.mark.asyncio
    async def test_repeat_within_ttl_is_served_from_cache(self, orchestrator, upstream):
        first = await orchestrator.fetch("123")
        upstream.return_value = {"price": 999}

        second = await orchestrator.fetch("123")

        assert second.outcome == CacheOutcome.HIT
        assert second.data == first.data
        assert upstream.await_count == 1

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, orchestrator, upstream, clock):
        await orchestrator.fetch("123")
        clock.advance(TTL)

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.REBUILD
        assert upstream.await_count == 2

    @pytest.mark.asyncio
    async def test_lock_released_after_rebuild(self, orchestrator, locks):
        await orchestrator.fetch("123")

        assert await locks.acquire("rooms:123") is True


class TestIdempotency:
    """Replays of a client key return the first response verbatim."""

    @pytest.mark.asyncio
    async def test_replay_ignores_newer_upstream_data(self, orchestrator, upstream, clock):
        first = await orchestrator.fetch("123", idempotency_key="key-1")
        upstream.return_value = {"price": 999}
        clock.advance(TTL * 3)

        second = await orchestrator.fetch("123", idempotency_key="key-1")

        assert second.outcome == CacheOutcome.REPLAY
        assert second.data == first.data
        assert upstream.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_hit_is_recorded_for_the_key(self, orchestrator, ledger):
        await orchestrator.fetch("123")
        await orchestrator.fetch("123", idempotency_key="key-2")

        record = await ledger.lookup("key-2")
        assert record.response == {"id": "123", "rooms": [{"price": 100}]}
        assert record.fingerprint == "fp:123"

    @pytest.mark.asyncio
    async def test_hard_failure_is_not_recorded(self, orchestrator, upstream, ledger):
        upstream.side_effect = ServiceError("down")

        with pytest.raises(UpstreamUnavailableError):
            await orchestrator.fetch("123", idempotency_key="key-3")

        assert await ledger.lookup("key-3") is None

        # The client can retry the same key once the upstream recovers
        upstream.side_effect = None
        result = await orchestrator.fetch("123", idempotency_key="key-3")
        assert result.outcome == CacheOutcome.REBUILD


class TestStaleFallback:
    """Upstream failures fall back to the stale shadow."""

    @pytest.mark.asyncio
    async def test_serves_stale_with_retry_hint(self, orchestrator, upstream, clock):
        first = await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.side_effect = ServiceError("502 from supplier")

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.STALE
        assert result.is_stale
        assert result.data == first.data
        assert result.retry_after == 60

    @pytest.mark.asyncio
    async def test_timeout_serves_stale(self, orchestrator, upstream, clock):
        await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.side_effect = RequestTimeoutError("rooms", 5)

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.STALE

    @pytest.mark.asyncio
    async def test_stale_response_is_recorded_with_hint(self, orchestrator, upstream, clock):
        await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.side_effect = ServiceError("down")

        stale = await orchestrator.fetch("123", idempotency_key="key-4")
        replay = await orchestrator.fetch("123", idempotency_key="key-4")

        assert replay.outcome == CacheOutcome.REPLAY
        assert replay.data == stale.data
        assert replay.retry_after == 60

    @pytest.mark.asyncio
    async def test_no_stale_copy_raises_unavailable(self, orchestrator, upstream):
        upstream.side_effect = ServiceError("down")

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await orchestrator.fetch("123")

        assert exc_info.value.retry_after == 60

    @pytest.mark.asyncio
    async def test_open_circuit_serves_stale_without_calling_upstream(
        self, orchestrator, upstream, clock
    ):
        await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.side_effect = ServiceError("down")
        for key in ("a", "b", "c"):
            with pytest.raises(UpstreamUnavailableError):
                await orchestrator.fetch(key)
        calls = upstream.await_count

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.STALE
        assert result.retry_after == 30
        assert upstream.await_count == calls

    @pytest.mark.asyncio
    async def test_unusable_payload_serves_stale(self, cache, locks, ledger, breaker, clock):
        def transform(q, raw):
            return {"id": q, "title": raw["title"]}

        upstream = AsyncMock(return_value={"title": "Grand"})
        orchestrator = build(cache, locks, ledger, breaker, upstream, transform_fn=transform)
        first = await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.return_value = ["not", "an", "object"]

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.STALE
        assert result.data == first.data
        assert breaker.get_status()["window_failures"] == 1

    @pytest.mark.asyncio
    async def test_unusable_payload_without_stale_is_unavailable(
        self, cache, locks, ledger, breaker
    ):
        upstream = AsyncMock(return_value=None)
        orchestrator = build(
            cache, locks, ledger, breaker, upstream, transform_fn=lambda q, raw: raw["x"]
        )

        with pytest.raises(UpstreamUnavailableError):
            await orchestrator.fetch("123")

    @pytest.mark.asyncio
    async def test_not_found_skips_stale_fallback(self, orchestrator, upstream, clock):
        await orchestrator.fetch("123")
        clock.advance(TTL)
        upstream.side_effect = UpstreamNotFoundError("gone")

        with pytest.raises(UpstreamNotFoundError):
            await orchestrator.fetch("123")


class TestStampedeControl:
    """Lock wait-and-recheck and in-process coalescing."""

    @pytest.mark.asyncio
    async def test_waits_and_rechecks_when_locked(self, orchestrator, upstream, locks, cache):
        await locks.acquire("rooms:123")

        async def other_loader():
            await asyncio.sleep(0.001)
            await cache.set("rooms:123", {"id": "123", "rooms": ["theirs"]}, TTL)

        filler = asyncio.create_task(other_loader())
        result = await orchestrator.fetch("123")
        await filler

        assert result.outcome == CacheOutcome.COALESCED
        assert result.data == {"id": "123", "rooms": ["theirs"]}
        upstream.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetches_anyway_when_lock_holder_is_slow(self, orchestrator, upstream, locks):
        await locks.acquire("rooms:123")

        result = await orchestrator.fetch("123")

        assert result.outcome == CacheOutcome.REBUILD
        upstream.assert_awaited_once()
        # Someone else's lock is left alone
        assert await locks.acquire("rooms:123") is False

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_upstream_call(
        self, cache, locks, ledger, breaker
    ):
        release = asyncio.Event()

        async def slow_upstream(q):
            await release.wait()
            return {"price": 100}

        upstream = AsyncMock(side_effect=slow_upstream)
        orchestrator = build(
            cache, locks, ledger, breaker, upstream, deduplicator=RequestDeduplicator()
        )

        tasks = [asyncio.create_task(orchestrator.fetch("123")) for _ in range(5)]
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(*tasks)

        assert upstream.await_count == 1
        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["coalesced"] * 4 + ["rebuild"]
        assert all(r.data == results[0].data for r in results)


class TestDegradedBackend:
    """A broken backing store degrades to uncached operation."""

    @pytest.mark.asyncio
    async def test_fetches_upstream_when_store_is_down(self, failing_backend, breaker, upstream):
        orchestrator = build(
            CacheStore(failing_backend),
            LockManager(failing_backend),
            IdempotencyLedger(failing_backend),
            breaker,
            upstream,
        )

        result = await orchestrator.fetch("123", idempotency_key="key-5")

        assert result.outcome == CacheOutcome.REBUILD
        assert result.data == {"id": "123", "rooms": [{"price": 100}]}

    @pytest.mark.asyncio
    async def test_store_down_and_upstream_down_is_unavailable(self, failing_backend, breaker):
        orchestrator = build(
            CacheStore(failing_backend),
            LockManager(failing_backend),
            IdempotencyLedger(failing_backend),
            breaker,
            AsyncMock(side_effect=ServiceError("down")),
        )

        with pytest.raises(UpstreamUnavailableError):
            await orchestrator.fetch("123")
