"""
Tests for the cache store and its in-memory backend.

Tests cover:
1. Fresh reads and the stale shadow written alongside every set
2. TTL jitter bounds
3. Fail-soft behaviour when the backend errors
"""

import asyncio
import random

import pytest

from hotelgate.services.backend import MemoryBackend
from hotelgate.services.cache import CacheStore
from hotelgate.utils import jittered_ttl


class TestJitter:
    """Tests for TTL jitter."""

    def test_no_randomness_keeps_base_ttl(self):
        assert jittered_ttl(100, 0.2, rand=lambda: 0.0) == 100

    def test_midpoint(self):
        assert jittered_ttl(100, 0.2, rand=lambda: 0.5) == 110

    def test_always_within_bounds(self):
        rng = random.Random(42)
        values = {jittered_ttl(300, 0.2, rand=rng.random) for _ in range(500)}
        assert min(values) >= 300
        assert max(values) <= 360
        # Spread, not a constant
        assert len(values) > 10


class TestCacheStore:
    """Tests for fresh/stale reads and writes."""

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache):
        assert await cache.get("rooms:1") is None
        assert await cache.get_stale("rooms:1") is None
        assert cache.get_stats().misses == 1

    @pytest.mark.asyncio
    async def test_set_writes_fresh_and_stale(self, cache):
        await cache.set("rooms:1", {"rooms": [1, 2]}, ttl_seconds=60)

        assert await cache.get("rooms:1") == {"rooms": [1, 2]}
        assert await cache.get_stale("rooms:1") == {"rooms": [1, 2]}
        assert cache.get_stats().writes == 1

    @pytest.mark.asyncio
    async def test_stale_shadow_outlives_fresh_entry(self, cache, clock):
        await cache.set("rooms:1", {"v": 1}, ttl_seconds=60)

        clock.advance(60)
        assert await cache.get("rooms:1") is None
        assert await cache.get_stale("rooms:1") == {"v": 1}

        clock.advance(60)
        assert await cache.get_stale("rooms:1") is None

    @pytest.mark.asyncio
    async def test_stale_ttl_uses_jittered_fresh_ttl(self, backend, clock):
        cache = CacheStore(backend, jitter_percent=0.5, rand=lambda: 1.0)
        await cache.set("k", "v", ttl_seconds=100)

        # fresh = 150, stale = 300
        clock.advance(149)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None
        clock.advance(149)
        assert await cache.get_stale("k") == "v"
        clock.advance(1)
        assert await cache.get_stale("k") is None

    @pytest.mark.asyncio
    async def test_refresh_overwrites_shadow(self, cache):
        await cache.set("k", {"v": 1}, ttl_seconds=60)
        await cache.set("k", {"v": 2}, ttl_seconds=60)

        assert await cache.get_stale("k") == {"v": 2}


class TestCacheStoreFailSoft:
    """Backend failures must never reach the caller."""

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, failing_backend):
        cache = CacheStore(failing_backend)

        assert await cache.get("k") is None
        assert await cache.get_stale("k") is None
        assert cache.get_stats().errors == 2

    @pytest.mark.asyncio
    async def test_set_error_is_a_noop(self, failing_backend):
        cache = CacheStore(failing_backend)

        await cache.set("k", {"v": 1}, ttl_seconds=60)

        assert cache.get_stats().writes == 0
        assert cache.get_stats().errors == 1

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_a_miss(self, backend, cache):
        await backend.set("k", "{not json", 60)

        assert await cache.get("k") is None


class TestMemoryBackend:
    """Tests for the in-process backend."""

    @pytest.mark.asyncio
    async def test_only_if_absent(self, backend):
        assert await backend.set("k", "a", 10, only_if_absent=True) is True
        assert await backend.set("k", "b", 10, only_if_absent=True) is False
        assert await backend.get("k") == "a"

    @pytest.mark.asyncio
    async def test_expired_key_counts_as_absent(self, backend, clock):
        await backend.set("k", "a", 10)
        clock.advance(10)

        assert await backend.set("k", "b", 10, only_if_absent=True) is True
        assert await backend.get("k") == "b"

    @pytest.mark.asyncio
    async def test_evicts_soonest_expiring_when_full(self, clock):
        backend = MemoryBackend(max_size=2, clock=clock)
        await backend.set("short", "1", 5)
        await backend.set("long", "2", 500)
        await backend.set("new", "3", 50)

        assert len(backend) == 2
        assert await backend.get("short") is None
        assert await backend.get("long") == "2"

    @pytest.mark.asyncio
    async def test_concurrent_set_if_absent_has_one_winner(self, backend):
        results = await asyncio.gather(
            *(backend.set("k", str(i), 10, only_if_absent=True) for i in range(20))
        )

        assert results.count(True) == 1

    def test_usable_from_more_than_one_event_loop(self, clock):
        backend = MemoryBackend(clock=clock)

        asyncio.run(backend.set("k", "a", 10))

        assert asyncio.run(backend.get("k")) == "a"
