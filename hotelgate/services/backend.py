"""
Key/value backing stores shared by the cache, lock manager and idempotency ledger.

Two implementations:
- MemoryBackend: in-process dict with per-key expiry, for single-process
  deployments and tests
- RedisBackend: redis.asyncio client, the shared store across processes

Every write carries a TTL; nothing is kept forever.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import redis.asyncio as redis
from loguru import logger


class KeyValueBackend(ABC):
    """Minimal async key/value interface with TTLs and set-if-absent."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or None if absent/expired."""
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        """
        Store ``value`` under ``key`` for ``ttl_seconds``.

        With ``only_if_absent`` the write is a single atomic conditional
        write. Returns True if the value was written.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed."""
        ...

    async def close(self) -> None:
        """Release connections."""
        return None


@dataclass
class _Entry:
    value: str
    expires_at: float


class MemoryBackend(KeyValueBackend):
    """
    In-process backend.

    Method bodies never await, so each operation, including the
    set-if-absent check, is atomic on the event loop.

    Usage:
        backend = MemoryBackend(max_size=10_000)
        await backend.set("k", "v", ttl_seconds=60)
    """

    def __init__(
        self,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._data: dict[str, _Entry] = {}
        self._max_size = max_size
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry.value if entry else None

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        if only_if_absent and self._live_entry(key) is not None:
            return False

        if len(self._data) >= self._max_size and key not in self._data:
            self._evict()

        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._data)

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _evict(self) -> None:
        """Drop expired entries, or the one closest to expiry if none are."""
        now = self._clock()
        expired = [k for k, e in self._data.items() if now >= e.expires_at]
        for key in expired:
            del self._data[key]
        if expired or not self._data:
            return

        soonest = min(self._data, key=lambda k: self._data[k].expires_at)
        del self._data[soonest]
        logger.debug(f"[MemoryBackend] EVICT: {soonest[:50]}")


class RedisBackend(KeyValueBackend):
    """Redis backed store; the client is created lazily on first use."""

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self._redis_url = redis_url
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def get(self, key: str) -> str | None:
        return await self._get_client().get(key)

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        result = await self._get_client().set(
            key, value, ex=max(1, int(ttl_seconds)), nx=only_if_absent
        )
        return bool(result)

    async def delete(self, key: str) -> bool:
        return bool(await self._get_client().delete(key))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
