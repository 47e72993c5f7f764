"""
CacheStore - Read-through cache with jittered TTLs and a stale shadow.

Features:
- Fresh entries expire after a jittered TTL so keys written together
  do not expire together
- Every write also refreshes a longer-lived stale shadow, read only
  after a fresh miss when the upstream is failing
- Fail-soft: backend errors are logged and turned into a miss or a no-op
"""

import json
import random
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from hotelgate.services.backend import KeyValueBackend
from hotelgate.utils import jittered_ttl

STALE_SUFFIX = ":stale"


class CacheStore:
    """
    Fresh/stale cache over a shared key/value backend.

    Usage:
        cache = CacheStore(backend, jitter_percent=0.2)

        data = await cache.get(key)
        if data is None:
            data = await fetch()
            await cache.set(key, data, ttl_seconds=300)
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        jitter_percent: float = 0.2,
        stale_multiplier: int = 2,
        rand: Callable[[], float] = random.random,
        debug: bool = False,
    ):
        self._backend = backend
        self._jitter_percent = jitter_percent
        self._stale_multiplier = stale_multiplier
        self._rand = rand
        self._debug = debug
        self._stats = CacheStats()

    @staticmethod
    def stale_key(key: str) -> str:
        return f"{key}{STALE_SUFFIX}"

    async def get(self, key: str) -> Any | None:
        """Get the fresh value for ``key``, or None on miss or backend error."""
        value = await self._read(key)
        if value is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
        else:
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}...")
        return value

    async def get_stale(self, key: str) -> Any | None:
        """Get the stale shadow for ``key``; only meaningful after a fresh miss."""
        value = await self._read(self.stale_key(key))
        if value is not None:
            self._stats.stale_hits += 1
            self._log(f"STALE HIT: {key[:50]}...")
        return value

    async def set(self, key: str, data: Any, ttl_seconds: int) -> None:
        """
        Write the fresh entry and its stale shadow.

        Args:
            key: Cache key
            data: JSON-serializable value
            ttl_seconds: Base TTL, jittered before use
        """
        fresh_ttl = jittered_ttl(ttl_seconds, self._jitter_percent, self._rand)
        stale_ttl = fresh_ttl * self._stale_multiplier

        try:
            payload = json.dumps(data)
            await self._backend.set(key, payload, fresh_ttl)
            await self._backend.set(self.stale_key(key), payload, stale_ttl)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key[:50]}, skipping write: {e}")
            return

        self._stats.writes += 1
        self._log(f"SET: {key[:50]}... (TTL: {fresh_ttl}s, stale: {stale_ttl}s)")

    async def _read(self, key: str) -> Any | None:
        try:
            payload = await self._backend.get(key)
            if payload is None:
                return None
            return json.loads(payload)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key[:50]}, bypassing: {e}")
            return None

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    async def close(self) -> None:
        await self._backend.close()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheStore] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate fresh hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "writes": self.writes,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
