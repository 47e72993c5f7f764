"""
LockManager - Advisory per-key locks for stampede control.

A lock is a single "set if not exists" write with a TTL. Release is
best-effort; the TTL is what guarantees a crashed holder cannot block
the key forever. Callers that lose the race wait briefly and re-check
the cache rather than blocking, so two fetches for the same key can
still happen. That only bounds duplicate upstream load.
"""

from loguru import logger

from hotelgate.services.backend import KeyValueBackend

LOCK_SUFFIX = ":lock"


class LockManager:
    """Acquire/release advisory locks keyed by cache key."""

    def __init__(self, backend: KeyValueBackend, default_ttl: int = 10):
        self._backend = backend
        self._default_ttl = default_ttl

    @staticmethod
    def lock_key(key: str) -> str:
        return f"{key}{LOCK_SUFFIX}"

    async def acquire(self, key: str, ttl: int | None = None) -> bool:
        """Return True iff this caller now holds the lock for ``key``."""
        try:
            return await self._backend.set(
                self.lock_key(key),
                "locked",
                ttl or self._default_ttl,
                only_if_absent=True,
            )
        except Exception as e:
            logger.error(f"Lock acquire error for {key[:50]}, proceeding unlocked: {e}")
            return False

    async def release(self, key: str) -> None:
        try:
            await self._backend.delete(self.lock_key(key))
        except Exception as e:
            logger.warning(f"Lock release error for {key[:50]}, left to expire: {e}")
