"""
RequestDeduplicator - Coalesces concurrent loads of the same cache key.

When several requests in this process miss the cache for the same key at
the same time, only one load runs and every caller awaits its result.
This complements the cross-process LockManager; it does not replace it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    One shared asyncio task per in-flight key.

    Usage:
        dedup = RequestDeduplicator()
        result, joined = await dedup.run(cache_key, lambda: load(query))
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    def __len__(self) -> int:
        return len(self._in_flight)

    async def run(
        self, key: str, load: Callable[[], Awaitable[T]]
    ) -> tuple[T, bool]:
        """
        Await the load for ``key``, starting it only if none is running.

        Returns:
            (result, joined) where ``joined`` is True when this caller shared
            a load started by someone else
        """
        # Check-and-insert has no await in between, so it is atomic on the loop
        task = self._in_flight.get(key)
        joined = task is not None
        if joined:
            self._stats.joined += 1
            self._log(f"join {key[:60]}")
        else:
            self._stats.started += 1
            self._log(f"start {key[:60]}")
            task = asyncio.create_task(load())
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))

        # A cancelled waiter must not cancel the load others are sharing
        return await asyncio.shield(task), joined

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark a failure as retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def cancel_all(self) -> int:
        """Cancel every in-flight load, e.g. on shutdown."""
        tasks = list(self._in_flight.values())
        self._in_flight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} in-flight loads")
        return len(tasks)

    def get_stats(self) -> "DeduplicatorStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


@dataclass
class DeduplicatorStats:
    """Counters for coalesced loads."""

    started: int = 0
    joined: int = 0
    in_flight: int = 0

    @property
    def join_rate(self) -> float:
        total = self.started + self.joined
        return self.joined / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "joined": self.joined,
            "in_flight": self.in_flight,
            "join_rate": f"{self.join_rate:.2%}",
        }
