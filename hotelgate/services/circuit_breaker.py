"""
CircuitBreaker - Stops calling an upstream operation while it is failing.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Upstream is failing, calls are rejected without being made
- HALF_OPEN: Testing if the upstream has recovered

Transitions:
- CLOSED → OPEN: When the error rate over the rolling window exceeds
  error_threshold_percent with at least volume_threshold calls in it
- OPEN → HALF_OPEN: After reset_timeout expires
- HALF_OPEN → CLOSED: On successful trial call
- HALF_OPEN → OPEN: On failed trial call

State is only mutated in synchronous code between awaits, so every
outcome is applied atomically on the event loop.
"""

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from hotelgate.services.errors import CircuitOpenError, RequestTimeoutError

T = TypeVar("T")

StateChangeCallback = Callable[[str, "CircuitState", "CircuitState"], Any]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    timeout: timedelta = timedelta(seconds=5)  # Per-call upper bound
    error_threshold_percent: float = 50.0  # Error rate that opens the circuit
    volume_threshold: int = 5  # Minimum calls in window before opening
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    rolling_window: timedelta = timedelta(seconds=10)
    rolling_buckets: int = 10
    half_open_max_requests: int = 1  # Trial calls allowed in half-open state
    ignored_exceptions: tuple[type[BaseException], ...] = ()


@dataclass
class _Bucket:
    start: float
    successes: int = 0
    failures: int = 0


class RollingWindow:
    """Success/failure counts over the last ``window`` seconds, in buckets."""

    def __init__(
        self,
        window: float,
        buckets: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._window = window
        self._span = window / buckets
        self._clock = clock
        self._buckets: deque[_Bucket] = deque(maxlen=buckets)

    def record(self, success: bool) -> None:
        bucket = self._current()
        if success:
            bucket.successes += 1
        else:
            bucket.failures += 1

    def totals(self) -> tuple[int, int]:
        """Return (successes, failures) inside the window."""
        self._expire()
        return (
            sum(b.successes for b in self._buckets),
            sum(b.failures for b in self._buckets),
        )

    def reset(self) -> None:
        self._buckets.clear()

    def _current(self) -> _Bucket:
        now = self._clock()
        start = math.floor(now / self._span) * self._span
        self._expire()
        if not self._buckets or self._buckets[-1].start != start:
            self._buckets.append(_Bucket(start=start))
        return self._buckets[-1]

    def _expire(self) -> None:
        cutoff = self._clock() - self._window
        while self._buckets and self._buckets[0].start + self._span <= cutoff:
            self._buckets.popleft()


class CircuitBreaker:
    """
    Circuit breaker for a single upstream operation.

    Usage:
        cb = CircuitBreaker("rooms")
        rooms = await cb.call(fetch_rooms, property_id)

    ``call`` raises CircuitOpenError without invoking the function while
    the circuit is open, and RequestTimeoutError when the call exceeds
    ``config.timeout``. Both count as failures only when the call was made.
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateChangeCallback | None = None,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()

        self._clock = clock
        self._on_state_change = on_state_change
        self._window = RollingWindow(
            self.config.rolling_window.total_seconds(),
            self.config.rolling_buckets,
            clock,
        )
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        if self._state == CircuitState.OPEN:
            if (
                self._opened_at is not None
                and self._clock()
                >= self._opened_at + self.config.reset_timeout.total_seconds()
            ):
                self._half_open_requests = 0
                self._transition(CircuitState.HALF_OPEN)
        return self._state

    def can_request(self) -> bool:
        """Check if a request is allowed."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.OPEN:
            return False

        # HALF_OPEN: Allow limited requests
        return self._half_open_requests < self.config.half_open_max_requests

    async def call(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run ``fn`` through the breaker with the configured timeout."""
        if not self.can_request():
            raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

        trial = self._state == CircuitState.HALF_OPEN
        if trial:
            self._half_open_requests += 1

        timeout = self.config.timeout.total_seconds()
        try:
            result = await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout)
        except asyncio.CancelledError:
            # Caller went away: no verdict on upstream health, free the trial slot
            if trial and self._state == CircuitState.HALF_OPEN:
                self._half_open_requests = max(0, self._half_open_requests - 1)
            raise
        except asyncio.TimeoutError as e:
            self.record_failure()
            raise RequestTimeoutError(self.service_id, timeout) from e
        except self.config.ignored_exceptions:
            # Upstream answered; the error is about the request, not its health
            self.record_success()
            raise
        except Exception as e:
            self.record_failure()
            logger.error(f"Circuit breaker failure for '{self.service_id}': {e}")
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        else:
            self._window.record(True)

    def record_failure(self) -> None:
        """Record a failed request."""
        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
            return

        self._window.record(False)
        if self._state == CircuitState.CLOSED and self._should_open():
            self._open()

    def _should_open(self) -> bool:
        successes, failures = self._window.totals()
        total = successes + failures
        if total < self.config.volume_threshold:
            return False
        return failures / total * 100 > self.config.error_threshold_percent

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._opened_at = self._clock()
        self._half_open_requests = 0
        _, failures = self._window.totals()
        self._transition(CircuitState.OPEN)
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED ({failures} failures in window)"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._window.reset()
        self._opened_at = None
        self._half_open_requests = 0
        self._transition(CircuitState.CLOSED)
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")
        if self._on_state_change and old_state != new_state:
            try:
                self._on_state_change(self.service_id, old_state, new_state)
            except Exception as e:
                logger.error(f"Circuit breaker state callback failed: {e}")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._window.reset()
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None

        reset_at = self._opened_at + self.config.reset_timeout.total_seconds()
        return max(0.0, reset_at - self._clock())

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        successes, failures = self._window.totals()
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "window_successes": successes,
            "window_failures": failures,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Registry for managing one circuit breaker per upstream operation.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("rooms")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateChangeCallback | None = None,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for an operation."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._default_config,
                clock=self._clock,
                on_state_change=self._on_state_change,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def get_open_circuits(self) -> list[str]:
        """Get list of operations with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
