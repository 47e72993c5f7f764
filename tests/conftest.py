"""
Shared fixtures for hotelgate tests.

Time-dependent components take a ``clock`` callable; tests drive it with
FakeClock instead of sleeping.
"""

from unittest.mock import AsyncMock

import pytest

from hotelgate.services.backend import MemoryBackend
from hotelgate.services.cache import CacheStore
from hotelgate.services.client import SupplierClient
from hotelgate.services.idempotency import IdempotencyLedger
from hotelgate.services.lock import LockManager
from hotelgate.settings import Settings


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> MemoryBackend:
    return MemoryBackend(clock=clock)


@pytest.fixture
def cache(backend) -> CacheStore:
    # No jitter: fresh TTL is exactly the requested TTL
    return CacheStore(backend, jitter_percent=0.2, rand=lambda: 0.0)


@pytest.fixture
def locks(backend) -> LockManager:
    return LockManager(backend, default_ttl=10)


@pytest.fixture
def ledger(backend) -> IdempotencyLedger:
    return IdempotencyLedger(backend, default_ttl=3600)


@pytest.fixture
def failing_backend() -> AsyncMock:
    """Backend whose every operation raises, as if Redis were down."""
    broken = AsyncMock()
    broken.get.side_effect = ConnectionError("redis down")
    broken.set.side_effect = ConnectionError("redis down")
    broken.delete.side_effect = ConnectionError("redis down")
    return broken


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supplier_base_url="https://supplier.test",
        lock_wait_ms=1,
        cache_ttl_seconds=300,
        property_cache_ttl_seconds=86400,
    )


@pytest.fixture
def supplier() -> AsyncMock:
    """Supplier client double; tests set return values per operation."""
    mock = AsyncMock(spec=SupplierClient)
    mock.fetch_property_info.return_value = {
        "id": 123,
        "title": "Grand Hotel & Spa",
        "address": "123 Main St, New York, NY 10001",
        "location": {"latitude": 40.7128, "longitude": -74.006},
        "facilities": ["WiFi", "Pool"],
        "photos": [],
        "hotel_policy": {
            "currency": "GBP",
            "checkin_from_time": "15:00",
            "checkout_to_time": "11:00",
        },
    }
    mock.fetch_rooms.return_value = [
        {
            "id": "dbl",
            "name": "Double",
            "occupancy": {"adults": 2, "children": 0},
            "price": "150.00",
            "currency": "USD",
            "taxes": [{"type": "VAT", "amount": "5.50"}],
            "cancellation_policy": {"free_cancellation_until": "2024-12-24T23:59:59Z"},
        },
        {
            "id": "fam",
            "name": "Family",
            "occupancy": {"adults": 2, "children": 2},
            "price": 240.5,
            "taxes": [],
        },
    ]
    mock.fetch_closed_dates.return_value = []
    return mock
