"""
HotelService - Property and room availability reads over the resilient core.

Each resource type is one ReadThroughOrchestrator, configured with its own
key derivation, supplier fetch and transform. Request validation happens
here, before any cache, ledger or supplier interaction.
"""

import asyncio
import dataclasses
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from hotelgate.context import get_request_id
from hotelgate.exceptions import (
    InvalidDateRangeError,
    MissingIdempotencyKeyError,
    PropertyNotFoundError,
    SupplierTimeoutError,
    ValidationError,
)
from hotelgate.inventory.pricing import filter_and_price
from hotelgate.inventory.types import (
    ClosedDateSet,
    Property,
    RoomOffer,
    RoomsQuery,
    RoomsRequest,
)
from hotelgate.metrics import HotelMetrics
from hotelgate.services.backend import KeyValueBackend, MemoryBackend, RedisBackend
from hotelgate.services.cache import CacheStore
from hotelgate.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from hotelgate.services.client import SupplierClient
from hotelgate.services.deduplicator import RequestDeduplicator
from hotelgate.services.errors import UpstreamNotFoundError, UpstreamUnavailableError
from hotelgate.services.idempotency import IdempotencyLedger
from hotelgate.services.lock import LockManager
from hotelgate.services.orchestrator import ReadThroughOrchestrator, ReadThroughResult
from hotelgate.settings import Settings
from hotelgate.utils import fingerprint, length_of_stay, property_cache_key, rooms_cache_key

PROPERTY_SERVICE_ID = "property_info"
ROOMS_SERVICE_ID = "rooms"


def normalise_currency(value: str | None) -> str | None:
    """Upper-case a currency header; blank means absent."""
    if value is None:
        return None
    return value.strip().upper() or None


def breaker_config_from_settings(settings: Settings) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        timeout=timedelta(milliseconds=settings.supplier_timeout_ms),
        error_threshold_percent=settings.circuit_error_threshold_percent,
        volume_threshold=settings.circuit_volume_threshold,
        reset_timeout=timedelta(milliseconds=settings.circuit_reset_timeout_ms),
        rolling_window=timedelta(milliseconds=settings.circuit_rolling_window_ms),
        rolling_buckets=settings.circuit_rolling_buckets,
        ignored_exceptions=(UpstreamNotFoundError,),
    )


class HotelService:
    """
    Entry point for the two read operations.

    Usage:
        service = HotelService.from_settings(global_settings)
        prop = await service.get_property("123", currency="EUR")
        rooms = await service.get_rooms("123", body, idempotency_key="k1")
    """

    def __init__(
        self,
        supplier: SupplierClient,
        cache: CacheStore,
        locks: LockManager,
        ledger: IdempotencyLedger,
        breakers: CircuitBreakerRegistry,
        settings: Settings,
        deduplicator: RequestDeduplicator | None = None,
        metrics: HotelMetrics | None = None,
    ):
        self.supplier = supplier
        self.cache = cache
        self.breakers = breakers
        self.deduplicator = deduplicator
        self.settings = settings
        self.metrics = metrics or HotelMetrics()

        common = dict(
            cache=cache,
            locks=locks,
            ledger=ledger,
            deduplicator=deduplicator,
            lock_ttl_seconds=settings.lock_ttl_seconds,
            lock_wait=settings.lock_wait_ms / 1000,
            retry_after_seconds=settings.retry_after_seconds,
            metrics=self.metrics,
        )
        self.properties: ReadThroughOrchestrator[str] = ReadThroughOrchestrator(
            name=PROPERTY_SERVICE_ID,
            breaker=breakers.get(PROPERTY_SERVICE_ID),
            key_fn=property_cache_key,
            fetch_fn=self._fetch_property,
            transform_fn=self._transform_property,
            ttl_seconds=settings.property_cache_ttl_seconds,
            **common,
        )
        self.rooms: ReadThroughOrchestrator[RoomsQuery] = ReadThroughOrchestrator(
            name=ROOMS_SERVICE_ID,
            breaker=breakers.get(ROOMS_SERVICE_ID),
            key_fn=self._rooms_key,
            fetch_fn=self._fetch_rooms,
            transform_fn=self._transform_rooms,
            fingerprint_fn=lambda q: fingerprint(q.model_dump(mode="json")),
            ttl_seconds=settings.cache_ttl_seconds,
            **common,
        )
        for service_id in (PROPERTY_SERVICE_ID, ROOMS_SERVICE_ID):
            self.metrics.set_circuit_state(service_id, breakers.get(service_id).state)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        supplier: SupplierClient | None = None,
        backend: KeyValueBackend | None = None,
    ) -> "HotelService":
        """Wire the default collaborators described by ``settings``."""
        if backend is None:
            if settings.redis_url:
                backend = RedisBackend(settings.redis_url)
            else:
                logger.warning("REDIS_URL not set, using in-process cache backend")
                backend = MemoryBackend()

        metrics = HotelMetrics()
        supplier = supplier or SupplierClient(
            settings.supplier_base_url,
            settings.supplier_api_key,
            timeout=settings.supplier_timeout_ms / 1000,
            metrics=metrics,
        )
        return cls(
            supplier=supplier,
            cache=CacheStore(
                backend,
                jitter_percent=settings.cache_jitter_percent,
                stale_multiplier=settings.stale_ttl_multiplier,
            ),
            locks=LockManager(backend, default_ttl=settings.lock_ttl_seconds),
            ledger=IdempotencyLedger(
                backend, default_ttl=settings.idempotency_ttl_seconds
            ),
            breakers=CircuitBreakerRegistry(
                breaker_config_from_settings(settings),
                on_state_change=metrics.on_circuit_state_change,
            ),
            settings=settings,
            deduplicator=RequestDeduplicator() if settings.dedupe_in_flight else None,
            metrics=metrics,
        )

    # Property info

    async def get_property(
        self, property_id: str, currency: str | None = None
    ) -> ReadThroughResult:
        """
        Property details, with the policy currency relabelled.

        Currency precedence: ``currency`` argument (the X-Currency header),
        then the supplier's policy currency, then the default currency.
        """
        currency = normalise_currency(currency)
        try:
            result = await self.properties.fetch(property_id)
        except UpstreamNotFoundError as e:
            raise PropertyNotFoundError(property_id) from e
        except UpstreamUnavailableError as e:
            raise SupplierTimeoutError(e.retry_after) from e

        data = dict(result.data)
        policy = dict(data.get("hotel_policy") or {})
        policy["currency"] = (
            currency or policy.get("currency") or self.settings.default_currency
        )
        data["hotel_policy"] = policy
        return dataclasses.replace(result, data=data)

    async def _fetch_property(self, property_id: str) -> dict[str, Any]:
        return await self.supplier.fetch_property_info(property_id, get_request_id())

    @staticmethod
    def _transform_property(property_id: str, raw: dict[str, Any]) -> dict[str, Any]:
        return Property.from_upstream(raw).model_dump(mode="json")

    # Rooms

    async def get_rooms(
        self,
        property_id: str,
        body: Any,
        idempotency_key: str | None,
        currency: str | None = None,
    ) -> ReadThroughResult:
        """
        Priced, bookable rooms for the stay described by ``body``.

        Raises:
            MissingIdempotencyKeyError: No idempotency key supplied
            ValidationError: Malformed body fields
            InvalidDateRangeError: Empty, reversed or too long stay
            PropertyNotFoundError: Supplier does not know the property
            SupplierTimeoutError: Supplier unavailable, nothing stale to serve
        """
        if not idempotency_key:
            raise MissingIdempotencyKeyError()

        query = self.build_rooms_query(property_id, body, currency)

        try:
            return await self.rooms.fetch(query, idempotency_key=idempotency_key)
        except UpstreamNotFoundError as e:
            raise PropertyNotFoundError(property_id) from e
        except UpstreamUnavailableError as e:
            raise SupplierTimeoutError(e.retry_after) from e

    def build_rooms_query(
        self, property_id: str, body: Any, currency: str | None = None
    ) -> RoomsQuery:
        """Validate the request body and derive the resource identity."""
        if not isinstance(body, dict):
            raise ValidationError("body", "Request body must be a JSON object")

        try:
            request = RoomsRequest.model_validate(body)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "body"
            raise ValidationError(field, error["msg"]) from e

        los = length_of_stay(request.check_in, request.check_out)
        if los <= 0:
            raise InvalidDateRangeError(
                "check_out", "Check-out date must be after check-in date"
            )
        if los > self.settings.max_stay_nights:
            raise InvalidDateRangeError(
                "check_out",
                f"Maximum {self.settings.max_stay_nights} nights allowed",
            )

        return RoomsQuery(
            property_id=property_id,
            check_in=request.check_in,
            check_out=request.check_out,
            adults=request.adults,
            children=request.children,
            infants=request.infants,
            currency=normalise_currency(currency) or self.settings.default_currency,
        )

    @staticmethod
    def _rooms_key(query: RoomsQuery) -> str:
        return rooms_cache_key(
            query.property_id,
            query.check_in,
            query.check_out,
            query.adults,
            query.children,
            query.infants,
            query.currency,
        )

    async def _fetch_rooms(self, query: RoomsQuery) -> dict[str, list[dict[str, Any]]]:
        request_id = get_request_id()
        rooms, closed_dates = await asyncio.gather(
            self.supplier.fetch_rooms(
                query.property_id,
                query.check_in.isoformat(),
                query.check_out.isoformat(),
                request_id,
            ),
            self.supplier.fetch_closed_dates(query.property_id, request_id),
        )
        return {"rooms": rooms, "closed_dates": closed_dates}

    @staticmethod
    def _transform_rooms(query: RoomsQuery, raw: dict[str, Any]) -> dict[str, Any]:
        offers = []
        for item in raw.get("rooms") or []:
            try:
                offers.append(RoomOffer.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed room offer for {query.property_id}: {e}")

        closed_dates = ClosedDateSet.from_upstream(raw.get("closed_dates") or [])
        priced = filter_and_price(offers, closed_dates, query)
        return {"rooms": [room.model_dump(mode="json") for room in priced]}

    # Health

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the resilience components."""
        status: dict[str, Any] = {
            "cache": self.cache.get_stats().to_dict(),
            "circuit_breakers": self.breakers.get_all_status(),
            "open_circuits": self.breakers.get_open_circuits(),
        }
        if self.deduplicator is not None:
            status["deduplicator"] = self.deduplicator.get_stats().to_dict()
        return status

    async def close(self) -> None:
        await self.supplier.close()
        await self.cache.close()
        if self.deduplicator is not None:
            await self.deduplicator.cancel_all()
