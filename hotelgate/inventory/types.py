"""
Inventory types using Pydantic models.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class Occupancy(BaseModel):
    """Guests a room offer is priced for."""

    model_config = ConfigDict(frozen=True)

    adults: int = 0
    children: int = 0

    @property
    def total(self) -> int:
        return self.adults + self.children


class TaxLine(BaseModel):
    """Upstream tax line, amount in major units."""

    model_config = ConfigDict(frozen=True)

    type: str | None = None
    amount: Decimal = Decimal("0")


class RoomOffer(BaseModel):
    """A raw room offer as returned by the supplier."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str | None = None
    name: str | None = None
    occupancy: Occupancy = Field(default_factory=Occupancy)
    price: Decimal = Decimal("0")
    currency: str | None = None
    min_stay_arrival: int | None = None
    min_stay_through: int | None = None
    taxes: list[TaxLine] = Field(default_factory=list)
    cancellation_policy: dict[str, Any] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class ClosedDateSet(BaseModel):
    """Calendar restrictions for one property."""

    model_config = ConfigDict(frozen=True)

    closed: frozenset[date] = frozenset()
    closed_to_arrival: frozenset[date] = frozenset()
    closed_to_departure: frozenset[date] = frozenset()

    @classmethod
    def from_upstream(cls, entries: list[dict[str, Any]]) -> "ClosedDateSet":
        """
        Build from supplier entries shaped like
        ``{"date": "2024-12-25", "closed_to_arrival": true}``.

        An entry with ``closed: true``, or with no restriction flag at all,
        closes the whole day.
        """
        closed: set[date] = set()
        no_arrival: set[date] = set()
        no_departure: set[date] = set()

        for entry in entries:
            try:
                day = date.fromisoformat(str(entry["date"]))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed closed-date entry {entry!r}: {e}")
                continue
            cta = bool(entry.get("closed_to_arrival"))
            ctd = bool(entry.get("closed_to_departure"))
            if cta:
                no_arrival.add(day)
            if ctd:
                no_departure.add(day)
            if entry.get("closed") or not (cta or ctd):
                closed.add(day)

        return cls(
            closed=frozenset(closed),
            closed_to_arrival=frozenset(no_arrival),
            closed_to_departure=frozenset(no_departure),
        )


class RoomsRequest(BaseModel):
    """Body of a room availability request."""

    model_config = ConfigDict(extra="ignore")

    check_in: date
    check_out: date
    adults: int = Field(ge=1, le=8)
    children: int = Field(default=0, ge=0, le=4)
    infants: int = Field(default=0, ge=0, le=2)

    @field_validator("check_in", "check_out", mode="before")
    @classmethod
    def _iso_date_only(cls, value: Any) -> Any:
        if not isinstance(value, str) or not DATE_PATTERN.match(value):
            raise ValueError("Invalid date format, use YYYY-MM-DD")
        return value

    @field_validator("adults", "children", "infants", mode="before")
    @classmethod
    def _strict_int(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("must be an integer")
        return value


class RoomsQuery(BaseModel):
    """Resource identity of a room availability lookup."""

    model_config = ConfigDict(frozen=True)

    property_id: str
    check_in: date
    check_out: date
    adults: int
    children: int = 0
    infants: int = 0
    currency: str = "USD"


class Money(BaseModel):
    amount: int
    currency: str


class PricedTax(BaseModel):
    type: str | None = None
    amount: int
    currency: str


class PricedRoom(BaseModel):
    """A room offer after filtering, priced in minor units."""

    id: str | None = None
    name: str | None = None
    occupancy: Occupancy
    price: Money
    taxes: list[PricedTax] = Field(default_factory=list)
    cancellation_policy: dict[str, Any] | None = None


class Geo(BaseModel):
    lat: float | None = None
    lng: float | None = None


class HotelPolicy(BaseModel):
    currency: str | None = None
    check_in: str | None = None
    check_out: str | None = None


class Property(BaseModel):
    """Normalised property details."""

    id: str | None = None
    title: str | None = None
    address: str | None = None
    geo: Geo = Field(default_factory=Geo)
    facilities: list[Any] = Field(default_factory=list)
    photos: list[Any] = Field(default_factory=list)
    hotel_policy: HotelPolicy = Field(default_factory=HotelPolicy)

    @classmethod
    def from_upstream(cls, data: dict[str, Any]) -> "Property":
        location = data.get("location") or {}
        policy = data.get("hotel_policy") or {}
        raw_id = data.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            title=data.get("title") or data.get("name"),
            address=data.get("address"),
            geo=Geo(lat=location.get("latitude"), lng=location.get("longitude")),
            facilities=data.get("facilities") or [],
            photos=data.get("photos") or [],
            hotel_policy=HotelPolicy(
                currency=policy.get("currency"),
                check_in=policy.get("checkin_from_time"),
                check_out=policy.get("checkout_to_time"),
            ),
        )
