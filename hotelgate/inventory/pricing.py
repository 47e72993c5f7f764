"""
Availability filtering and price normalisation for supplier room offers.

Pure functions, no I/O: the same offers, restrictions and query always
produce the same output, in upstream order.
"""

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from hotelgate.inventory.types import (
    ClosedDateSet,
    Money,
    PricedRoom,
    PricedTax,
    RoomOffer,
    RoomsQuery,
)
from hotelgate.utils import length_of_stay, stay_dates


def to_minor_units(amount: Decimal) -> int:
    """``round(amount * 100)``, halves rounded up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def occupancy_matches(offer: RoomOffer, query: RoomsQuery) -> bool:
    """Exact guest count match; a bigger room does not qualify."""
    return offer.occupancy.total == query.adults + query.children


def calendar_allows(closed_dates: ClosedDateSet, query: RoomsQuery) -> bool:
    """Property calendar restrictions apply to every offer alike."""
    nights = stay_dates(query.check_in, query.check_out)
    if any(night in closed_dates.closed for night in nights):
        return False
    if query.check_in in closed_dates.closed_to_arrival:
        return False
    if query.check_out - timedelta(days=1) in closed_dates.closed_to_departure:
        return False
    return True


def min_stay_allows(offer: RoomOffer, los: int) -> bool:
    if offer.min_stay_arrival and los < offer.min_stay_arrival:
        return False
    if offer.min_stay_through and los < offer.min_stay_through:
        return False
    return True


def price_offer(offer: RoomOffer, currency: str) -> PricedRoom:
    """Convert prices to minor units and relabel every amount with ``currency``."""
    return PricedRoom(
        id=offer.id,
        name=offer.name,
        occupancy=offer.occupancy,
        price=Money(amount=to_minor_units(offer.price), currency=currency),
        taxes=[
            PricedTax(type=tax.type, amount=to_minor_units(tax.amount), currency=currency)
            for tax in offer.taxes
        ],
        cancellation_policy=offer.cancellation_policy,
    )


def filter_and_price(
    offers: Iterable[RoomOffer],
    closed_dates: ClosedDateSet,
    query: RoomsQuery,
) -> list[PricedRoom]:
    """
    Keep the offers bookable for ``query`` and price them.

    An offer survives when its occupancy sums to the requested guests,
    no night of the stay is closed, arrival and departure days are not
    restricted, and the stay meets both minimum-stay rules.
    """
    if not calendar_allows(closed_dates, query):
        return []

    los = length_of_stay(query.check_in, query.check_out)
    return [
        price_offer(offer, query.currency)
        for offer in offers
        if occupancy_matches(offer, query) and min_stay_allows(offer, los)
    ]
