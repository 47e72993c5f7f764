"""
Inventory domain: supplier offer models, availability filtering and pricing,
and the HotelService that serves them through the resilient core.
"""

from hotelgate.inventory.pricing import filter_and_price
from hotelgate.inventory.types import (
    ClosedDateSet,
    Occupancy,
    PricedRoom,
    Property,
    RoomOffer,
    RoomsQuery,
    RoomsRequest,
)

__all__ = [
    "filter_and_price",
    "ClosedDateSet",
    "Occupancy",
    "PricedRoom",
    "Property",
    "RoomOffer",
    "RoomsQuery",
    "RoomsRequest",
]
