from hotelgate.api.server import HotelServer, create_app

__all__ = ["HotelServer", "create_app"]
