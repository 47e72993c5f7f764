"""
hotelgate entry point.
Resilient read gateway in front of the hotel inventory supplier.
"""

import sys

import uvicorn
from loguru import logger

from hotelgate.api.server import create_app
from hotelgate.inventory.service import HotelService
from hotelgate.settings import Settings, global_settings


def configure_logging(settings: Settings) -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        serialize=settings.log_json,
    )


def main() -> None:
    """Run the API server."""
    configure_logging(global_settings)

    if not global_settings.supplier_base_url:
        logger.warning("SUPPLIER_BASE_URL is not set, supplier calls will fail")

    app = create_app(HotelService.from_settings(global_settings))

    logger.info(f"Starting hotelgate on {global_settings.host}:{global_settings.port}")
    uvicorn.run(
        app,
        host=global_settings.host,
        port=global_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
