"""FastAPI server exposing property and room availability reads."""

import json
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from hotelgate.context import sanitize_request_id, set_request_id
from hotelgate.exceptions import ApiError, InternalError
from hotelgate.inventory.service import HotelService
from hotelgate.services.orchestrator import ReadThroughResult

API_PREFIX = "/api/product/v2/hotels"


def _result_response(result: ReadThroughResult) -> JSONResponse:
    headers = {"X-Cache-Status": result.outcome.value}
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return JSONResponse(content=result.data, headers=headers)


class HotelServer:
    """HTTP server for the hotel read API."""

    def __init__(self, service: HotelService):
        self.service = service
        self.app = FastAPI(title="hotelgate", lifespan=self._lifespan)

        self.app.middleware("http")(self.request_context)
        self.app.exception_handler(ApiError)(self.handle_api_error)

        # Register routes
        self.app.get(API_PREFIX + "/{property_id}")(self.get_property)
        self.app.post(API_PREFIX + "/{property_id}/get-rooms")(self.get_rooms)
        self.app.get("/health")(self.health_check)
        self.app.get("/metrics")(self.metrics)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        await self.service.close()

    async def request_context(self, request: Request, call_next):
        """Assign a request id, log a summary line, and map crashes to 500s."""
        request_id = sanitize_request_id(request.headers.get("x-request-id"))
        set_request_id(request_id)
        start = time.perf_counter()

        with logger.contextualize(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as e:
                logger.exception(f"Unhandled error on {request.url.path}: {e}")
                error = InternalError()
                response = JSONResponse(
                    status_code=error.status_code, content=error.to_dict()
                )

            response.headers["x-request-id"] = request_id
            duration = time.perf_counter() - start
            route = request.scope.get("route")
            self.service.metrics.record_request(
                getattr(route, "path", "unmatched"), response.status_code, duration
            )
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"cache={response.headers.get('x-cache-status', '-')} "
                f"duration_ms={duration * 1000:.1f}"
            )
        return response

    async def handle_api_error(self, request: Request, exc: ApiError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        else:
            logger.info(f"Rejected request: {exc.code} ({exc.message})")
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers
        )

    async def get_property(
        self,
        property_id: str,
        x_currency: Optional[str] = Header(None),
    ):
        """Property details, served through the read-through cache."""
        result = await self.service.get_property(property_id, currency=x_currency)
        return _result_response(result)

    async def get_rooms(
        self,
        property_id: str,
        request: Request,
        idempotency_key: Optional[str] = Header(None),
        x_currency: Optional[str] = Header(None),
    ):
        """Available, priced rooms for a stay and occupancy."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None

        result = await self.service.get_rooms(
            property_id, body, idempotency_key, currency=x_currency
        )
        return _result_response(result)

    async def health_check(self):
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "hotelgate",
            **self.service.get_health_status(),
        }

    async def metrics(self):
        """Prometheus scrape endpoint."""
        metrics = self.service.metrics
        return Response(content=metrics.render(), media_type=metrics.content_type)


def create_app(service: HotelService) -> FastAPI:
    """Create FastAPI app for the hotel read API.

    Args:
        service: HotelService instance

    Returns:
        FastAPI app
    """
    server = HotelServer(service)
    return server.app
