"""
SupplierClient - Async HTTP client for the upstream inventory provider.

The client only speaks HTTP and maps failures onto service errors; caching,
circuit breaking and stale fallback live in the orchestrator.
"""

import time
from typing import Any

import httpx
from loguru import logger

from hotelgate.metrics import HotelMetrics
from hotelgate.services.errors import (
    RequestTimeoutError,
    ServiceError,
    UpstreamNotFoundError,
)


class SupplierClient:
    """
    Thin wrapper over the supplier's REST API.

    Usage:
        async with SupplierClient(base_url, api_key) as supplier:
            info = await supplier.fetch_property_info("123")
    """

    SERVICE_ID = "supplier"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: HotelMetrics | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._metrics = metrics

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"x-api-key": self._api_key},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def fetch_property_info(
        self, property_id: str, request_id: str | None = None
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{property_id}/property_info"
        return await self._get(url, None, request_id)

    async def fetch_rooms(
        self,
        property_id: str,
        check_in: str,
        check_out: str,
        request_id: str | None = None,
    ) -> list[dict[str, Any]]:
        data = await self._get(
            f"{self._base_url}/rooms",
            {
                "property_id": property_id,
                "checkin_date": check_in,
                "checkout_date": check_out,
            },
            request_id,
        )
        if isinstance(data, dict):
            return data.get("rooms") or []
        return data or []

    async def fetch_closed_dates(
        self, property_id: str, request_id: str | None = None
    ) -> list[dict[str, Any]]:
        data = await self._get(
            f"{self._base_url}/closed_dates",
            {"property_id": property_id},
            request_id,
        )
        if isinstance(data, dict):
            return data.get("closed_dates") or []
        return data or []

    async def _get(
        self,
        url: str,
        params: dict[str, Any] | None,
        request_id: str | None,
    ) -> Any:
        """Execute the actual HTTP request and unwrap the JSON envelope."""
        client = await self._get_http_client()
        headers = {"X-Request-Id": request_id} if request_id else None
        started = time.perf_counter()
        status = "error"

        try:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            body = response.json()
            status = "success"

        except httpx.TimeoutException as e:
            status = "timeout"
            raise RequestTimeoutError(self.SERVICE_ID, self._timeout) from e

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                status = "not_found"
                raise UpstreamNotFoundError(
                    f"Not found: {url}", service_id=self.SERVICE_ID
                ) from e
            raise ServiceError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                service_id=self.SERVICE_ID,
            ) from e

        except httpx.RequestError as e:
            logger.error(f"Supplier request error for {url}: {e}")
            raise ServiceError(str(e), service_id=self.SERVICE_ID) from e

        except ValueError as e:
            raise ServiceError(
                f"Invalid JSON from supplier: {e}", service_id=self.SERVICE_ID
            ) from e

        finally:
            if self._metrics is not None:
                self._metrics.record_supplier_call(status, time.perf_counter() - started)

        return self._unwrap(body)

    @staticmethod
    def _unwrap(body: Any) -> Any:
        # JSON:API style {"data": {"attributes": {...}}} or {"data": [...]}
        if isinstance(body, dict) and "data" in body:
            data = body["data"]
            if isinstance(data, dict) and "attributes" in data:
                return data["attributes"]
            return data
        return body

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("SupplierClient closed")

    async def __aenter__(self) -> "SupplierClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
