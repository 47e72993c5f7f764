"""
Client-facing errors, rendered as ``{"error": {"code", "message", "details"}}``.
"""

from typing import Any

from fastapi import HTTPException, status


class ApiError(HTTPException):
    """Base API error carrying a stable error code."""

    code = "INTERNAL_ERROR"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.details = details
        super().__init__(
            status_code=self.status_code_default, detail=message, headers=headers
        )

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class MissingIdempotencyKeyError(ApiError):
    """Idempotency-Key header missing"""

    code = "MISSING_IDEMPOTENCY_KEY"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self):
        super().__init__(
            "Idempotency-Key header is required",
            details={"field": "idempotency-key", "reason": "Required header missing"},
        )


class ValidationError(ApiError):
    """Validation error exception"""

    code = "VALIDATION_ERROR"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, field: str, reason: str):
        super().__init__(reason, details={"field": field, "reason": reason})


class InvalidDateRangeError(ValidationError):
    """Check-out not after check-in, or stay too long"""

    code = "INVALID_DATE_RANGE"


class PropertyNotFoundError(ApiError):
    """Not found error exception"""

    code = "PROPERTY_NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, property_id: str):
        self.property_id = property_id
        super().__init__("Property not found")


class SupplierTimeoutError(ApiError):
    """Supplier unavailable and nothing stale to serve"""

    code = "SUPPLIER_TIMEOUT"
    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            "Service temporarily unavailable",
            headers={"Retry-After": str(retry_after)},
        )


class InternalError(ApiError):
    """Unexpected failure"""

    def __init__(self):
        super().__init__("Internal server error")
