"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for upstream service errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class UpstreamNotFoundError(ServiceError):
    """Upstream answered 404 for the requested resource."""

    pass


class UpstreamUnavailableError(ServiceError):
    """Upstream failed and no stale copy was available to serve instead."""

    def __init__(self, service_id: str, retry_after: int, cause: str = ""):
        self.retry_after = retry_after
        msg = f"Service '{service_id}' unavailable, retry after {retry_after}s"
        if cause:
            msg += f" ({cause})"
        super().__init__(msg, service_id=service_id)
