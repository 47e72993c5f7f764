"""
Request context for log correlation and upstream tracing.
"""

import re
import uuid
from contextvars import ContextVar

MAX_ID_LENGTH = 64
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def sanitize_request_id(value: str | None) -> str:
    """Accept a client request id only if it is short and log-safe."""
    if value and len(value) <= MAX_ID_LENGTH and SAFE_ID_PATTERN.match(value):
        return value
    return generate_request_id()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str | None:
    return _request_id.get()
