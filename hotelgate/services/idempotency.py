"""
IdempotencyLedger - Replays the response produced for a client-supplied key.

A retried request carrying the same key becomes a pure read of the
recorded response, even if upstream data has since changed. Only
terminal successes (fresh or stale) are recorded, so a client that got
an error can retry with the same key and get real work done.

Reusing a key with different request parameters is accepted: the
fingerprint of the original request is stored and a mismatch is
logged, but the recorded response is still returned.
"""

import json
import time
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from hotelgate.services.backend import KeyValueBackend

KEY_PREFIX = "idem:"


class IdempotencyRecord(BaseModel):
    """A recorded terminal response."""

    client_key: str
    fingerprint: str | None = None
    response: Any
    retry_after: int | None = None
    stale: bool = False
    created_at: float = Field(default_factory=time.time)


class IdempotencyLedger:
    """Lookup/record responses by idempotency key over a shared backend."""

    def __init__(self, backend: KeyValueBackend, default_ttl: int = 3600):
        self._backend = backend
        self._default_ttl = default_ttl

    @staticmethod
    def ledger_key(client_key: str) -> str:
        return f"{KEY_PREFIX}{client_key}"

    async def lookup(
        self, client_key: str, fingerprint: str | None = None
    ) -> IdempotencyRecord | None:
        """Return the recorded response for ``client_key``, if any."""
        try:
            payload = await self._backend.get(self.ledger_key(client_key))
            if payload is None:
                return None
            record = IdempotencyRecord.model_validate(json.loads(payload))
        except Exception as e:
            logger.error(f"Idempotency lookup error for '{client_key}', ignoring: {e}")
            return None

        if fingerprint and record.fingerprint and fingerprint != record.fingerprint:
            logger.warning(
                f"Idempotency key '{client_key}' reused with different parameters, "
                f"replaying original response"
            )
        return record

    async def record(
        self,
        client_key: str,
        response: Any,
        fingerprint: str | None = None,
        retry_after: int | None = None,
        stale: bool = False,
        ttl: int | None = None,
    ) -> None:
        """Record a terminal response for ``client_key``."""
        record = IdempotencyRecord(
            client_key=client_key,
            fingerprint=fingerprint,
            response=response,
            retry_after=retry_after,
            stale=stale,
        )
        try:
            await self._backend.set(
                self.ledger_key(client_key),
                record.model_dump_json(),
                ttl or self._default_ttl,
            )
        except Exception as e:
            logger.error(f"Idempotency record error for '{client_key}', skipping: {e}")
