import hashlib
import json
import math
import random
from datetime import date, timedelta
from typing import Any


def jittered_ttl(ttl: int, jitter_percent: float, rand=random.random) -> int:
    """Spread ``ttl`` uniformly over ``[ttl, ttl + ttl * jitter_percent]``."""
    return math.floor(ttl + rand() * jitter_percent * ttl)


def length_of_stay(check_in: date, check_out: date) -> int:
    """Number of nights between check-in and check-out (may be <= 0)."""
    return math.ceil((check_out - check_in) / timedelta(days=1))


def stay_dates(check_in: date, check_out: date) -> list[date]:
    """Every night of the stay, check-out excluded."""
    return [
        check_in + timedelta(days=offset)
        for offset in range(max(0, (check_out - check_in).days))
    ]


def property_cache_key(property_id: str) -> str:
    return f"property:{property_id}:info"


def rooms_cache_key(
    property_id: str,
    check_in: date,
    check_out: date,
    adults: int,
    children: int = 0,
    infants: int = 0,
    currency: str = "USD",
) -> str:
    return (
        f"rooms:{property_id}:{check_in.isoformat()}:{check_out.isoformat()}"
        f":A{adults}-C{children}-I{infants}:CUR={currency}"
    )


def fingerprint(params: dict[str, Any]) -> str:
    """Stable hash of request parameters, independent of key order."""
    payload = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode()).hexdigest()
