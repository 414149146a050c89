"""
ULID generation, UTC helpers and the clock abstraction.

Manifesto:
    Schedule evaluation must be a pure function of (expression, instant),
    and the loop must be drivable by a simulated clock in tests. All code
    that needs "now" therefore asks a ``Clock`` instead of calling
    ``datetime.now()`` directly.

    - **generate_ulid():** Time-sortable unique attempt IDs (26-char, base32)
    - **utc_now():** Timezone-aware UTC datetime
    - **truncate_to_second():** Normalize an instant to schedule granularity
    - **Clock / SystemClock:** Injectable source of time

Tags:
    timestamps, ulid, utc, clock, jobspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import random
import time
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def truncate_to_second(dt: datetime) -> datetime:
    """Drop sub-second precision; schedules are evaluated per whole second."""
    return ensure_utc(dt).replace(microsecond=0)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


@runtime_checkable
class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()
