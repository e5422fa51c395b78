"""
Timestamp helpers.

Every timestamp the engine writes uses one format: RFC3339 UTC with
second precision and an explicit ``+00:00`` offset. Parsing is more
lenient (``Z`` suffix and fractional seconds are accepted) so that a
foreign timestamp can be read and reported. A timestamp that ends up
inside an artifact must pass is_canonical_timestamp.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S+00:00"

_RFC3339_UTC_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|\+00:00)$"
)
_CANONICAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+00:00$")


def now_utc() -> str:
    """RFC3339 UTC timestamp."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def is_rfc3339_utc(value: str) -> bool:
    return bool(_RFC3339_UTC_RE.match(value))


def is_canonical_timestamp(value: str) -> bool:
    """True if ``value`` is exactly in TIMESTAMP_FORMAT."""
    return bool(_CANONICAL_RE.match(value))


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 UTC timestamp into an aware datetime.

    Raises:
        ValueError: If the value is not RFC3339 UTC.
    """
    if not _RFC3339_UTC_RE.match(value):
        raise ValueError(
            f"timestamp must be RFC3339 UTC (ending Z or +00:00), got: {value!r}"
        )
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
