"""UTC datetime helpers.

Stored timestamps are compared against an aware UTC "now". Some backends
(SQLite) hand back naive values, so everything read from the store goes
through ensure_utc() first.
"""

import math
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def minutes_until(moment: datetime, now: datetime) -> int:
    """Whole minutes from now until moment, rounded up (0 if already past)."""
    seconds = (moment - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)
