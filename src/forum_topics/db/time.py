# src/forum_topics/db/time.py
"""Time utilities for stored timestamps.

Topic timestamps are integer milliseconds since the epoch.
"""

import time
from datetime import UTC, datetime


def now_ms() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_iso(timestamp_ms: int | float | None) -> str:
    """Format an epoch-millisecond timestamp as an ISO-8601 UTC string."""
    value = float(timestamp_ms or 0)
    dt = datetime.fromtimestamp(value / 1000, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
