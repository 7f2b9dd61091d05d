from __future__ import annotations

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def epoch_now() -> float:
    """Return the current wall-clock time as epoch seconds."""
    return time.time()


def from_epoch(timestamp: float | None) -> datetime | None:
    """Convert epoch seconds to an aware UTC datetime (``None`` passes through)."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)
