"""Exponential backoff schedule for reconnect attempts."""

from __future__ import annotations


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Return the delay in seconds before reconnect attempt ``attempt`` (0-indexed).

    Delay formula: ``base_delay * 2^attempt``

    Args:
        attempt: Current attempt number (0-indexed).
        base_delay: Base delay in seconds. Defaults to 1.0.
    """
    if attempt < 0:
        msg = "attempt must be non-negative"
        raise ValueError(msg)
    return max(0.0, base_delay * (2**attempt))
