"""
Utility functions for the Live Match Sync application.

This module contains common time helpers used throughout the application.
"""
import time
from datetime import datetime, timezone
from typing import Optional


def fmt_mmss(seconds: int) -> str:
    """
    Format seconds as MM:SS string.

    Args:
        seconds: Number of seconds to format

    Returns:
        Formatted time string in MM:SS format

    Example:
        >>> fmt_mmss(90)
        '01:30'
        >>> fmt_mmss(3661)
        '61:01'
    """
    seconds = max(0, int(seconds))
    m = seconds // 60
    s = seconds % 60
    return f"{m:02d}:{s:02d}"


def now_ts() -> float:
    """
    Get current timestamp in epoch seconds.

    Returns:
        Current time as floating point epoch seconds
    """
    return time.time()


def now_ms() -> int:
    """Current time in epoch milliseconds (the unit used by stream pings)."""
    return int(now_ts() * 1000)


def ts_to_iso(ts: float) -> str:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def iso_to_ts(value: Optional[str]) -> Optional[float]:
    """
    Parse an ISO-8601 string back to epoch seconds.

    Naive values are treated as UTC. Returns None for empty or unparseable input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def elapsed_since(start_ts: Optional[float], current: Optional[float] = None) -> int:
    """Whole seconds elapsed since ``start_ts``, never negative."""
    if start_ts is None:
        return 0
    current = now_ts() if current is None else current
    return max(0, int(current - start_ts))
