"""
Utilities package for the Live Match Sync application.

This package contains utility functions and configuration used throughout the application.
"""
from .time_utils import fmt_mmss, now_ts, now_ms, ts_to_iso, iso_to_ts, elapsed_since
from .constants import (
    APP_TITLE, BLACK, ORANGE, DRAW, TEAMS,
    DEFAULT_MATCH_DURATION_MIN, DEFAULT_WIN_STREAK_THRESHOLD, MANY_PRESENT_LIMIT
)
from .config import SyncConfig

__all__ = [
    "fmt_mmss", "now_ts", "now_ms", "ts_to_iso", "iso_to_ts", "elapsed_since",
    "APP_TITLE", "BLACK", "ORANGE", "DRAW", "TEAMS",
    "DEFAULT_MATCH_DURATION_MIN", "DEFAULT_WIN_STREAK_THRESHOLD", "MANY_PRESENT_LIMIT",
    "SyncConfig"
]
