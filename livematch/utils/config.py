"""Runtime configuration for the Live Match Sync application."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_MATCH_DURATION_MIN,
    DEFAULT_STATE_FILE,
    DEFAULT_WIN_STREAK_THRESHOLD,
    MANY_PRESENT_LIMIT,
)


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class SyncConfig:
    """
    Settings shared by the server, the observer and the session controller.

    Attributes:
        api_url: Base URL of the authoritative server
        state_file: JSON file backing the local key-value store
        win_streak_threshold: Consecutive wins after which a streak saturates
        match_duration_min: Regulation match length (overtime alarm trigger)
        many_present_limit: Present-player count above which both teams rotate
        log_level: Logging level name for the entry points
    """
    api_url: str = DEFAULT_API_URL
    state_file: str = DEFAULT_STATE_FILE
    win_streak_threshold: int = DEFAULT_WIN_STREAK_THRESHOLD
    match_duration_min: int = DEFAULT_MATCH_DURATION_MIN
    many_present_limit: int = MANY_PRESENT_LIMIT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.api_url = self.api_url.rstrip("/")
        # 0 means "use the default", negative values floor to 1
        threshold = int(self.win_streak_threshold) or DEFAULT_WIN_STREAK_THRESHOLD
        self.win_streak_threshold = max(1, threshold)
        self.match_duration_min = max(1, int(self.match_duration_min))
        self.many_present_limit = max(0, int(self.many_present_limit))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        """Build a configuration from environment variables, falling back to defaults."""
        env = os.environ if env is None else env
        return cls(
            api_url=env.get("LIVEMATCH_API_URL", DEFAULT_API_URL),
            state_file=env.get("LIVEMATCH_STATE_FILE", DEFAULT_STATE_FILE),
            win_streak_threshold=_int_env(env, "WIN_STREAK_RULE", DEFAULT_WIN_STREAK_THRESHOLD),
            match_duration_min=_int_env(env, "MATCH_DURATION_MIN", DEFAULT_MATCH_DURATION_MIN),
            many_present_limit=_int_env(env, "MANY_PRESENT_LIMIT", MANY_PRESENT_LIMIT),
            log_level=env.get("LIVEMATCH_LOG_LEVEL", "INFO").upper(),
        )
