"""
Constants for the Live Match Sync application.

This module contains configuration constants used throughout the application.
"""

# Application metadata
APP_TITLE = "Live Match Sync"

# Teams
BLACK = "black"
ORANGE = "orange"
DRAW = "draw"
TEAMS = (BLACK, ORANGE)

# Match timing defaults
DEFAULT_MATCH_DURATION_MIN = 10
MAX_GOAL_MINUTE = 120
TICK_INTERVAL_SECONDS = 1.0
ALARM_INTERVAL_SECONDS = 1.2

# Win-streak / rotation rules
DEFAULT_WIN_STREAK_THRESHOLD = 3
MANY_PRESENT_LIMIT = 17  # more present than this forces both teams out

# Live sync channel
POLL_INTERVAL_SECONDS = 4.0
POLL_AFTER_FAILURES = 5
MAX_FAILURE_COUNT = 10
FINISH_REFRESH_DELAY_SECONDS = 2.0
CLOCK_SKEW_WEIGHT = 0.2
SSE_RETRY_SECONDS = 3.0
SSE_CONNECT_TIMEOUT_SECONDS = 10.0
SSE_READ_TIMEOUT_SECONDS = 45.0

# Offline goal queue
DRAIN_INTERVAL_SECONDS = 5.0
REJECTED_STATUS_CODES = (403,)

# Authoritative server
SERVER_PING_INTERVAL_SECONDS = 15.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7122
DEFAULT_API_URL = f"http://{DEFAULT_HOST}:{DEFAULT_PORT}"
REQUEST_TIMEOUT_SECONDS = 5.0

# Local persisted keys
KEY_MATCH_ID = "currentMatchId"
KEY_IN_PROGRESS = "matchInProgress"
KEY_TICKER = "matchTicker"
KEY_TEAMS = "matchTeams"
KEY_BENCH = "matchBench"
KEY_LIVE_STATS = "matchLiveStats"
KEY_ALARM_MUTED = "matchAlarmMuted"
KEY_RULES = "matchRules"
KEY_GOAL_QUEUE = "matchGoalQueue"

SESSION_KEYS = (
    KEY_TICKER,
    KEY_TEAMS,
    KEY_BENCH,
    KEY_MATCH_ID,
    KEY_IN_PROGRESS,
    KEY_LIVE_STATS,
    KEY_ALARM_MUTED,
    KEY_RULES,
)

DEFAULT_STATE_FILE = "livematch_state.json"
