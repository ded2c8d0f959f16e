"""
Models package for the Live Match Sync application.

This package contains the core data models used throughout the application.
"""
from .match_session import MatchSession, MatchStatus, unique_ids
from .stat_event import (
    StatEvent, EventType, PlayerTally, parse_events, score_from_events, tally_players
)
from .submission import GoalPayload, QueuedSubmission, new_idempotency_key
from .rotation import RotationInput, RotationMode, RotationOutcome, other_team
from .connection import ConnectionState, ConnectionStats

__all__ = [
    "MatchSession", "MatchStatus", "unique_ids",
    "StatEvent", "EventType", "PlayerTally", "parse_events", "score_from_events", "tally_players",
    "GoalPayload", "QueuedSubmission", "new_idempotency_key",
    "RotationInput", "RotationMode", "RotationOutcome", "other_team",
    "ConnectionState", "ConnectionStats"
]
