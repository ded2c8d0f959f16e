"""
Live Match Sync

Keeps the score, event log and win streaks of an in-progress pickup match
consistent between one authoritative server and any number of observing
clients, and decides after each match which players continue.

This package provides the Flask server, the client-side sync services and
the rotation rules they share.
"""
from .models import MatchSession, StatEvent, RotationOutcome
from .services import LiveMatchSession, LiveSyncChannel, RotationService, ServiceFactory, next_streak
from .ui import create_app, run_web_app
from .utils import fmt_mmss, now_ts, APP_TITLE, SyncConfig

__version__ = "1.0.0"
__author__ = "Live Match Sync Development Team"

__all__ = [
    "MatchSession", "StatEvent", "RotationOutcome",
    "LiveMatchSession", "LiveSyncChannel", "RotationService", "ServiceFactory", "next_streak",
    "create_app", "run_web_app",
    "fmt_mmss", "now_ts", "APP_TITLE", "SyncConfig"
]
