"""
Services package for the Live Match Sync application.

This package contains service classes that handle business logic.
Includes factory for proper dependency injection following SOLID principles.
"""
from .win_streak import StreakPair, next_streak, normalize_threshold, winner_from_score
from .rotation_service import RotationService, recompute_bench
from .scheduler import CancelScope, ManualScheduler, Scheduler, ThreadingScheduler, TimerHandle
from .storage import JsonFileStore, KeyValueStore, MemoryStore
from .snapshot_store import SessionSnapshot, SessionSnapshotStore
from .api_client import ApiError, MatchApiClient
from .event_stream import SseSubscriber, Subscription, parse_event_stream
from .connectivity import ConnectivityMonitor
from .goal_queue import OfflineGoalQueue
from .live_sync import LiveSyncChannel
from .timer_service import AlarmSink, MatchTimer, TerminalBell
from .live_session import LiveMatchSession, SubmitResult
from .service_factory import ServiceFactory

__all__ = [
    "StreakPair", "next_streak", "normalize_threshold", "winner_from_score",
    "RotationService", "recompute_bench",
    "CancelScope", "ManualScheduler", "Scheduler", "ThreadingScheduler", "TimerHandle",
    "JsonFileStore", "KeyValueStore", "MemoryStore",
    "SessionSnapshot", "SessionSnapshotStore",
    "ApiError", "MatchApiClient",
    "SseSubscriber", "Subscription", "parse_event_stream",
    "ConnectivityMonitor", "OfflineGoalQueue", "LiveSyncChannel",
    "AlarmSink", "MatchTimer", "TerminalBell",
    "LiveMatchSession", "SubmitResult",
    "ServiceFactory"
]
