"""
Service Factory for dependency injection following SOLID principles.

This module provides a factory for creating properly configured service instances
with their dependencies injected, following the Dependency Inversion Principle.
"""
from typing import Callable, Optional

from ..models import RotationOutcome
from ..utils import SyncConfig
from .api_client import MatchApiClient
from .connectivity import ConnectivityMonitor
from .event_stream import SseSubscriber
from .goal_queue import OfflineGoalQueue
from .live_session import LiveMatchSession
from .live_sync import LiveSyncChannel
from .rotation_service import RotationService
from .scheduler import Scheduler, ThreadingScheduler
from .snapshot_store import SessionSnapshotStore
from .storage import JsonFileStore, KeyValueStore
from .timer_service import AlarmSink, MatchTimer


class ServiceFactory:
    """
    Factory for creating service instances with proper dependency injection.

    Shared collaborators (scheduler, store, API client, connectivity) are
    created once and reused; tests inject fakes through the constructor.
    """

    def __init__(self, config: Optional[SyncConfig] = None, *,
                 scheduler: Optional[Scheduler] = None,
                 store: Optional[KeyValueStore] = None,
                 api=None,
                 subscriber=None,
                 connectivity: Optional[ConnectivityMonitor] = None):
        """Initialize factory with default configurations."""
        self.config = config or SyncConfig.from_env()
        self._scheduler = scheduler
        self._store = store
        self._api = api
        self._subscriber = subscriber
        self._connectivity = connectivity

    def create_rotation_service(self) -> RotationService:
        return RotationService(
            threshold=self.config.win_streak_threshold,
            many_present_limit=self.config.many_present_limit,
        )

    def create_snapshot_store(self) -> SessionSnapshotStore:
        return SessionSnapshotStore(self._get_store())

    def create_goal_queue(self) -> OfflineGoalQueue:
        return OfflineGoalQueue(self._get_store(), self._get_api())

    def create_timer(self, snapshots: Optional[SessionSnapshotStore] = None,
                     sink: Optional[AlarmSink] = None) -> MatchTimer:
        return MatchTimer(
            self._get_scheduler(),
            snapshots or self.create_snapshot_store(),
            duration_minutes=self.config.match_duration_min,
            sink=sink,
        )

    def create_live_sync_channel(self) -> LiveSyncChannel:
        """
        Create a LiveSyncChannel wired to the shared API client and scheduler.

        Returns:
            Configured LiveSyncChannel instance, not yet activated
        """
        return LiveSyncChannel(
            self._get_api(),
            self._get_subscriber(),
            self._get_scheduler(),
            self._get_connectivity(),
        )

    def create_live_session(
        self,
        on_notice: Optional[Callable[[str], None]] = None,
        on_rotation: Optional[Callable[[RotationOutcome], None]] = None,
        sink: Optional[AlarmSink] = None,
    ) -> LiveMatchSession:
        """
        Create a complete session controller with every collaborator injected.

        Args:
            on_notice: Receives short messages about rejected or queued actions
            on_rotation: Receives the rotation decided when the match ends
            sink: Optional alarm output

        Returns:
            Configured LiveMatchSession instance
        """
        snapshots = self.create_snapshot_store()
        return LiveMatchSession(
            self._get_api(),
            self._get_scheduler(),
            snapshots,
            self.create_goal_queue(),
            self.create_live_sync_channel(),
            self.create_timer(snapshots, sink),
            self.create_rotation_service(),
            self._get_connectivity(),
            on_notice=on_notice,
            on_rotation=on_rotation,
        )

    def _get_scheduler(self) -> Scheduler:
        """Get singleton scheduler."""
        if self._scheduler is None:
            self._scheduler = ThreadingScheduler()
        return self._scheduler

    def _get_store(self) -> KeyValueStore:
        """Get singleton key-value store."""
        if self._store is None:
            self._store = JsonFileStore(self.config.state_file)
        return self._store

    def _get_api(self):
        """Get singleton API client."""
        if self._api is None:
            self._api = MatchApiClient(self.config.api_url)
        return self._api

    def _get_subscriber(self):
        if self._subscriber is None:
            self._subscriber = SseSubscriber(self._get_scheduler())
        return self._subscriber

    def _get_connectivity(self) -> ConnectivityMonitor:
        if self._connectivity is None:
            self._connectivity = ConnectivityMonitor()
        return self._connectivity
