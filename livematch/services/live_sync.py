"""
Live sync channel for the Live Match Sync application.

Follows one match (or the dashboard-wide ticker) through the server's event
stream and keeps a local view of the event log, score and win streaks. Push
messages are treated as triggers: the authoritative log is re-fetched instead
of applying deltas, so dropped, duplicated or reordered messages still
converge. When the stream keeps failing the channel falls back to polling.
"""
import logging
from typing import Any, Callable, List, Optional

from ..models import (
    ConnectionState, ConnectionStats, MatchSession, MatchStatus, StatEvent, parse_events,
    score_from_events,
)
from ..utils import now_ms
from ..utils.constants import (
    CLOCK_SKEW_WEIGHT, FINISH_REFRESH_DELAY_SECONDS, MAX_FAILURE_COUNT,
    POLL_AFTER_FAILURES, POLL_INTERVAL_SECONDS,
)
from .api_client import ApiError
from .connectivity import ConnectivityMonitor
from .scheduler import CancelScope, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

LIVE_STREAM_PATH = "/api/live/stream"


class LiveSyncChannel:
    """
    Reconciliation state machine of one observed match.

    States are ``online`` (stream open or recently pinged), ``reconnecting``
    (stream dropped, retrying) and ``offline`` (not following anything while
    the network is down). Every timer and the subscription live in one
    ``CancelScope`` so ``deactivate()`` leaves nothing running.
    """

    def __init__(self, api, subscriber, scheduler: Scheduler,
                 connectivity: Optional[ConnectivityMonitor] = None, *,
                 on_stats: Optional[Callable[[List[StatEvent]], None]] = None,
                 on_score: Optional[Callable[[int, int], None]] = None,
                 on_streak: Optional[Callable[[int, int], None]] = None,
                 on_detail: Optional[Callable[[MatchSession], None]] = None,
                 on_finish: Optional[Callable[[int, int], None]] = None,
                 on_refresh: Optional[Callable[[], None]] = None,
                 on_inactive: Optional[Callable[[], None]] = None,
                 on_state: Optional[Callable[[ConnectionState], None]] = None,
                 poll_interval: float = POLL_INTERVAL_SECONDS,
                 poll_after_failures: int = POLL_AFTER_FAILURES,
                 max_failures: int = MAX_FAILURE_COUNT,
                 finish_refresh_delay: float = FINISH_REFRESH_DELAY_SECONDS):
        self.api = api
        self.subscriber = subscriber
        self.scheduler = scheduler
        self.connectivity = connectivity or ConnectivityMonitor()

        self.on_stats = on_stats
        self.on_score = on_score
        self.on_streak = on_streak
        self.on_detail = on_detail
        self.on_finish = on_finish
        self.on_refresh = on_refresh
        self.on_inactive = on_inactive
        self.on_state = on_state

        self.poll_interval = poll_interval
        self.poll_after_failures = poll_after_failures
        self.max_failures = max_failures
        self.finish_refresh_delay = finish_refresh_delay

        self.state = ConnectionState.ONLINE if self.connectivity.online else ConnectionState.OFFLINE
        self.stats = ConnectionStats()
        self.failures = 0
        self.clock_offset_ms = 0.0

        self.match_id: Optional[int] = None
        self.events: List[StatEvent] = []
        self.black_score = 0
        self.orange_score = 0
        self.black_streak = 0
        self.orange_streak = 0

        self._scope: Optional[CancelScope] = None
        self._poller: Optional[TimerHandle] = None
        self._finished_seen = False
        self._dashboard = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def active(self) -> bool:
        return self._scope is not None

    @property
    def polling(self) -> bool:
        return self._poller is not None and self._poller.active

    def activate(self, match_id: Optional[int], in_progress: bool = True) -> None:
        """
        Start following ``match_id``.

        A missing match id or a match that is not in progress deactivates the
        channel instead.
        """
        if self.active:
            self.deactivate()
        if match_id is None or not in_progress:
            self.deactivate()
            return
        self.match_id = int(match_id)
        self._dashboard = False
        self._open(self.api.stream_url(self.match_id))

    def activate_dashboard(self) -> None:
        """Follow whichever match is live, as announced by the live ticker stream."""
        if self.active:
            self.deactivate()
        self.match_id = None
        self._dashboard = True
        self._open(self.api.url(LIVE_STREAM_PATH))

    def deactivate(self) -> None:
        """Close the subscription, cancel every timer and report plain connectivity."""
        if self._scope is not None:
            self._scope.cancel()
            logger.debug("Live sync for match %s deactivated", self.match_id)
        self._scope = None
        self._poller = None
        self.failures = 0
        self._set_state(ConnectionState.ONLINE if self.connectivity.online
                        else ConnectionState.OFFLINE)

    def server_now_ms(self) -> float:
        """Local clock corrected by the estimated client/server offset."""
        return now_ms() + self.clock_offset_ms

    # ------------------------------------------------------------------
    # Authoritative re-fetch
    # ------------------------------------------------------------------
    def refresh(self, streak_tag: str = "streak:poll") -> bool:
        """
        Re-fetch the event log and the match detail.

        Returns False when either request failed; failures are logged, never raised.
        """
        match_id = self.match_id
        if match_id is None:
            return False
        try:
            events = self.api.fetch_stats(match_id)
        except ApiError as exc:
            logger.debug("Event log fetch for match %s failed: %s", match_id, exc)
            return False
        self._apply_events(events, *score_from_events(events))
        return self._fetch_detail(match_id, streak_tag)

    def poll_once(self) -> None:
        """One tick of the fallback poller."""
        if self.match_id is None:
            return
        logger.info("sse:poll-tick match=%s", self.match_id)
        if self.refresh():
            self.stats.polls += 1

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------
    def handle_open(self) -> None:
        self.stats.opens += 1
        logger.info("sse:open match=%s attempt=%d opens=%d",
                    self.match_id, self.failures, self.stats.opens)
        self._set_state(ConnectionState.ONLINE)
        self.failures = 0
        self._stop_polling()

    def handle_error(self, error: Any = None) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        self.stats.errors += 1
        self.stats.reconnects += 1
        self.failures = min(self.max_failures, self.failures + 1)
        logger.warning("sse:error attempt=%d online=%s errors=%d reconnects=%d error=%s",
                       self.failures, self.connectivity.online, self.stats.errors,
                       self.stats.reconnects, error)
        if self.failures >= self.poll_after_failures and not self.polling and self._scope is not None:
            logger.info("sse:poll-start match=%s", self.match_id)
            self._poller = self._scope.call_every(self.poll_interval, self.poll_once)

    def handle_event(self, event: str, payload: Any) -> None:
        handler = {
            "init": self._on_init,
            "goal": self._on_goal,
            "finish": self._on_finish,
            "ping": self._on_ping,
            "inactive": self._on_inactive,
        }.get(event)
        if handler is None:
            logger.debug("Ignoring stream event %r", event)
            return
        handler(payload if isinstance(payload, dict) else {})

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------
    def _on_init(self, data: dict) -> None:
        announced = data.get("match_id")
        if self._dashboard and announced is not None and int(announced) != self.match_id:
            self.match_id = int(announced)
            self._finished_seen = False
        try:
            events = parse_events(data.get("stats") or [])
            black = int(data.get("blackGoals") or 0)
            orange = int(data.get("orangeGoals") or 0)
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed init snapshot, re-fetching the event log")
            self.refresh()
            return
        self.stats.inits += 1
        logger.info("sse:init events=%d black=%d orange=%d inits=%d",
                    len(events), black, orange, self.stats.inits)
        self._apply_events(events, black, orange)
        if self.match_id is not None:
            self._fetch_detail(self.match_id, "streak:sse-init")

    def _on_goal(self, data: dict) -> None:
        self.stats.goals += 1
        logger.info("sse:goal black=%s orange=%s goals=%d",
                    data.get("blackGoals"), data.get("orangeGoals"), self.stats.goals)
        self.refresh()

    def _on_ping(self, data: dict) -> None:
        self.stats.pings += 1
        logger.debug("sse:ping pings=%d", self.stats.pings)
        self._set_state(ConnectionState.ONLINE)
        try:
            server_ts = float(data["ts"])
        except (KeyError, TypeError, ValueError):
            return
        sample = server_ts - now_ms()
        self.clock_offset_ms = ((1.0 - CLOCK_SKEW_WEIGHT) * self.clock_offset_ms
                                + CLOCK_SKEW_WEIGHT * sample)

    def _on_finish(self, data: dict) -> None:
        finished_id = data.get("match_id")
        if finished_id is not None and self.match_id is not None and int(finished_id) != self.match_id:
            logger.debug("Ignoring finish of match %s while following %s", finished_id, self.match_id)
            return
        self.stats.finishes += 1
        try:
            black = int(data.get("blackScore", self.black_score))
            orange = int(data.get("orangeScore", self.orange_score))
        except (TypeError, ValueError):
            black, orange = self.black_score, self.orange_score
        logger.info("sse:finish match=%s black=%d orange=%d finishes=%d",
                    self.match_id, black, orange, self.stats.finishes)
        if self._finished_seen:
            return
        # The final detail carries the tie-break winner and the rule flags
        match = self._load_detail(self.match_id) if self.match_id is not None else None
        self._finish(black, orange)
        if match is not None:
            self._apply_streaks(match.black_win_streak, match.orange_win_streak)

    def _on_inactive(self, data: dict) -> None:
        logger.info("No match is live")
        self._stop_polling()
        self.match_id = None
        self._finished_seen = False
        self._apply_events([], 0, 0)
        self._apply_streaks(0, 0)
        self._emit(self.on_inactive)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _open(self, url: str) -> None:
        self._scope = CancelScope(self.scheduler)
        self._finished_seen = False
        self.failures = 0
        self._set_state(ConnectionState.RECONNECTING)
        subscription = self.subscriber.subscribe(
            url,
            on_open=self.handle_open,
            on_error=self.handle_error,
            on_event=self.handle_event,
        )
        self._scope.track(subscription)

    def _load_detail(self, match_id: int) -> Optional[MatchSession]:
        """Fetch the match detail and hand it to ``on_detail``; None on failure."""
        try:
            match = self.api.fetch_match(match_id)
        except ApiError as exc:
            logger.debug("Match detail fetch for match %s failed: %s", match_id, exc)
            return None
        if match_id == self.match_id:
            self._emit(self.on_detail, match)
        return match

    def _fetch_detail(self, match_id: int, tag: str) -> bool:
        match = self._load_detail(match_id)
        if match is None:
            return False
        if match_id != self.match_id:
            return True
        if match.status == MatchStatus.FINISHED:
            # Listeners see the pre-match streaks before the final ones arrive.
            self._finish(match.black_score or self.black_score,
                         match.orange_score or self.orange_score)
        self._apply_streaks(match.black_win_streak, match.orange_win_streak)
        logger.info("%s match=%s black=%d orange=%d", tag, match_id,
                    match.black_win_streak, match.orange_win_streak)
        return True

    def _finish(self, black: int, orange: int) -> None:
        if self._finished_seen:
            return
        self._finished_seen = True
        self._stop_polling()
        if self._scope is not None:
            self._scope.call_later(self.finish_refresh_delay, self._refresh_after_finish)
        self._emit(self.on_finish, black, orange)

    def _refresh_after_finish(self) -> None:
        self.refresh()
        self._emit(self.on_refresh)

    def _apply_events(self, events: List[StatEvent], black: int, orange: int) -> None:
        self.events = list(events)
        self.black_score, self.orange_score = black, orange
        self._emit(self.on_stats, list(self.events))
        self._emit(self.on_score, black, orange)

    def _apply_streaks(self, black: int, orange: int) -> None:
        self.black_streak, self.orange_streak = black, orange
        self._emit(self.on_streak, black, orange)

    def _stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None
            logger.info("sse:poll-stop match=%s", self.match_id)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        self._emit(self.on_state, state)

    @staticmethod
    def _emit(callback: Optional[Callable], *args) -> None:
        if callback is not None:
            callback(*args)
