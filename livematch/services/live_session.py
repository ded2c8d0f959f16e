"""
Session controller for the Live Match Sync application.

Wires the match timer, the offline goal queue, the live sync channel, the
snapshot store and the rotation engine around one live match. Direct user
actions never raise for network trouble: they return a ``SubmitResult`` and
report a short message through ``on_notice``.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..models import (
    GoalPayload, MatchSession, MatchStatus, PlayerTally, RotationInput, RotationMode,
    RotationOutcome, StatEvent, tally_players, unique_ids,
)
from ..utils import BLACK, TEAMS, now_ts
from ..utils.constants import DRAIN_INTERVAL_SECONDS
from .api_client import ApiError
from .connectivity import ConnectivityMonitor
from .goal_queue import OfflineGoalQueue
from .live_sync import LiveSyncChannel
from .rotation_service import RotationService, recompute_bench
from .scheduler import CancelScope, Scheduler
from .snapshot_store import SessionSnapshot, SessionSnapshotStore
from .timer_service import MatchTimer
from .win_streak import winner_from_score

logger = logging.getLogger(__name__)


class SubmitResult(str, Enum):
    RECORDED = "recorded"
    QUEUED = "queued"
    REJECTED = "rejected"


class LiveMatchSession:
    """
    Client-side controller of one live match.

    Owns a ``CancelScope`` for the clock tick, the alarm, the 5 s queue drain
    and the connectivity listener; the channel owns its own scope for the
    stream and its fallback poller. ``deactivate()`` cancels both.
    """

    def __init__(self, api, scheduler: Scheduler, snapshots: SessionSnapshotStore,
                 queue: OfflineGoalQueue, channel: LiveSyncChannel, timer: MatchTimer,
                 rotation: RotationService, connectivity: ConnectivityMonitor, *,
                 drain_interval: float = DRAIN_INTERVAL_SECONDS,
                 on_notice: Optional[Callable[[str], None]] = None,
                 on_rotation: Optional[Callable[[RotationOutcome], None]] = None):
        self.api = api
        self.scheduler = scheduler
        self.snapshots = snapshots
        self.queue = queue
        self.channel = channel
        self.timer = timer
        self.rotation = rotation
        self.connectivity = connectivity
        self.drain_interval = drain_interval
        self.on_notice = on_notice
        self.on_rotation = on_rotation

        self.match: Optional[MatchSession] = None
        self.bench: List[int] = []
        self.events: List[StatEvent] = []
        self.live_stats: Dict[int, PlayerTally] = {}
        self.outcome: Optional[RotationOutcome] = None

        self._scope: Optional[CancelScope] = None
        self._finalized = False
        self._pre_finish_streaks = (0, 0)

        channel.on_stats = self._on_stats
        channel.on_score = self._on_score
        channel.on_streak = self._on_streak
        channel.on_detail = self._on_detail
        channel.on_finish = self._on_remote_finish
        channel.on_refresh = self._on_refresh_after_finish
        queue.on_applied = self._on_queue_applied

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def match_id(self) -> Optional[int]:
        return self.match.match_id if self.match is not None else None

    @property
    def active(self) -> bool:
        return self._scope is not None and not self._finalized

    def start(self, black_team: Iterable[int], orange_team: Iterable[int],
              bench: Iterable[int] = (), *, many_present_rule: bool = False,
              present_count: Optional[int] = None,
              black_win_streak: Optional[int] = None,
              orange_win_streak: Optional[int] = None) -> MatchSession:
        """
        Create a match on the server and start following it.

        Raises:
            ApiError: If the server refused or could not be reached
            ValueError: If a player is on both teams
        """
        black, orange = unique_ids(black_team), unique_ids(orange_team)
        if set(black) & set(orange):
            raise ValueError("Players cannot be on both teams")
        if present_count is None:
            present_count = len(unique_ids(black + orange + list(bench)))

        match = self.api.create_match(
            black, orange,
            many_present_rule=many_present_rule,
            present_count=present_count,
            black_win_streak=black_win_streak,
            orange_win_streak=orange_win_streak,
        )
        self.bench = recompute_bench(bench, (), match.participants)
        self.events, self.live_stats = [], {}
        self._activate(match, match.start_ts or now_ts())
        logger.info("Started match %s (%d vs %d players)", match.match_id,
                    len(match.black_roster), len(match.orange_roster))
        return match

    def restore(self) -> Optional[MatchSession]:
        """
        Pick up the match saved in the snapshot store after a reload.

        The clock resumes from the stored anchor. When the server cannot be
        reached the snapshot alone is used; a match the server reports as gone
        or finished clears the local state.
        """
        snapshot = self.snapshots.load()
        if snapshot is None or snapshot.match_id is None or not snapshot.in_progress:
            return None

        try:
            match = self.api.fetch_match(snapshot.match_id)
        except ApiError as exc:
            if not exc.transient:
                logger.warning("Saved match %s is no longer available: %s",
                               snapshot.match_id, exc)
                self.snapshots.clear(snapshot.match_id)
                return None
            logger.info("Server unreachable, restoring match %s from the snapshot",
                        snapshot.match_id)
            self.connectivity.set_online(False)
            match = self._match_from_snapshot(snapshot)

        if match.status != MatchStatus.IN_PROGRESS:
            logger.info("Saved match %s already finished", match.match_id)
            self.snapshots.clear(match.match_id)
            return None

        self.bench = list(snapshot.bench)
        self.live_stats = dict(snapshot.live_stats)
        self.events = []
        self._activate(match, snapshot.start_ts or match.start_ts or now_ts())
        logger.info("Restored match %s at %s", match.match_id, self.timer.display())
        return match

    def deactivate(self) -> None:
        """Tear down every timer and the stream subscription of this session."""
        if self._scope is not None:
            self._scope.cancel()
            self._scope = None
        self.timer.stop()
        self.channel.deactivate()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def record_goal(self, team: str, scorer_id: Optional[int] = None,
                    assist_id: Optional[int] = None, is_own_goal: bool = False,
                    minute: Optional[int] = None) -> SubmitResult:
        """Record a goal, queueing it when the server cannot be reached."""
        if not self.active:
            return self._reject("No match in progress")
        if minute is None:
            minute = self.timer.elapsed_seconds // 60
        try:
            payload = GoalPayload(team_scored=team, scorer_id=scorer_id,
                                  assist_id=assist_id, is_own_goal=is_own_goal,
                                  goal_minute=minute)
        except ValueError as exc:
            return self._reject(str(exc))

        if not self.connectivity.online:
            return self._queue_goal(payload)
        try:
            self.api.submit_goal(self.match_id, payload)
        except ApiError as exc:
            if exc.transient:
                self.connectivity.set_online(False)
                return self._queue_goal(payload)
            return self._reject(f"Goal rejected: {exc}")
        self.channel.refresh()
        return SubmitResult.RECORDED

    def record_substitution(self, team: str, player_out: int,
                            player_in: int) -> SubmitResult:
        if not self.active:
            return self._reject("No match in progress")
        if team not in TEAMS or player_out not in self.match.roster(team):
            return self._reject(f"Player {player_out} is not on the {team} team")
        if player_in in self.match.participants:
            return self._reject(f"Player {player_in} is already playing")
        try:
            self.api.submit_substitution(self.match_id, team, player_out, player_in,
                                         minute=self.timer.elapsed_seconds // 60)
        except ApiError as exc:
            return self._reject(f"Substitution failed: {exc}")

        self.match.substitute(team, player_out, player_in)
        self.bench = recompute_bench(self.bench, [player_out], [player_in])
        self.snapshots.save_teams(self.match.black_roster, self.match.orange_roster)
        self.snapshots.save_bench(self.bench)
        return SubmitResult.RECORDED

    def adjust_streak(self, black: int, orange: int) -> SubmitResult:
        """Manually correct the win-streak counters."""
        if not self.active:
            return self._reject("No match in progress")
        if black < 0 or orange < 0:
            return self._reject("Win streaks cannot be negative")
        try:
            match = self.api.adjust_win_streak(self.match_id, black, orange)
        except ApiError as exc:
            return self._reject(f"Win streak update failed: {exc}")
        self._on_streak(match.black_win_streak, match.orange_win_streak)
        return SubmitResult.RECORDED

    def record_tie_decider(self, winner: str) -> SubmitResult:
        """Store the tie-break winner on the server before finishing a draw."""
        if not self.active:
            return self._reject("No match in progress")
        if winner not in TEAMS:
            return self._reject(f"Unknown team: {winner!r}")
        try:
            match = self.api.submit_tie_decider(self.match_id, winner)
        except ApiError as exc:
            return self._reject(f"Tie-break failed: {exc}")
        self.match.tie_decider_winner = match.tie_decider_winner or winner
        self._save_rules()
        return SubmitResult.RECORDED

    def toggle_mute(self) -> bool:
        return self.timer.toggle_mute()

    def finish(self) -> Optional[RotationOutcome]:
        """
        Finish the match on the server and decide the rotation.

        Returns None when the server could not be reached or goals are still
        queued; the match stays live. The final score sent is the one counted
        from the server's event log.
        """
        if not self.active:
            return None
        match_id = self.match_id
        self.drain()
        waiting = len(self.queue.pending(match_id))
        if waiting:
            self._notice(f"Cannot finish yet: {waiting} goal(s) still waiting to be sent")
            return None
        if not self.channel.refresh():
            self._notice("Could not finish the match: the score could not be confirmed")
            return None
        if not self.active:
            # The refresh found the match already finished elsewhere
            return self.outcome
        try:
            finished = self.api.finish_match(match_id, self.channel.black_score,
                                             self.channel.orange_score, self.match.participants)
        except ApiError as exc:
            if exc.definitive:
                # Finished elsewhere; the channel delivers the final score.
                self._notice(f"Match {match_id} is already closed")
                self.channel.refresh()
                return self.outcome
            if exc.transient:
                self.connectivity.set_online(False)
            self._notice(f"Could not finish the match: {exc}")
            return None
        self._on_detail(finished)
        outcome = self._finalize(finished.black_score, finished.orange_score)
        self.channel.deactivate()
        return outcome

    def resolve_tie(self, winner: str) -> Optional[RotationOutcome]:
        """Decide a rotation left pending on a draw once the tie-break is known."""
        if self.outcome is None or not self.outcome.tie_break_pending:
            return self.outcome
        if winner not in TEAMS:
            raise ValueError(f"Unknown team: {winner!r}")
        self.match.tie_decider_winner = winner
        self.outcome = self.rotation.decide(self._rotation_input(
            self.match.black_score, self.match.orange_score))
        self._publish_rotation()
        return self.outcome

    def choose_challengers(self, incoming: Iterable[int]) -> RotationOutcome:
        """
        Fill the open slot of a keep-winner rotation.

        Raises:
            ValueError: If there is no open slot or a challenger already plays
        """
        if self.outcome is None:
            raise ValueError("No rotation to complete")
        self.outcome = self.rotation.apply_challengers(self.outcome, incoming)
        self._save_selection()
        return self.outcome

    def suggest_challengers(self) -> List[int]:
        if self.outcome is None or self.outcome.open_slot is None:
            return []
        staying = self.outcome.next_black or self.outcome.next_orange
        return self.rotation.suggest_challengers(self.bench, len(staying), exclude=staying)

    # ------------------------------------------------------------------
    # Queue and connectivity
    # ------------------------------------------------------------------
    def drain(self) -> int:
        if not self.active:
            return 0
        return self.queue.drain(self.connectivity.online, self.match_id)

    def notify_online(self, online: bool) -> None:
        self.connectivity.set_online(online)

    def _drain_tick(self) -> None:
        if self.connectivity.online:
            self.drain()
            return
        # Coming back online fires the restore listener, which drains
        self.connectivity.probe(self.api)

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------
    def _on_stats(self, events: List[StatEvent]) -> None:
        self.events = list(events)
        self.live_stats = tally_players(events)
        if self.active:
            self.snapshots.save_live_stats(self.live_stats)

    def _on_score(self, black: int, orange: int) -> None:
        if self.match is None or self._finalized:
            return
        self.match.set_scores(black, orange)
        self.snapshots.save_scores(black, orange)

    def _on_streak(self, black: int, orange: int) -> None:
        if self.match is None:
            return
        self.match.black_win_streak = black
        self.match.orange_win_streak = orange
        if not self._finalized:
            self._pre_finish_streaks = (black, orange)

    def _on_detail(self, match: MatchSession) -> None:
        """Take the rotation rules from the server's copy of the match."""
        if self.match is None or self._finalized or match.match_id != self.match_id:
            return
        self.match.many_present_rule = match.many_present_rule
        self.match.present_count = match.present_count
        if match.tie_decider_winner is not None:
            self.match.tie_decider_winner = match.tie_decider_winner
        self._save_rules()

    def _on_remote_finish(self, black: int, orange: int) -> None:
        if self.match is None or self._finalized:
            return
        self._finalize(black, orange)

    def _on_refresh_after_finish(self) -> None:
        self.channel.deactivate()

    def _on_queue_applied(self, match_id: int) -> None:
        if match_id == self.match_id:
            self.channel.refresh()

    def _on_online(self) -> None:
        self.drain()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _activate(self, match: MatchSession, start_ts: float) -> None:
        self.deactivate()
        self.match = match
        self.outcome = None
        self._finalized = False
        self._pre_finish_streaks = (match.black_win_streak, match.orange_win_streak)
        self._scope = CancelScope(self.scheduler)
        self.timer.start(start_ts, scope=self._scope)
        self._scope.call_every(self.drain_interval, self._drain_tick)
        self._scope.track(self.connectivity.add_listener(self._on_online))
        self.snapshots.save(SessionSnapshot(
            match_id=match.match_id,
            start_ts=start_ts,
            black_score=match.black_score,
            orange_score=match.orange_score,
            black_roster=match.black_roster,
            orange_roster=match.orange_roster,
            bench=self.bench,
            live_stats=self.live_stats,
            alarm_muted=self.timer.muted,
            many_present_rule=match.many_present_rule,
            present_count=match.present_count,
            tie_decider_winner=match.tie_decider_winner,
        ))
        self.channel.activate(match.match_id, in_progress=True)

    def _finalize(self, black: int, orange: int) -> RotationOutcome:
        self._finalized = True
        if self._scope is not None:
            self._scope.cancel()
            self._scope = None
        self.timer.stop()

        facts = self._rotation_input(black, orange)
        if self.match.status == MatchStatus.IN_PROGRESS:
            self.match.mark_finished(black, orange, winner_from_score(black, orange))
        self.outcome = self.rotation.decide(facts)
        self.snapshots.clear(self.match.match_id)
        logger.info("Match %s finished %d-%d, rotation %s", self.match.match_id,
                    black, orange, self.outcome.mode.value)
        self._publish_rotation()
        return self.outcome

    def _rotation_input(self, black: int, orange: int) -> RotationInput:
        black_streak, orange_streak = self._pre_finish_streaks
        return RotationInput(
            black_score=black,
            orange_score=orange,
            black_roster=self.match.black_roster,
            orange_roster=self.match.orange_roster,
            bench=self.bench,
            black_streak=black_streak,
            orange_streak=orange_streak,
            present_count=self.match.present_count,
            many_present_rule=self.match.many_present_rule,
            tie_winner=self.match.tie_decider_winner,
        )

    def _publish_rotation(self) -> None:
        if self.outcome.mode != RotationMode.MANUAL:
            self.bench = list(self.outcome.bench_candidates)
        self._save_selection()
        if self.on_rotation is not None:
            self.on_rotation(self.outcome)

    def _save_rules(self) -> None:
        self.snapshots.save_rules(self.match.many_present_rule, self.match.present_count,
                                  self.match.tie_decider_winner)

    def _save_selection(self) -> None:
        self.snapshots.save_teams(self.outcome.next_black, self.outcome.next_orange)
        self.snapshots.save_bench(self.outcome.bench_candidates)

    def _queue_goal(self, payload: GoalPayload) -> SubmitResult:
        self.queue.enqueue(self.match_id, payload)
        black, orange = self.match.black_score, self.match.orange_score
        if payload.team_scored == BLACK:
            black += 1
        else:
            orange += 1
        self._on_score(black, orange)
        self._notice("Offline: goal queued and will be sent when the connection returns")
        return SubmitResult.QUEUED

    def _match_from_snapshot(self, snapshot: SessionSnapshot) -> MatchSession:
        present_count = snapshot.present_count
        if present_count is None:
            present_count = len(unique_ids(snapshot.black_roster + snapshot.orange_roster
                                           + snapshot.bench))
        return MatchSession(
            match_id=snapshot.match_id,
            status=MatchStatus.IN_PROGRESS,
            start_ts=snapshot.start_ts,
            black_score=snapshot.black_score,
            orange_score=snapshot.orange_score,
            black_roster=snapshot.black_roster,
            orange_roster=snapshot.orange_roster,
            many_present_rule=snapshot.many_present_rule,
            present_count=present_count,
            tie_decider_winner=snapshot.tie_decider_winner,
        )

    def _reject(self, message: str) -> SubmitResult:
        self._notice(message)
        return SubmitResult.REJECTED

    def _notice(self, message: str) -> None:
        logger.info("%s", message)
        if self.on_notice is not None:
            self.on_notice(message)
