"""
Session snapshot store for the Live Match Sync application.

Mirrors the "match in progress" state into the local key-value store on every
state-affecting transition so that an unexpected restart can pick the match
up again: match id, anchor start time, rosters, bench, live tallies and the
rotation rules of the match.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models import PlayerTally, unique_ids
from ..utils import TEAMS, elapsed_since, iso_to_ts, ts_to_iso
from ..utils.constants import (
    KEY_ALARM_MUTED, KEY_BENCH, KEY_GOAL_QUEUE, KEY_IN_PROGRESS, KEY_LIVE_STATS,
    KEY_MATCH_ID, KEY_RULES, KEY_TEAMS, KEY_TICKER, SESSION_KEYS,
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class SessionSnapshot:
    """Everything needed to rebuild a live session after a reload."""
    match_id: Optional[int]
    start_ts: Optional[float]
    black_score: int = 0
    orange_score: int = 0
    black_roster: List[int] = field(default_factory=list)
    orange_roster: List[int] = field(default_factory=list)
    bench: List[int] = field(default_factory=list)
    live_stats: Dict[int, PlayerTally] = field(default_factory=dict)
    alarm_muted: bool = False
    many_present_rule: bool = False
    present_count: Optional[int] = None
    tie_decider_winner: Optional[str] = None
    in_progress: bool = True
    elapsed_seconds: int = 0


class SessionSnapshotStore:
    """Save, load and clear the local mirror of the live session."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # ------------------------------------------------------------------
    # Whole-snapshot operations
    # ------------------------------------------------------------------
    def save(self, snapshot: SessionSnapshot) -> None:
        if snapshot.match_id is not None:
            self.store.set(KEY_MATCH_ID, str(snapshot.match_id))
        if snapshot.in_progress:
            self.store.set(KEY_IN_PROGRESS, "1")
        if snapshot.start_ts is not None:
            self.save_ticker(snapshot.start_ts, snapshot.black_score, snapshot.orange_score)
        self.save_teams(snapshot.black_roster, snapshot.orange_roster)
        self.save_bench(snapshot.bench)
        self.save_live_stats(snapshot.live_stats)
        self.set_alarm_muted(snapshot.alarm_muted)
        self.save_rules(snapshot.many_present_rule, snapshot.present_count,
                        snapshot.tie_decider_winner)

    def load(self) -> Optional[SessionSnapshot]:
        """
        Rebuild the snapshot, or return None when there is nothing to restore.

        Elapsed time is recomputed from the stored anchor, never resumed from zero.
        """
        ticker = self.store.get_json(KEY_TICKER)
        in_progress = self.store.get(KEY_IN_PROGRESS) == "1"
        match_id = self._load_match_id()

        start_ts = None
        black = orange = 0
        if isinstance(ticker, dict):
            start_ts = iso_to_ts(ticker.get("startTime"))
            try:
                black = max(0, int(ticker.get("blackScore") or 0))
                orange = max(0, int(ticker.get("orangeScore") or 0))
            except (TypeError, ValueError):
                logger.warning("Ignoring corrupted scores in the ticker snapshot")
                black = orange = 0

        if start_ts is None and not in_progress and match_id is None:
            return None

        black_roster, orange_roster = self._load_teams()
        many_present_rule, present_count, tie_winner = self._load_rules()
        return SessionSnapshot(
            match_id=match_id,
            start_ts=start_ts,
            black_score=black,
            orange_score=orange,
            black_roster=black_roster,
            orange_roster=orange_roster,
            bench=self._load_id_list(KEY_BENCH),
            live_stats=self._load_live_stats(),
            alarm_muted=self.is_alarm_muted(),
            many_present_rule=many_present_rule,
            present_count=present_count,
            tie_decider_winner=tie_winner,
            in_progress=in_progress or start_ts is not None,
            elapsed_seconds=elapsed_since(start_ts),
        )

    def clear(self, match_id: Optional[int] = None) -> None:
        """
        Remove every session key and the queued submissions of ``match_id``.

        Queue entries of other matches survive. All keys go in one atomic write.
        """
        if match_id is None:
            match_id = self._load_match_id()
        queue = self.store.get_json(KEY_GOAL_QUEUE, default=[])
        remaining = []
        if isinstance(queue, list):
            remaining = [item for item in queue
                         if isinstance(item, dict) and item.get("matchId") != match_id]
        updates = {}
        if remaining:
            updates[KEY_GOAL_QUEUE] = json.dumps(remaining)
        self.store.remove_many(list(SESSION_KEYS) + [KEY_GOAL_QUEUE], updates=updates)
        logger.info("Cleared local session state for match %s", match_id)

    # ------------------------------------------------------------------
    # Per-key writes
    # ------------------------------------------------------------------
    def save_ticker(self, start_ts: float, black_score: int, orange_score: int) -> None:
        self.store.set_json(KEY_TICKER, {
            "startTime": ts_to_iso(start_ts),
            "blackScore": int(black_score),
            "orangeScore": int(orange_score),
        })

    def save_scores(self, black_score: int, orange_score: int) -> None:
        """Update the scores of the ticker snapshot, keeping its anchor."""
        ticker = self.store.get_json(KEY_TICKER)
        if not isinstance(ticker, dict) or not ticker.get("startTime"):
            return
        ticker["blackScore"] = int(black_score)
        ticker["orangeScore"] = int(orange_score)
        self.store.set_json(KEY_TICKER, ticker)

    def save_teams(self, black_roster: List[int], orange_roster: List[int]) -> None:
        self.store.set_json(KEY_TEAMS, {
            "black": unique_ids(black_roster),
            "orange": unique_ids(orange_roster),
        })

    def save_bench(self, bench: List[int]) -> None:
        self.store.set_json(KEY_BENCH, unique_ids(bench))

    def save_live_stats(self, live_stats: Dict[int, PlayerTally]) -> None:
        self.store.set_json(KEY_LIVE_STATS, {
            str(pid): tally.to_json() for pid, tally in live_stats.items()
        })

    def set_alarm_muted(self, muted: bool) -> None:
        if muted:
            self.store.set(KEY_ALARM_MUTED, "1")
        else:
            self.store.remove(KEY_ALARM_MUTED)

    def is_alarm_muted(self) -> bool:
        return self.store.get(KEY_ALARM_MUTED) == "1"

    def save_rules(self, many_present_rule: bool, present_count: Optional[int],
                   tie_decider_winner: Optional[str] = None) -> None:
        """Keep the rotation inputs that only the server would otherwise know."""
        self.store.set_json(KEY_RULES, {
            "manyPresentRule": bool(many_present_rule),
            "presentCount": present_count,
            "tieDeciderWinner": tie_decider_winner,
        })

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_match_id(self) -> Optional[int]:
        raw = self.store.get(KEY_MATCH_ID)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring corrupted match id %r", raw)
            return None

    def _load_id_list(self, key: str) -> List[int]:
        raw = self.store.get_json(key, default=[])
        try:
            return unique_ids(raw if isinstance(raw, list) else [])
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupted id list under %r", key)
            return []

    def _load_teams(self):
        raw = self.store.get_json(KEY_TEAMS, default={})
        if not isinstance(raw, dict):
            return [], []
        try:
            return unique_ids(raw.get("black") or []), unique_ids(raw.get("orange") or [])
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupted team snapshot")
            return [], []

    def _load_rules(self):
        raw = self.store.get_json(KEY_RULES, default={})
        if not isinstance(raw, dict):
            return False, None, None
        present_count = raw.get("presentCount")
        try:
            present_count = None if present_count is None else max(0, int(present_count))
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupted present count %r", present_count)
            present_count = None
        tie_winner = raw.get("tieDeciderWinner")
        return (bool(raw.get("manyPresentRule")), present_count,
                tie_winner if tie_winner in TEAMS else None)

    def _load_live_stats(self) -> Dict[int, PlayerTally]:
        raw = self.store.get_json(KEY_LIVE_STATS, default={})
        if not isinstance(raw, dict):
            return {}
        stats: Dict[int, PlayerTally] = {}
        for pid, data in raw.items():
            try:
                stats[int(pid)] = PlayerTally.from_json(data)
            except (TypeError, ValueError, AttributeError):
                logger.warning("Ignoring corrupted live stats for player %r", pid)
        return stats
