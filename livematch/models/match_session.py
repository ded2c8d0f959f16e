"""
MatchSession model for the Live Match Sync application.

This module contains the MatchSession dataclass which represents the
authoritative record of one in-progress or finished match, including
rosters, scores, win streaks and JSON persistence methods.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from ..utils import BLACK, ORANGE, now_ts


class MatchStatus(str, Enum):
    """Lifecycle status of a match."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


def unique_ids(values: Optional[Iterable[int]]) -> List[int]:
    """Return player ids as ints, order-preserving and de-duplicated."""
    seen = set()
    result: List[int] = []
    for value in values or []:
        pid = int(value)
        if pid not in seen:
            seen.add(pid)
            result.append(pid)
    return result


@dataclass
class MatchSession:
    """
    Represents one match session.

    Attributes:
        match_id: Server-assigned identifier
        status: Lifecycle status (scheduled, in_progress, finished)
        start_ts: Anchor start time (epoch seconds) used by every timer
        black_score: Goals credited to the black team
        orange_score: Goals credited to the orange team
        black_win_streak: Consecutive-win counter of the black team
        orange_win_streak: Consecutive-win counter of the orange team
        black_roster: Player ids on the black team
        orange_roster: Player ids on the orange team
        many_present_rule: Whether the "many present" override is enabled
        present_count: Number of players present for the session
        tie_decider_winner: Winner of the tie-break procedure on a draw
        winner_team: black, orange or draw once finished
        end_ts: Epoch timestamp of the finish
    """
    match_id: int
    status: MatchStatus = MatchStatus.IN_PROGRESS
    start_ts: Optional[float] = None
    black_score: int = 0
    orange_score: int = 0
    black_win_streak: int = 0
    orange_win_streak: int = 0
    black_roster: List[int] = field(default_factory=list)
    orange_roster: List[int] = field(default_factory=list)
    many_present_rule: bool = False
    present_count: int = 0
    tie_decider_winner: Optional[str] = None
    winner_team: Optional[str] = None
    end_ts: Optional[float] = None

    def __post_init__(self) -> None:
        self.status = MatchStatus(self.status)
        self.black_roster = unique_ids(self.black_roster)
        self.orange_roster = unique_ids(self.orange_roster)
        overlap = set(self.black_roster) & set(self.orange_roster)
        if overlap:
            raise ValueError(f"Players cannot be on both teams: {sorted(overlap)}")
        for name in ("black_score", "orange_score", "black_win_streak",
                     "orange_win_streak", "present_count"):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def in_progress(self) -> bool:
        return self.status == MatchStatus.IN_PROGRESS

    @property
    def participants(self) -> List[int]:
        """Every player currently assigned to either team."""
        return self.black_roster + self.orange_roster

    def roster(self, team: str) -> List[int]:
        if team == BLACK:
            return self.black_roster
        if team == ORANGE:
            return self.orange_roster
        raise ValueError(f"Unknown team: {team!r}")

    def team_of(self, player_id: int) -> Optional[str]:
        if player_id in self.black_roster:
            return BLACK
        if player_id in self.orange_roster:
            return ORANGE
        return None

    def set_scores(self, black: int, orange: int) -> None:
        self.black_score = max(0, int(black))
        self.orange_score = max(0, int(orange))

    def substitute(self, team: str, player_out: int, player_in: int) -> None:
        """
        Swap one player of ``team`` for one who is not on either team.

        Raises:
            ValueError: If the swap would break roster disjointness
        """
        roster = self.roster(team)
        if player_out not in roster:
            raise ValueError(f"Player {player_out} is not on the {team} team")
        if self.team_of(player_in) is not None:
            raise ValueError(f"Player {player_in} is already playing")
        roster[roster.index(player_out)] = player_in

    def mark_finished(self, black_score: int, orange_score: int,
                      winner_team: str, ts: Optional[float] = None) -> None:
        """
        Transition to finished. This happens exactly once.

        Raises:
            ValueError: If the match already finished
        """
        if self.status == MatchStatus.FINISHED:
            raise ValueError(f"Match {self.match_id} already finished")
        self.set_scores(black_score, orange_score)
        self.winner_team = winner_team
        self.status = MatchStatus.FINISHED
        self.end_ts = now_ts() if ts is None else ts

    def to_json(self) -> dict:
        """
        Convert MatchSession to JSON-serializable dictionary.

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        return {
            "match_id": self.match_id,
            "status": self.status.value,
            "start_ts": self.start_ts,
            "team_black_score": self.black_score,
            "team_orange_score": self.orange_score,
            "team_black_win_streak": self.black_win_streak,
            "team_orange_win_streak": self.orange_win_streak,
            "black_team": list(self.black_roster),
            "orange_team": list(self.orange_roster),
            "many_present_rule": self.many_present_rule,
            "present_count": self.present_count,
            "tie_decider_winner": self.tie_decider_winner,
            "winner_team": self.winner_team,
            "end_ts": self.end_ts,
        }

    @staticmethod
    def from_json(data: dict) -> "MatchSession":
        """
        Create MatchSession from JSON dictionary.

        Args:
            data: Dictionary with match data (as produced by ``to_json``)

        Returns:
            New MatchSession instance
        """
        return MatchSession(
            match_id=int(data["match_id"]),
            status=data.get("status", MatchStatus.IN_PROGRESS.value),
            start_ts=data.get("start_ts"),
            black_score=int(data.get("team_black_score") or 0),
            orange_score=int(data.get("team_orange_score") or 0),
            black_win_streak=int(data.get("team_black_win_streak") or 0),
            orange_win_streak=int(data.get("team_orange_win_streak") or 0),
            black_roster=data.get("black_team") or [],
            orange_roster=data.get("orange_team") or [],
            many_present_rule=bool(data.get("many_present_rule", False)),
            present_count=int(data.get("present_count") or 0),
            tie_decider_winner=data.get("tie_decider_winner"),
            winner_team=data.get("winner_team"),
            end_ts=data.get("end_ts"),
        )
