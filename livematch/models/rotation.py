"""Dataclasses describing the input and result of a rotation decision."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..utils import BLACK, ORANGE, TEAMS
from .match_session import unique_ids


class RotationMode(str, Enum):
    KEEP_WINNER = "keep_winner"
    BOTH_LEAVE = "both_leave"
    MANUAL = "manual"


def other_team(team: str) -> str:
    return ORANGE if team == BLACK else BLACK


@dataclass
class RotationInput:
    """Already-validated facts about a finished match."""
    black_score: int
    orange_score: int
    black_roster: List[int]
    orange_roster: List[int]
    bench: List[int] = field(default_factory=list)
    black_streak: int = 0
    orange_streak: int = 0
    present_count: int = 0
    many_present_rule: bool = False
    tie_winner: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("black_score", "orange_score", "black_streak",
                     "orange_streak", "present_count"):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.tie_winner is not None and self.tie_winner not in TEAMS:
            raise ValueError(f"Unknown tie-break winner: {self.tie_winner!r}")
        self.black_roster = unique_ids(self.black_roster)
        self.orange_roster = unique_ids(self.orange_roster)
        self.bench = unique_ids(self.bench)
        if set(self.black_roster) & set(self.orange_roster):
            raise ValueError("Rosters must be disjoint")

    @property
    def is_draw(self) -> bool:
        return self.black_score == self.orange_score

    def roster(self, team: str) -> List[int]:
        return self.black_roster if team == BLACK else self.orange_roster

    def streak(self, team: str) -> int:
        return self.black_streak if team == BLACK else self.orange_streak


@dataclass
class RotationOutcome:
    """
    Decision about which team(s) continue into the next session.

    ``next_black`` / ``next_orange`` pre-populate the next selection; an empty
    list is an open slot to fill manually.
    """
    mode: RotationMode
    staying_team: Optional[str] = None
    leaving_team: Optional[str] = None
    bench_candidates: List[int] = field(default_factory=list)
    next_black_streak: int = 0
    next_orange_streak: int = 0
    next_black: List[int] = field(default_factory=list)
    next_orange: List[int] = field(default_factory=list)
    manual_reselection: bool = False
    tie_break_pending: bool = False

    @property
    def open_slot(self) -> Optional[str]:
        """The team slot waiting for a challenger, if exactly one is open."""
        if self.mode != RotationMode.KEEP_WINNER or self.staying_team is None:
            return None
        return other_team(self.staying_team)

    def to_json(self) -> dict:
        return {
            "mode": self.mode.value,
            "staying_team": self.staying_team,
            "leaving_team": self.leaving_team,
            "bench_candidates": list(self.bench_candidates),
            "next_black_streak": self.next_black_streak,
            "next_orange_streak": self.next_orange_streak,
            "next_black": list(self.next_black),
            "next_orange": list(self.next_orange),
            "manual_reselection": self.manual_reselection,
            "tie_break_pending": self.tie_break_pending,
        }
