"""
StatEvent model and the aggregates derived from the authoritative event log.

The score of a team is always the number of ``goal`` events credited to it;
cached counters are never trusted over the log.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..utils import BLACK, ORANGE, TEAMS


class EventType(str, Enum):
    GOAL = "goal"
    SUBSTITUTION = "substitution"
    TIE_DECIDER = "tie_decider"


def _opt_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class StatEvent:
    """
    Immutable entry of the append-only match log.

    ``team`` is the team credited by the event. For an own goal that is the
    team receiving the goal, while ``scorer_id`` belongs to the other side.
    """
    stat_id: int
    match_id: int
    event_type: EventType
    team: str
    scorer_id: Optional[int] = None
    assist_id: Optional[int] = None
    is_own_goal: bool = False
    minute: int = 0
    player_in_id: Optional[int] = None
    player_out_id: Optional[int] = None

    def to_json(self) -> dict:
        return {
            "stat_id": self.stat_id,
            "match_id": self.match_id,
            "event_type": self.event_type.value,
            "team_scored": self.team,
            "player_scorer_id": self.scorer_id,
            "player_assist_id": self.assist_id,
            "is_own_goal": self.is_own_goal,
            "goal_minute": self.minute,
            "player_in_id": self.player_in_id,
            "player_out_id": self.player_out_id,
        }

    @staticmethod
    def from_json(data: dict) -> "StatEvent":
        """
        Build a StatEvent from the wire shape.

        Raises:
            ValueError: If the team or event type is not recognized
            KeyError: If a required field is missing
        """
        team = data.get("team_scored") or data.get("team")
        if team not in TEAMS:
            raise ValueError(f"Unknown team: {team!r}")
        return StatEvent(
            stat_id=int(data["stat_id"]),
            match_id=int(data["match_id"]),
            event_type=EventType(data.get("event_type") or EventType.GOAL.value),
            team=team,
            scorer_id=_opt_int(data.get("player_scorer_id", data.get("scorer_id"))),
            assist_id=_opt_int(data.get("player_assist_id", data.get("assist_id"))),
            is_own_goal=bool(data.get("is_own_goal", False)),
            minute=int(data.get("goal_minute") or data.get("minute") or 0),
            player_in_id=_opt_int(data.get("player_in_id")),
            player_out_id=_opt_int(data.get("player_out_id")),
        )


@dataclass
class PlayerTally:
    """Live per-player counters derived from the event log."""
    goals: int = 0
    assists: int = 0
    own_goals: int = 0

    def to_json(self) -> dict:
        return {"goals": self.goals, "assists": self.assists, "ownGoals": self.own_goals}

    @staticmethod
    def from_json(data: dict) -> "PlayerTally":
        return PlayerTally(
            goals=int(data.get("goals") or 0),
            assists=int(data.get("assists") or 0),
            own_goals=int(data.get("ownGoals") or data.get("own_goals") or 0),
        )


def parse_events(raw: Iterable[dict]) -> List[StatEvent]:
    """Parse a list of wire events, keeping the log order."""
    return [StatEvent.from_json(item) for item in raw or []]


def score_from_events(events: Iterable[StatEvent]) -> Tuple[int, int]:
    """Return ``(black, orange)`` goals counted from the log."""
    black = orange = 0
    for ev in events:
        if ev.event_type != EventType.GOAL:
            continue
        if ev.team == BLACK:
            black += 1
        elif ev.team == ORANGE:
            orange += 1
    return black, orange


def tally_players(events: Iterable[StatEvent]) -> Dict[int, PlayerTally]:
    """Aggregate goals, assists and own goals per player."""
    tallies: Dict[int, PlayerTally] = {}
    for ev in events:
        if ev.event_type != EventType.GOAL:
            continue
        if ev.scorer_id is not None:
            tally = tallies.setdefault(ev.scorer_id, PlayerTally())
            if ev.is_own_goal:
                tally.own_goals += 1
            else:
                tally.goals += 1
        if ev.assist_id is not None:
            tallies.setdefault(ev.assist_id, PlayerTally()).assists += 1
    return tallies
