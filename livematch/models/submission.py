"""Goal payloads and the queued submissions built from them while offline."""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..utils import TEAMS, now_ts
from ..utils.constants import MAX_GOAL_MINUTE


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


@dataclass
class GoalPayload:
    """Parameters of a goal submission."""
    team_scored: str
    scorer_id: Optional[int] = None
    assist_id: Optional[int] = None
    is_own_goal: bool = False
    goal_minute: int = 0
    idempotency_key: str = field(default_factory=new_idempotency_key)

    def __post_init__(self) -> None:
        if self.team_scored not in TEAMS:
            raise ValueError(f"Unknown team: {self.team_scored!r}")
        if not self.is_own_goal and self.scorer_id is None:
            raise ValueError("A scorer is required unless the goal is an own goal")
        self.goal_minute = min(MAX_GOAL_MINUTE, max(0, int(self.goal_minute)))

    def to_json(self) -> dict:
        data = {
            "team_scored": self.team_scored,
            "is_own_goal": self.is_own_goal,
            "goal_minute": self.goal_minute,
            "idempotency_key": self.idempotency_key,
        }
        if self.scorer_id is not None:
            data["scorer_id"] = self.scorer_id
        if self.assist_id is not None:
            data["assist_id"] = self.assist_id
        return data

    @staticmethod
    def from_json(data: dict) -> "GoalPayload":
        return GoalPayload(
            team_scored=data["team_scored"],
            scorer_id=data.get("scorer_id"),
            assist_id=data.get("assist_id"),
            is_own_goal=bool(data.get("is_own_goal", False)),
            goal_minute=int(data.get("goal_minute") or 0),
            idempotency_key=data.get("idempotency_key") or new_idempotency_key(),
        )


@dataclass
class QueuedSubmission:
    """A goal recorded while the authoritative write endpoint was unreachable."""
    match_id: int
    payload: GoalPayload
    enqueued_at: float = field(default_factory=now_ts)

    @property
    def idempotency_key(self) -> str:
        return self.payload.idempotency_key

    def to_json(self) -> dict:
        return {
            "matchId": self.match_id,
            "payload": self.payload.to_json(),
            "ts": self.enqueued_at,
        }

    @staticmethod
    def from_json(data: dict) -> "QueuedSubmission":
        return QueuedSubmission(
            match_id=int(data["matchId"]),
            payload=GoalPayload.from_json(data["payload"]),
            enqueued_at=float(data.get("ts") or 0.0),
        )
