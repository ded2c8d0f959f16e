"""Connection state of an observing client."""

from dataclasses import asdict, dataclass
from enum import Enum


class ConnectionState(str, Enum):
    ONLINE = "online"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"


@dataclass
class ConnectionStats:
    """Counters of stream lifecycle events, reported in the sync logs."""
    opens: int = 0
    errors: int = 0
    reconnects: int = 0
    pings: int = 0
    inits: int = 0
    goals: int = 0
    finishes: int = 0
    polls: int = 0

    def to_json(self) -> dict:
        return asdict(self)
