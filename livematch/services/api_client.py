"""
REST client for the authoritative match server.

Every failed call raises ``ApiError``; callers decide whether the failure is
transient (retry later) or a definitive rejection (drop the write).
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from ..models import GoalPayload, MatchSession, StatEvent, parse_events, unique_ids
from ..utils.constants import DEFAULT_API_URL, REJECTED_STATUS_CODES, REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (408, 425, 429)


class ApiError(Exception):
    """Failure of a call to the authoritative server."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def transient(self) -> bool:
        """Connection errors, timeouts, throttling and server errors are worth retrying."""
        return self.status is None or self.status >= 500 or self.status in TRANSIENT_STATUS_CODES

    @property
    def definitive(self) -> bool:
        """The match no longer accepts this write; retrying will never help."""
        return self.status in REJECTED_STATUS_CODES


class MatchApiClient:
    """Thin wrapper over the server's JSON routes."""

    def __init__(self, base_url: str = DEFAULT_API_URL, token: Optional[str] = None,
                 timeout: float = REQUEST_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def stream_url(self, match_id: int) -> str:
        return self.url(f"/api/matches/{match_id}/stream")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def fetch_match(self, match_id: int) -> MatchSession:
        path = f"/api/matches/{match_id}"
        return _parse(path, _match, self._request("GET", path))

    def fetch_stats(self, match_id: int) -> List[StatEvent]:
        path = f"/api/matches/{match_id}/stats"
        return _parse(path, lambda d: parse_events(d.get("stats") or []), self._request("GET", path))

    def health(self) -> bool:
        try:
            self._request("GET", "/api/health")
        except ApiError:
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_match(self, black_team: Iterable[int], orange_team: Iterable[int], *,
                     many_present_rule: bool = False, present_count: int = 0,
                     black_win_streak: Optional[int] = None,
                     orange_win_streak: Optional[int] = None) -> MatchSession:
        body: Dict[str, Any] = {
            "black_team": unique_ids(black_team),
            "orange_team": unique_ids(orange_team),
            "many_present_rule": bool(many_present_rule),
            "present_count": int(present_count),
        }
        if black_win_streak is not None:
            body["black_win_streak"] = int(black_win_streak)
        if orange_win_streak is not None:
            body["orange_win_streak"] = int(orange_win_streak)
        return _parse("/api/matches", _match, self._request("POST", "/api/matches", json=body))

    def submit_goal(self, match_id: int, payload: GoalPayload) -> StatEvent:
        data = self._request(
            "POST", f"/api/matches/{match_id}/stats-goal",
            json=payload.to_json(),
            headers={"Idempotency-Key": payload.idempotency_key},
        )
        return _parse("stat", _stat, data)

    def remove_stat(self, stat_id: int) -> None:
        self._request("DELETE", f"/api/matches/stats/{stat_id}")

    def submit_substitution(self, match_id: int, team: str, player_out: int,
                            player_in: int, minute: int = 0) -> StatEvent:
        data = self._request("POST", f"/api/matches/{match_id}/substitution", json={
            "team": team,
            "player_out_id": int(player_out),
            "player_in_id": int(player_in),
            "minute": int(minute),
        })
        return _parse("stat", _stat, data)

    def adjust_win_streak(self, match_id: int, black: int, orange: int) -> MatchSession:
        data = self._request("POST", f"/api/matches/{match_id}/win-streak", json={
            "black_win_streak": int(black),
            "orange_win_streak": int(orange),
        })
        return _parse("match", _match, data)

    def submit_tie_decider(self, match_id: int, winner: str) -> MatchSession:
        data = self._request("POST", f"/api/matches/{match_id}/tie-decider",
                             json={"winner": winner})
        return _parse("match", _match, data)

    def finish_match(self, match_id: int, black_score: int, orange_score: int,
                     participants: Iterable[int]) -> MatchSession:
        data = self._request("POST", f"/api/matches/{match_id}/finish", json={
            "black_score": int(black_score),
            "orange_score": int(orange_score),
            "participants": unique_ids(participants),
        })
        return _parse("match", _match, data)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.session.request(method, self.url(path), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            message = response.reason or "request failed"
            try:
                message = response.json().get("error") or message
            except (ValueError, AttributeError):
                pass
            raise ApiError(f"{method} {path}: {message}", status=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"{method} {path}: invalid JSON response",
                           status=response.status_code) from exc


def _match(data: dict) -> MatchSession:
    return MatchSession.from_json(data["match"])


def _stat(data: dict) -> StatEvent:
    return StatEvent.from_json(data["stat"])


def _parse(what: str, parser, data: dict):
    try:
        return parser(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ApiError(f"Malformed {what} response: {exc!r}") from exc
