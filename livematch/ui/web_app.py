"""
Web application module for the Live Match Sync application.

This module contains the Flask server that holds the authoritative match
state: matches, their append-only event logs and win-streak counters. It
provides the JSON API endpoints consumed by ``MatchApiClient`` and the
server-sent event streams followed by ``LiveSyncChannel``.
"""
import itertools
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from ..models import (
    EventType, GoalPayload, MatchSession, MatchStatus, StatEvent, score_from_events, unique_ids,
)
from ..services.win_streak import next_streak, winner_from_score
from ..utils import TEAMS, SyncConfig, now_ms, now_ts
from ..utils.constants import DEFAULT_HOST, DEFAULT_PORT
from .stream_broker import LIVE_CHANNEL, StreamBroker

logger = logging.getLogger(__name__)


class MatchClosedError(Exception):
    """Write to a match that is no longer in progress."""


class WebAppState:
    """
    In-memory authoritative state of the server.

    Every mutation holds the state lock, so the event log of a match is
    totally ordered by ``stat_id``. Goal writes are idempotent per
    ``(match_id, idempotency_key)``.
    """

    def __init__(self, config: Optional[SyncConfig] = None,
                 broker: Optional[StreamBroker] = None):
        self.config = config or SyncConfig.from_env()
        self.broker = broker or StreamBroker()
        self._lock = threading.RLock()
        self._matches: Dict[int, MatchSession] = {}
        self._events: Dict[int, List[StatEvent]] = {}
        self._participants: Dict[int, List[int]] = {}
        self._goal_keys: Dict[Tuple[int, str], StatEvent] = {}
        self._match_ids = itertools.count(1)
        self._stat_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_match(self, match_id: int) -> MatchSession:
        """
        Raises:
            LookupError: If the match does not exist
        """
        with self._lock:
            match = self._matches.get(match_id)
            if match is None:
                raise LookupError(f"Match {match_id} not found")
            return match

    def events(self, match_id: int) -> List[StatEvent]:
        with self._lock:
            self.get_match(match_id)
            return list(self._events[match_id])

    def live_match(self) -> Optional[MatchSession]:
        """Most recently created match still in progress."""
        with self._lock:
            live = [m for m in self._matches.values() if m.in_progress]
            return max(live, key=lambda m: m.match_id) if live else None

    def snapshot_event(self, match_id: int) -> dict:
        """Body of the ``init`` message sent on every (re)connect."""
        events = self.events(match_id)
        black, orange = score_from_events(events)
        return {
            "match_id": match_id,
            "stats": [ev.to_json() for ev in events],
            "blackGoals": black,
            "orangeGoals": orange,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_match(self, black_team: Iterable[int], orange_team: Iterable[int], *,
                     many_present_rule: bool = False, present_count: int = 0,
                     black_win_streak: int = 0, orange_win_streak: int = 0) -> MatchSession:
        with self._lock:
            match = MatchSession(
                match_id=next(self._match_ids),
                status=MatchStatus.IN_PROGRESS,
                start_ts=now_ts(),
                black_win_streak=black_win_streak,
                orange_win_streak=orange_win_streak,
                black_roster=unique_ids(black_team),
                orange_roster=unique_ids(orange_team),
                many_present_rule=many_present_rule,
                present_count=present_count,
            )
            self._matches[match.match_id] = match
            self._events[match.match_id] = []
        logger.info("Match %s started", match.match_id)
        self.broker.publish(LIVE_CHANNEL, "init", self.snapshot_event(match.match_id))
        return match

    def record_goal(self, match_id: int, payload: GoalPayload) -> Tuple[StatEvent, bool]:
        """
        Append a goal, or return the stat already stored under the same key.

        Returns:
            ``(stat, created)``

        Raises:
            LookupError: If the match does not exist
            MatchClosedError: If the match is not in progress
            ValueError: If a player is not on the credited team
        """
        with self._lock:
            match = self._open_match(match_id)
            existing = self._goal_keys.get((match_id, payload.idempotency_key))
            if existing is not None:
                logger.info("Duplicate goal %s for match %s", payload.idempotency_key, match_id)
                return existing, False
            if not payload.is_own_goal:
                roster = match.roster(payload.team_scored)
                for pid in (payload.scorer_id, payload.assist_id):
                    if pid is not None and pid not in roster:
                        raise ValueError(f"Player {pid} is not on the {payload.team_scored} team")
            stat = StatEvent(
                stat_id=next(self._stat_ids),
                match_id=match_id,
                event_type=EventType.GOAL,
                team=payload.team_scored,
                scorer_id=payload.scorer_id,
                assist_id=payload.assist_id,
                is_own_goal=payload.is_own_goal,
                minute=payload.goal_minute,
            )
            self._events[match_id].append(stat)
            self._goal_keys[(match_id, payload.idempotency_key)] = stat
            match.set_scores(*score_from_events(self._events[match_id]))
        self._broadcast_goal(match_id, stat)
        return stat, True

    def remove_stat(self, stat_id: int) -> StatEvent:
        """
        Delete one entry of a live match log (score correction).

        Raises:
            LookupError: If no match holds the stat
            MatchClosedError: If its match is not in progress
        """
        with self._lock:
            stat = self._find_stat(stat_id)
            events = self._events[stat.match_id]
            self._open_match(stat.match_id)
            events.remove(stat)
            self._matches[stat.match_id].set_scores(*score_from_events(events))
            self._goal_keys = {key: value for key, value in self._goal_keys.items()
                               if value is not stat}
        logger.info("Removed stat %s of match %s", stat_id, stat.match_id)
        self._broadcast_goal(stat.match_id, stat)
        return stat

    def record_substitution(self, match_id: int, team: str, player_out: int,
                            player_in: int, minute: int = 0) -> StatEvent:
        with self._lock:
            match = self._open_match(match_id)
            match.substitute(team, player_out, player_in)
            stat = StatEvent(
                stat_id=next(self._stat_ids),
                match_id=match_id,
                event_type=EventType.SUBSTITUTION,
                team=team,
                minute=max(0, int(minute)),
                player_in_id=player_in,
                player_out_id=player_out,
            )
            self._events[match_id].append(stat)
        return stat

    def set_win_streaks(self, match_id: int, black: int, orange: int) -> MatchSession:
        if black < 0 or orange < 0:
            raise ValueError("Win streaks cannot be negative")
        with self._lock:
            match = self._open_match(match_id)
            match.black_win_streak = black
            match.orange_win_streak = orange
        logger.info("Win streaks of match %s set to %d/%d", match_id, black, orange)
        return match

    def set_tie_decider(self, match_id: int, winner: str) -> MatchSession:
        if winner not in TEAMS:
            raise ValueError(f"Unknown team: {winner!r}")
        with self._lock:
            match = self._open_match(match_id)
            match.tie_decider_winner = winner
            self._events[match_id].append(StatEvent(
                stat_id=next(self._stat_ids),
                match_id=match_id,
                event_type=EventType.TIE_DECIDER,
                team=winner,
            ))
        return match

    def finish_match(self, match_id: int, black_score: int, orange_score: int,
                     participants: Iterable[int] = ()) -> MatchSession:
        """
        Close the match and move its win streaks forward.

        Raises:
            LookupError: If the match does not exist
            MatchClosedError: If the match already finished
        """
        if black_score < 0 or orange_score < 0:
            raise ValueError("Scores cannot be negative")
        with self._lock:
            match = self._open_match(match_id)
            winner = winner_from_score(black_score, orange_score)
            streaks = next_streak(
                many_present_rule=match.many_present_rule,
                winner=winner,
                tie_winner=match.tie_decider_winner,
                black_streak=match.black_win_streak,
                orange_streak=match.orange_win_streak,
                threshold=self.config.win_streak_threshold,
            )
            match.mark_finished(black_score, orange_score, winner)
            match.black_win_streak, match.orange_win_streak = streaks
            self._participants[match_id] = unique_ids(list(participants) or match.participants)
        logger.info("Match %s finished %d-%d (%s)", match_id, black_score, orange_score, winner)

        finish = {"match_id": match_id, "blackScore": black_score, "orangeScore": orange_score}
        self.broker.publish(match_id, "finish", finish)
        self.broker.publish(LIVE_CHANNEL, "finish", finish)
        live = self.live_match()
        if live is None:
            self.broker.publish(LIVE_CHANNEL, "inactive", {})
        else:
            self.broker.publish(LIVE_CHANNEL, "init", self.snapshot_event(live.match_id))
        return match

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _open_match(self, match_id: int) -> MatchSession:
        match = self.get_match(match_id)
        if not match.in_progress:
            raise MatchClosedError(f"Match {match_id} is not in progress")
        return match

    def _find_stat(self, stat_id: int) -> StatEvent:
        for events in self._events.values():
            for stat in events:
                if stat.stat_id == stat_id:
                    return stat
        raise LookupError(f"Stat {stat_id} not found")

    def _broadcast_goal(self, match_id: int, stat: StatEvent) -> None:
        black, orange = score_from_events(self.events(match_id))
        body = {"stat": stat.to_json(), "blackGoals": black, "orangeGoals": orange}
        self.broker.publish(match_id, "goal", body)
        self.broker.publish(LIVE_CHANNEL, "goal", body)


def create_app(state: Optional[WebAppState] = None) -> Flask:
    """
    Create and configure the Flask application with API endpoints.

    Args:
        state: Server state; a fresh one is created when omitted

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)
    app_state = state or WebAppState()
    app.config["LIVEMATCH_STATE"] = app_state

    def _body() -> dict:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data

    def _stream(channel, initial) -> Response:
        return Response(
            app_state.broker.stream(channel, initial),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.errorhandler(LookupError)
    def not_found(e):
        return jsonify({"success": False, "error": str(e)}), 404

    @app.errorhandler(MatchClosedError)
    def match_closed(e):
        return jsonify({"success": False, "error": str(e)}), 403

    @app.errorhandler(KeyError)
    def missing_field(e):
        return jsonify({"success": False, "error": f"Missing field: {e}"}), 400

    @app.errorhandler(ValueError)
    def invalid_request(e):
        return jsonify({"success": False, "error": str(e)}), 400

    @app.errorhandler(TypeError)
    def invalid_type(e):
        return jsonify({"success": False, "error": f"Invalid value: {e}"}), 400

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": str(e)}), 500

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"success": True, "status": "ok", "ts": now_ms()})

    @app.route("/api/matches", methods=["POST"])
    def create_match():
        """Start a match with the two line-ups."""
        data = _body()
        black = data.get("black_team") or []
        orange = data.get("orange_team") or []
        if not black or not orange:
            return jsonify({"success": False, "error": "Both teams need players"}), 400
        match = app_state.create_match(
            black, orange,
            many_present_rule=bool(data.get("many_present_rule", False)),
            present_count=int(data.get("present_count") or 0),
            black_win_streak=int(data.get("black_win_streak") or 0),
            orange_win_streak=int(data.get("orange_win_streak") or 0),
        )
        return jsonify({"success": True, "match": match.to_json()}), 201

    @app.route("/api/matches/<int:match_id>", methods=["GET"])
    def get_match(match_id: int):
        return jsonify({"success": True, "match": app_state.get_match(match_id).to_json()})

    @app.route("/api/matches/<int:match_id>/stats", methods=["GET"])
    def get_stats(match_id: int):
        events = app_state.events(match_id)
        black, orange = score_from_events(events)
        return jsonify({
            "success": True,
            "stats": [ev.to_json() for ev in events],
            "blackGoals": black,
            "orangeGoals": orange,
        })

    @app.route("/api/matches/<int:match_id>/stats-goal", methods=["POST"])
    def add_goal(match_id: int):
        """Append a goal; a replay with a known idempotency key returns the stored stat."""
        data = dict(_body())
        header_key = request.headers.get("Idempotency-Key")
        if header_key:
            data["idempotency_key"] = header_key
        if "team_scored" not in data:
            return jsonify({"success": False, "error": "team_scored is required"}), 400
        payload = GoalPayload.from_json(data)
        stat, created = app_state.record_goal(match_id, payload)
        status = 201 if created else 200
        return jsonify({"success": True, "stat": stat.to_json(), "duplicate": not created}), status

    @app.route("/api/matches/stats/<int:stat_id>", methods=["DELETE"])
    def delete_stat(stat_id: int):
        stat = app_state.remove_stat(stat_id)
        return jsonify({"success": True, "stat": stat.to_json()})

    @app.route("/api/matches/<int:match_id>/substitution", methods=["POST"])
    def substitution(match_id: int):
        data = _body()
        team = data.get("team")
        if team not in TEAMS:
            return jsonify({"success": False, "error": f"Unknown team: {team!r}"}), 400
        stat = app_state.record_substitution(
            match_id, team,
            int(data["player_out_id"]), int(data["player_in_id"]),
            minute=int(data.get("minute") or 0),
        )
        return jsonify({"success": True, "stat": stat.to_json()}), 201

    @app.route("/api/matches/<int:match_id>/win-streak", methods=["POST"])
    def win_streak(match_id: int):
        data = _body()
        match = app_state.set_win_streaks(
            match_id,
            int(data.get("black_win_streak") or 0),
            int(data.get("orange_win_streak") or 0),
        )
        return jsonify({"success": True, "match": match.to_json()})

    @app.route("/api/matches/<int:match_id>/tie-decider", methods=["POST"])
    def tie_decider(match_id: int):
        match = app_state.set_tie_decider(match_id, _body().get("winner"))
        return jsonify({"success": True, "match": match.to_json()})

    @app.route("/api/matches/<int:match_id>/finish", methods=["POST"])
    def finish(match_id: int):
        data = _body()
        if "black_score" not in data or "orange_score" not in data:
            return jsonify({"success": False, "error": "Both scores are required"}), 400
        match = app_state.finish_match(
            match_id,
            int(data["black_score"]),
            int(data["orange_score"]),
            data.get("participants") or [],
        )
        return jsonify({"success": True, "match": match.to_json()})

    @app.route("/api/matches/<int:match_id>/stream", methods=["GET"])
    def match_stream(match_id: int):
        app_state.get_match(match_id)
        return _stream(match_id, lambda: [("init", app_state.snapshot_event(match_id))])

    @app.route("/api/live/stream", methods=["GET"])
    def live_stream():
        def initial():
            live = app_state.live_match()
            if live is None:
                return [("inactive", {})]
            return [("init", app_state.snapshot_event(live.match_id))]

        return _stream(LIVE_CHANNEL, initial)

    return app


def run_web_app(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                config: Optional[SyncConfig] = None) -> None:
    """
    Run the web application.

    Args:
        host: Host address to bind to (default: localhost only)
        port: Port number to listen on
        config: Rule configuration (win-streak threshold)
    """
    app = create_app(WebAppState(config))
    logger.info("Serving live match API on http://%s:%s", host, port)
    # Streams hold a worker each, so the development server must be threaded
    app.run(host=host, port=port, debug=False, threaded=True)


if __name__ == "__main__":
    run_web_app()
