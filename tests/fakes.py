"""Test doubles shared by the client-side service tests."""
from typing import List, Optional

from livematch.models import GoalPayload, MatchSession, StatEvent
from livematch.services import ApiError
from livematch.ui import MatchClosedError, StreamBroker, WebAppState
from livematch.utils import SyncConfig


def _copy_match(match: MatchSession) -> MatchSession:
    return MatchSession.from_json(match.to_json())


class FakeApi:
    """
    In-process stand-in for ``MatchApiClient`` backed by the real server state.

    ``offline`` makes every call fail like a refused connection; ``errors``
    are raised one per call, in order, before the server is consulted.
    """

    base_url = "http://server.test"

    def __init__(self, state: Optional[WebAppState] = None):
        self.state = state or WebAppState(SyncConfig(), broker=StreamBroker())
        self.calls: List[str] = []
        self.errors: List[ApiError] = []
        self.offline = False

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def stream_url(self, match_id: int) -> str:
        return self.url(f"/api/matches/{match_id}/stream")

    def health(self) -> bool:
        self.calls.append("health")
        return not self.offline

    def fetch_match(self, match_id: int) -> MatchSession:
        self._enter("fetch_match")
        return _copy_match(self._server(self.state.get_match, match_id))

    def fetch_stats(self, match_id: int) -> List[StatEvent]:
        self._enter("fetch_stats")
        return self._server(self.state.events, match_id)

    def create_match(self, black_team, orange_team, *, many_present_rule=False,
                     present_count=0, black_win_streak=None, orange_win_streak=None):
        self._enter("create_match")
        return _copy_match(self._server(
            self.state.create_match, black_team, orange_team,
            many_present_rule=many_present_rule, present_count=present_count,
            black_win_streak=black_win_streak or 0, orange_win_streak=orange_win_streak or 0,
        ))

    def submit_goal(self, match_id: int, payload: GoalPayload) -> StatEvent:
        self._enter("submit_goal")
        stat, _ = self._server(self.state.record_goal, match_id, payload)
        return stat

    def remove_stat(self, stat_id: int) -> None:
        self._enter("remove_stat")
        self._server(self.state.remove_stat, stat_id)

    def submit_substitution(self, match_id, team, player_out, player_in, minute=0):
        self._enter("submit_substitution")
        return self._server(self.state.record_substitution, match_id, team,
                            player_out, player_in, minute)

    def adjust_win_streak(self, match_id, black, orange):
        self._enter("adjust_win_streak")
        return _copy_match(self._server(self.state.set_win_streaks, match_id, black, orange))

    def submit_tie_decider(self, match_id, winner):
        self._enter("submit_tie_decider")
        return _copy_match(self._server(self.state.set_tie_decider, match_id, winner))

    def finish_match(self, match_id, black_score, orange_score, participants):
        self._enter("finish_match")
        return _copy_match(self._server(self.state.finish_match, match_id,
                                        black_score, orange_score, participants))

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.offline:
            raise ApiError(f"{name}: connection refused")
        if self.errors:
            raise self.errors.pop(0)

    @staticmethod
    def _server(method, *args, **kwargs):
        try:
            return method(*args, **kwargs)
        except MatchClosedError as exc:
            raise ApiError(str(exc), status=403) from exc
        except LookupError as exc:
            raise ApiError(str(exc), status=404) from exc
        except ValueError as exc:
            raise ApiError(str(exc), status=400) from exc


class FakeSubscription:
    def __init__(self, url, scheduler, on_open, on_error, on_event):
        self.url = url
        self.scheduler = scheduler
        self.on_open = on_open
        self.on_error = on_error
        self.on_event = on_event
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def open(self) -> None:
        self._deliver(self.on_open)

    def error(self, reason="dropped") -> None:
        self._deliver(self.on_error, reason)

    def event(self, name: str, payload=None) -> None:
        self._deliver(self.on_event, name, payload if payload is not None else {})

    def _deliver(self, callback, *args) -> None:
        if not self.cancelled:
            self.scheduler.dispatch(callback, *args)


class FakeSubscriber:
    """Hands out subscriptions the test drives by hand."""

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.subscriptions: List[FakeSubscription] = []

    @property
    def last(self) -> FakeSubscription:
        return self.subscriptions[-1]

    @property
    def open_count(self) -> int:
        return sum(1 for sub in self.subscriptions if not sub.cancelled)

    def subscribe(self, url, *, on_open, on_error, on_event) -> FakeSubscription:
        subscription = FakeSubscription(url, self.scheduler, on_open, on_error, on_event)
        self.subscriptions.append(subscription)
        return subscription


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.beeps = 0
        self.fail = fail

    def beep(self) -> None:
        self.beeps += 1
        if self.fail:
            raise OSError("no audio device")
