"""
Tests for the live match session controller.

The controller is built by ``ServiceFactory`` around a virtual-clock
scheduler, an in-memory store and the in-process server behind ``FakeApi``.
"""
import unittest
from unittest.mock import patch

from livematch.models import MatchStatus, RotationMode, score_from_events
from livematch.services import (
    ApiError, ConnectivityMonitor, ManualScheduler, MemoryStore, ServiceFactory,
    SessionSnapshotStore, SubmitResult,
)
from livematch.utils import SyncConfig
from livematch.utils.constants import KEY_GOAL_QUEUE

from fakes import FakeApi, FakeSubscriber, RecordingSink


class LiveMatchSessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.scheduler = ManualScheduler(start=1000.0)
        for target in ("livematch.services.timer_service.now_ts", "livematch.ui.web_app.now_ts"):
            patcher = patch(target, side_effect=lambda: self.scheduler.now())
            patcher.start()
            self.addCleanup(patcher.stop)

        self.api = FakeApi()
        self.store = MemoryStore()
        self.connectivity = ConnectivityMonitor()
        self.subscriber = FakeSubscriber(self.scheduler)
        self.notices = []
        self.rotations = []
        self.session = self.make_session()

    def make_session(self, api=None):
        factory = ServiceFactory(
            SyncConfig(),
            scheduler=self.scheduler,
            store=self.store,
            api=api or self.api,
            subscriber=self.subscriber,
            connectivity=self.connectivity,
        )
        return factory.create_live_session(
            on_notice=self.notices.append,
            on_rotation=self.rotations.append,
            sink=RecordingSink(),
        )

    def start(self, **kwargs):
        match = self.session.start([1, 2], [3, 4], [5, 6], **kwargs)
        stream = self.subscriber.last
        stream.open()
        stream.event("init", self.api.state.snapshot_event(match.match_id))
        return match


class StartAndRecordTests(LiveMatchSessionTestCase):
    def test_start_creates_match_and_follows_it(self) -> None:
        match = self.start()

        self.assertTrue(self.session.active)
        self.assertEqual(self.subscriber.last.url, self.api.stream_url(match.match_id))
        self.assertEqual(self.session.bench, [5, 6])
        self.assertEqual(self.api.state.get_match(match.match_id).present_count, 6)

        snapshot = self.session.snapshots.load()
        self.assertEqual(snapshot.match_id, match.match_id)
        self.assertEqual(snapshot.start_ts, 1000.0)
        self.assertEqual(snapshot.bench, [5, 6])

    def test_start_rejects_overlapping_teams(self) -> None:
        with self.assertRaises(ValueError):
            self.session.start([1, 2], [2, 3])
        self.assertEqual(self.api.calls, [])

    def test_start_propagates_server_failure(self) -> None:
        self.api.offline = True
        with self.assertRaises(ApiError):
            self.session.start([1], [2])
        self.assertFalse(self.session.active)

    def test_goal_recorded_online(self) -> None:
        self.start()
        self.scheduler.advance(125)

        self.assertEqual(self.session.record_goal("black", 1, assist_id=2), SubmitResult.RECORDED)

        self.assertEqual(self.session.match.black_score, 1)
        self.assertEqual(self.session.live_stats[1].goals, 1)
        self.assertEqual(self.session.live_stats[2].assists, 1)
        self.assertEqual(self.session.events[0].minute, 2)
        self.assertEqual(self.session.snapshots.load().black_score, 1)

    def test_goal_queued_offline_then_drained_on_reconnect(self) -> None:
        match = self.start()
        self.session.notify_online(False)

        self.assertEqual(self.session.record_goal("orange", 3), SubmitResult.QUEUED)
        self.assertEqual(self.session.match.orange_score, 1)
        self.assertNotIn("submit_goal", self.api.calls)
        self.assertIn("Offline", self.notices[-1])
        self.assertEqual(len(self.session.queue.pending(match.match_id)), 1)

        self.session.notify_online(True)

        self.assertEqual(self.session.queue.pending(), [])
        self.assertIsNone(self.store.get(KEY_GOAL_QUEUE))
        self.assertEqual(self.api.state.get_match(match.match_id).orange_score, 1)
        self.assertEqual(self.session.match.orange_score, 1)

    def test_transient_failure_queues_and_periodic_drain_sends(self) -> None:
        match = self.start()
        self.api.errors.append(ApiError("timed out"))

        self.assertEqual(self.session.record_goal("black", 2), SubmitResult.QUEUED)
        self.assertEqual(self.api.state.get_match(match.match_id).black_score, 0)

        self.scheduler.advance(5)
        self.assertEqual(self.api.state.get_match(match.match_id).black_score, 1)
        self.assertEqual(self.session.match.black_score, 1)

    def test_connection_loss_and_recovery_are_detected(self) -> None:
        match = self.start()
        self.api.offline = True
        self.assertEqual(self.session.record_goal("black", 1), SubmitResult.QUEUED)
        self.assertFalse(self.connectivity.online)

        self.scheduler.advance(5)
        self.assertFalse(self.connectivity.online)
        self.assertEqual(self.api.calls.count("submit_goal"), 1)
        self.assertEqual(len(self.session.queue.pending()), 1)

        self.api.offline = False
        self.scheduler.advance(5)
        self.assertTrue(self.connectivity.online)
        self.assertEqual(self.session.queue.pending(), [])
        self.assertEqual(self.api.state.get_match(match.match_id).black_score, 1)

    def test_rejected_goal_is_not_queued(self) -> None:
        self.start()
        self.assertEqual(self.session.record_goal("black", 3), SubmitResult.REJECTED)
        self.assertEqual(self.session.record_goal("purple", 1), SubmitResult.REJECTED)
        self.assertEqual(self.session.queue.pending(), [])
        self.assertEqual(len(self.notices), 2)

    def test_actions_without_match_are_rejected(self) -> None:
        self.assertEqual(self.session.record_goal("black", 1), SubmitResult.REJECTED)
        self.assertEqual(self.session.adjust_streak(1, 0), SubmitResult.REJECTED)
        self.assertIsNone(self.session.finish())

    def test_substitution_updates_roster_and_bench(self) -> None:
        self.start()
        self.assertEqual(self.session.record_substitution("black", 1, 5), SubmitResult.RECORDED)
        self.assertEqual(self.session.match.black_roster, [5, 2])
        self.assertEqual(self.session.bench, [6, 1])
        self.assertEqual(self.session.snapshots.load().black_roster, [5, 2])

        self.assertEqual(self.session.record_substitution("orange", 3, 2), SubmitResult.REJECTED)

    def test_substitution_is_never_queued(self) -> None:
        self.start()
        self.api.offline = True
        self.assertEqual(self.session.record_substitution("black", 1, 5), SubmitResult.REJECTED)
        self.assertEqual(self.session.queue.pending(), [])
        self.assertEqual(self.session.match.black_roster, [1, 2])

    def test_mute_survives_new_session(self) -> None:
        self.start()
        self.assertTrue(self.session.toggle_mute())
        self.assertTrue(self.make_session().timer.muted)


class FinishAndRotationTests(LiveMatchSessionTestCase):
    def test_local_finish_decides_rotation_and_tears_down(self) -> None:
        self.start()
        self.session.record_goal("black", 1)
        self.session.record_goal("black", 2)
        self.session.record_goal("orange", 3)

        outcome = self.session.finish()

        self.assertEqual(outcome.mode, RotationMode.KEEP_WINNER)
        self.assertEqual(outcome.staying_team, "black")
        self.assertEqual(outcome.next_black, [1, 2])
        self.assertEqual(outcome.bench_candidates, [5, 6, 3, 4])
        self.assertEqual(self.rotations, [outcome])
        self.assertEqual(self.session.match.status, MatchStatus.FINISHED)
        self.assertEqual(self.session.bench, [5, 6, 3, 4])

        self.assertFalse(self.session.active)
        self.assertEqual(self.scheduler.active_handles, 0)
        self.assertEqual(self.subscriber.open_count, 0)
        self.assertIsNone(self.session.snapshots.load())

    def test_adjusted_streak_feeds_rotation(self) -> None:
        self.start()
        self.assertEqual(self.session.adjust_streak(2, 1), SubmitResult.RECORDED)
        self.session.record_goal("black", 1)

        outcome = self.session.finish()

        self.assertEqual(outcome.mode, RotationMode.BOTH_LEAVE)
        self.assertEqual((outcome.next_black_streak, outcome.next_orange_streak), (0, 0))

    def test_remote_finish_finalizes_then_closes_channel(self) -> None:
        match = self.start()
        self.api.state.finish_match(match.match_id, 0, 1)
        self.subscriber.last.event("finish", {
            "match_id": match.match_id, "blackScore": 0, "orangeScore": 1})

        self.assertEqual(len(self.rotations), 1)
        self.assertEqual(self.rotations[0].staying_team, "orange")
        self.assertFalse(self.session.active)
        self.assertTrue(self.session.channel.active)

        self.scheduler.advance(2)
        self.assertFalse(self.session.channel.active)
        self.assertEqual(self.scheduler.active_handles, 0)
        self.assertEqual(self.session.match.orange_win_streak, 1)

    def test_finish_waits_until_queued_goals_reach_the_server(self) -> None:
        match = self.start()
        self.session.notify_online(False)
        self.session.record_goal("black", 1)
        self.api.errors.append(ApiError("bad gateway", status=502))
        self.session.notify_online(True)
        self.api.errors.append(ApiError("bad gateway", status=502))

        self.assertIsNone(self.session.finish())

        self.assertTrue(self.session.active)
        self.assertIn("still waiting", self.notices[-1])
        self.assertTrue(self.api.state.get_match(match.match_id).in_progress)
        self.assertEqual(len(self.session.queue.pending(match.match_id)), 1)

        self.scheduler.advance(5)
        self.assertEqual(self.session.queue.pending(), [])
        outcome = self.session.finish()

        server = self.api.state.get_match(match.match_id)
        self.assertEqual((server.black_score, server.orange_score), (1, 0))
        self.assertEqual(score_from_events(self.api.state.events(match.match_id)), (1, 0))
        self.assertEqual(outcome.staying_team, "black")

    def test_observer_finishes_draw_with_tie_break_recorded_elsewhere(self) -> None:
        match = self.start()
        store = MemoryStore()
        SessionSnapshotStore(store).save(self.session.snapshots.load())
        subscriber = FakeSubscriber(self.scheduler)
        observer = ServiceFactory(
            SyncConfig(), scheduler=self.scheduler, store=store, api=self.api,
            subscriber=subscriber, connectivity=ConnectivityMonitor(),
        ).create_live_session(sink=RecordingSink())
        self.assertEqual(observer.restore().match_id, match.match_id)
        subscriber.last.open()
        subscriber.last.event("init", self.api.state.snapshot_event(match.match_id))

        self.assertEqual(self.session.record_tie_decider("black"), SubmitResult.RECORDED)
        self.assertEqual(self.session.finish().staying_team, "black")
        subscriber.last.event("finish", {
            "match_id": match.match_id, "blackScore": 0, "orangeScore": 0})

        self.assertEqual(observer.match.tie_decider_winner, "black")
        self.assertFalse(observer.outcome.tie_break_pending)
        self.assertEqual(observer.outcome.mode, RotationMode.KEEP_WINNER)
        self.assertEqual(observer.outcome.staying_team, "black")

    def test_finish_unreachable_keeps_match_live(self) -> None:
        self.start()
        self.api.offline = True
        self.assertIsNone(self.session.finish())
        self.assertTrue(self.session.active)
        self.assertIn("Could not finish", self.notices[-1])

    def test_finish_of_closed_match_uses_server_result(self) -> None:
        match = self.start()
        self.api.state.finish_match(match.match_id, 2, 0)

        outcome = self.session.finish()

        self.assertIsNotNone(outcome)
        self.assertEqual(outcome.staying_team, "black")
        self.assertEqual(len(self.rotations), 1)

    def test_draw_waits_for_tie_break_then_picks_challengers(self) -> None:
        self.start()
        outcome = self.session.finish()
        self.assertTrue(outcome.tie_break_pending)
        self.assertEqual(self.session.suggest_challengers(), [])

        outcome = self.session.resolve_tie("orange")
        self.assertEqual(outcome.mode, RotationMode.KEEP_WINNER)
        self.assertEqual(outcome.staying_team, "orange")
        self.assertEqual((outcome.next_black_streak, outcome.next_orange_streak), (0, 1))
        self.assertEqual(len(self.rotations), 2)

        challengers = self.session.suggest_challengers()
        self.assertEqual(challengers, [5, 6])
        outcome = self.session.choose_challengers(challengers)
        self.assertEqual(outcome.next_black, [5, 6])
        self.assertEqual(outcome.bench_candidates, [1, 2])


class RestoreTests(LiveMatchSessionTestCase):
    def reload(self, api=None):
        self.session.deactivate()
        return self.make_session(api)

    def test_restore_resumes_clock_from_anchor(self) -> None:
        match = self.start()
        session = self.reload()
        self.scheduler.advance(90)

        restored = session.restore()

        self.assertEqual(restored.match_id, match.match_id)
        self.assertTrue(session.active)
        self.assertEqual(session.timer.elapsed_seconds, 90)
        self.assertEqual(session.bench, [5, 6])

    def test_restore_offline_uses_snapshot(self) -> None:
        match = self.start()
        self.session.record_goal("black", 1)
        session = self.reload()
        self.api.offline = True

        restored = session.restore()

        self.assertEqual(restored.match_id, match.match_id)
        self.assertEqual(restored.black_score, 1)
        self.assertEqual(restored.black_roster, [1, 2])
        self.assertTrue(session.active)

    def test_offline_restore_keeps_the_many_present_override(self) -> None:
        self.start(many_present_rule=True)
        session = self.reload()
        self.api.offline = True

        restored = session.restore()

        self.assertTrue(restored.many_present_rule)
        self.assertEqual(restored.present_count, 6)
        self.api.offline = False
        outcome = session.finish()
        self.assertEqual(outcome.mode, RotationMode.BOTH_LEAVE)
        self.assertFalse(outcome.tie_break_pending)

    def test_finish_after_offline_restore_uses_server_tie_break(self) -> None:
        match = self.start()
        session = self.reload()
        self.api.offline = True
        session.restore()
        self.api.offline = False
        self.api.state.set_tie_decider(match.match_id, "orange")

        outcome = session.finish()

        self.assertEqual(outcome.mode, RotationMode.KEEP_WINNER)
        self.assertEqual(outcome.staying_team, "orange")

    def test_restore_finished_match_clears_state(self) -> None:
        match = self.start()
        session = self.reload()
        self.api.state.finish_match(match.match_id, 1, 1)

        self.assertIsNone(session.restore())
        self.assertIsNone(session.snapshots.load())
        self.assertFalse(session.active)

    def test_restore_unknown_match_clears_state(self) -> None:
        self.start()
        session = self.reload(api=FakeApi())

        self.assertIsNone(session.restore())
        self.assertIsNone(session.snapshots.load())

    def test_restore_with_nothing_saved(self) -> None:
        self.assertIsNone(self.session.restore())
        self.assertEqual(self.api.calls, [])

    def test_deactivate_leaves_nothing_running(self) -> None:
        self.start()
        self.session.notify_online(False)
        self.session.record_goal("black", 1)
        for _ in range(5):
            self.subscriber.last.error()
        self.assertGreater(self.scheduler.active_handles, 0)

        self.session.deactivate()

        self.assertEqual(self.scheduler.active_handles, 0)
        self.assertEqual(self.subscriber.open_count, 0)
        self.session.notify_online(True)
        self.assertEqual(len(self.session.queue.pending()), 1)


if __name__ == "__main__":
    unittest.main()
