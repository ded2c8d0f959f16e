import json
import os
import tempfile
import unittest
from unittest.mock import patch

from livematch.models import PlayerTally
from livematch.services import JsonFileStore, MemoryStore, SessionSnapshot, SessionSnapshotStore
from livematch.utils.constants import (
    KEY_ALARM_MUTED, KEY_GOAL_QUEUE, KEY_LIVE_STATS, KEY_MATCH_ID, KEY_RULES, KEY_TEAMS,
    KEY_TICKER,
)


def make_snapshot(**overrides) -> SessionSnapshot:
    values = dict(
        match_id=7,
        start_ts=1000.0,
        black_score=2,
        orange_score=1,
        black_roster=[1, 2],
        orange_roster=[3, 4],
        bench=[5, 6],
        live_stats={1: PlayerTally(goals=2), 3: PlayerTally(goals=1, assists=0)},
    )
    values.update(overrides)
    return SessionSnapshot(**values)


class SessionSnapshotStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()
        self.snapshots = SessionSnapshotStore(self.store)

    def test_load_without_anything_saved(self) -> None:
        self.assertIsNone(self.snapshots.load())

    def test_save_then_load_recomputes_elapsed_from_anchor(self) -> None:
        self.snapshots.save(make_snapshot())

        with patch("livematch.utils.time_utils.now_ts", return_value=1125.0):
            loaded = self.snapshots.load()

        self.assertEqual(loaded.match_id, 7)
        self.assertEqual(loaded.start_ts, 1000.0)
        self.assertEqual((loaded.black_score, loaded.orange_score), (2, 1))
        self.assertEqual(loaded.black_roster, [1, 2])
        self.assertEqual(loaded.orange_roster, [3, 4])
        self.assertEqual(loaded.bench, [5, 6])
        self.assertEqual(loaded.live_stats[1].goals, 2)
        self.assertTrue(loaded.in_progress)
        self.assertEqual(loaded.elapsed_seconds, 125)

    def test_save_scores_keeps_anchor(self) -> None:
        self.snapshots.save(make_snapshot())
        self.snapshots.save_scores(4, 3)

        ticker = self.store.get_json(KEY_TICKER)
        self.assertEqual(ticker["blackScore"], 4)
        self.assertEqual(ticker["orangeScore"], 3)
        self.assertEqual(self.snapshots.load().start_ts, 1000.0)

    def test_corrupted_values_fall_back_to_defaults(self) -> None:
        self.snapshots.save(make_snapshot())
        self.store.set(KEY_TEAMS, "{not json")
        self.store.set(KEY_LIVE_STATS, json.dumps({"1": "garbage", "x": {"goals": 1}}))
        self.store.set(KEY_MATCH_ID, "seven")

        loaded = self.snapshots.load()

        self.assertIsNone(loaded.match_id)
        self.assertEqual(loaded.black_roster, [])
        self.assertEqual(loaded.orange_roster, [])
        self.assertEqual(loaded.live_stats, {})
        self.assertEqual(loaded.start_ts, 1000.0)

    def test_corrupted_ticker_alone_restores_nothing(self) -> None:
        self.store.set(KEY_TICKER, "][")
        self.assertIsNone(self.snapshots.load())

    def test_rotation_rules_survive_reload(self) -> None:
        self.snapshots.save(make_snapshot(many_present_rule=True, present_count=18,
                                          tie_decider_winner="orange"))

        loaded = self.snapshots.load()

        self.assertTrue(loaded.many_present_rule)
        self.assertEqual(loaded.present_count, 18)
        self.assertEqual(loaded.tie_decider_winner, "orange")

        self.store.set_json(KEY_RULES, {"presentCount": "many", "tieDeciderWinner": "purple"})
        loaded = self.snapshots.load()
        self.assertFalse(loaded.many_present_rule)
        self.assertIsNone(loaded.present_count)
        self.assertIsNone(loaded.tie_decider_winner)

    def test_mute_flag(self) -> None:
        self.assertFalse(self.snapshots.is_alarm_muted())
        self.snapshots.set_alarm_muted(True)
        self.assertEqual(self.store.get(KEY_ALARM_MUTED), "1")
        self.snapshots.set_alarm_muted(False)
        self.assertIsNone(self.store.get(KEY_ALARM_MUTED))

    def test_clear_keeps_queue_items_of_other_matches(self) -> None:
        self.snapshots.save(make_snapshot(alarm_muted=True))
        self.store.set_json(KEY_GOAL_QUEUE, [
            {"matchId": 7, "payload": {"team_scored": "black"}},
            {"matchId": 8, "payload": {"team_scored": "orange"}},
        ])

        self.snapshots.clear()

        self.assertIsNone(self.snapshots.load())
        self.assertFalse(self.snapshots.is_alarm_muted())
        self.assertEqual(self.store.keys(), [KEY_GOAL_QUEUE])
        self.assertEqual([item["matchId"] for item in self.store.get_json(KEY_GOAL_QUEUE)], [8])

    def test_clear_drops_empty_queue_key(self) -> None:
        self.snapshots.save(make_snapshot())
        self.store.set_json(KEY_GOAL_QUEUE, [{"matchId": 7, "payload": {}}])
        self.snapshots.clear(7)
        self.assertEqual(self.store.keys(), [])


class JsonFileStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "state", "livematch.json")

    def test_values_survive_reopen(self) -> None:
        store = JsonFileStore(self.path)
        SessionSnapshotStore(store).save(make_snapshot())

        reopened = SessionSnapshotStore(JsonFileStore(self.path)).load()
        self.assertEqual(reopened.match_id, 7)
        self.assertEqual(reopened.bench, [5, 6])

    def test_unreadable_file_starts_empty(self) -> None:
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("not json at all")

        store = JsonFileStore(self.path)
        self.assertIsNone(store.get(KEY_MATCH_ID))
        store.set(KEY_MATCH_ID, "3")
        self.assertEqual(JsonFileStore(self.path).get(KEY_MATCH_ID), "3")

    def test_remove_many_applies_updates_in_one_write(self) -> None:
        store = JsonFileStore(self.path)
        store.set("a", "1")
        store.set("b", "2")
        store.remove_many(["a", "b"], updates={"c": "3"})

        with open(self.path, "r", encoding="utf-8") as f:
            self.assertEqual(json.load(f), {"c": "3"})
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["livematch.json"])


if __name__ == "__main__":
    unittest.main()
