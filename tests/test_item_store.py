import json
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from habitsync.clients.item_store import JsonItemStore, local_day, timer_session
from habitsync.config import settings
from habitsync.models import HabitItem, ItemDocument

T0 = datetime(2026, 10, 18, 8, 0, 0, tzinfo=timezone.utc)

class TestJsonItemStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "habits.json")
        settings.PERSIST_ENABLED = True
        settings.TIMEZONE = "UTC"
        doc = ItemDocument(items=[
            HabitItem(id="read", name="Read", habit_type="timer", goal_value=30),
            HabitItem(id="water", name="Water", habit_type="count", goal_value=8),
            HabitItem(id="old", name="Old", is_active=False),
        ])
        with open(self.path, "w") as f:
            f.write(doc.model_dump_json())
        self.store = JsonItemStore(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_active_items(self):
        self.assertEqual([i.id for i in self.store.active_items()], ["read", "water"])

    def test_missing_or_corrupt_file_starts_empty(self):
        self.assertEqual(JsonItemStore(os.path.join(self.tmp.name, "none.json")).active_items(), [])
        bad = os.path.join(self.tmp.name, "bad.json")
        with open(bad, "w") as f:
            f.write("{nope")
        self.assertEqual(JsonItemStore(bad).active_items(), [])

    def test_increment_count_habit(self):
        self.assertTrue(self.store.increment("water", T0))
        self.assertTrue(self.store.increment("water", T0 + timedelta(minutes=5)))
        self.assertEqual(len(self.store.completions_today("water", T0)), 2)

    def test_increment_ignores_timer_and_unknown(self):
        self.assertFalse(self.store.increment("read", T0))
        self.assertFalse(self.store.increment("ghost", T0))
        self.assertEqual(self.store.doc.completions, [])

    def test_toggle_records_segment(self):
        self.assertTrue(self.store.toggle_timer("read", True, T0))
        self.assertTrue(self.store.get_item("read").is_timer_running)
        self.assertTrue(self.store.toggle_timer("read", False, T0 + timedelta(minutes=12, seconds=30)))

        item = self.store.get_item("read")
        self.assertFalse(item.is_timer_running)
        self.assertEqual(timer_session(item, self.store.completions_today("read", T0)).base_elapsed_seconds, 750)
        [completion] = self.store.completions_today("read", T0)
        self.assertEqual(completion.timer_minutes, 12.5)

    def test_toggle_is_idempotent(self):
        self.store.toggle_timer("read", True, T0)
        self.assertFalse(self.store.toggle_timer("read", True, T0 + timedelta(minutes=3)))
        self.assertEqual(self.store.get_item("read").session_start, T0)

        self.store.toggle_timer("read", False, T0 + timedelta(minutes=10))
        self.assertFalse(self.store.toggle_timer("read", False, T0 + timedelta(minutes=20)))
        item = self.store.get_item("read")
        self.assertEqual(timer_session(item, self.store.completions_today("read", T0)).base_elapsed_seconds, 600)
        self.assertIsNone(item.session_start)
        self.assertEqual(len(self.store.doc.completions), 1)

    def test_toggle_ignores_count_habits(self):
        self.assertFalse(self.store.toggle_timer("water", True, T0))

    def test_resume_after_goal_allows_overrun(self):
        self.store.toggle_timer("read", True, T0)
        self.store.toggle_timer("read", False, T0 + timedelta(minutes=31))
        self.store.toggle_timer("read", True, T0 + timedelta(minutes=40))
        self.assertTrue(self.store.get_item("read").allow_overrun)
        self.assertEqual(self.store.stop_finished_timers(T0 + timedelta(minutes=60)), [])

    def test_new_day_starts_from_zero(self):
        self.store.toggle_timer("read", True, T0)
        self.store.toggle_timer("read", False, T0 + timedelta(minutes=5))
        next_day = T0 + timedelta(days=1)
        item = self.store.get_item("read")
        # Paused over midnight: yesterday's segment does not carry over
        self.assertEqual(timer_session(item, self.store.completions_today("read", next_day)).base_elapsed_seconds, 0)
        self.store.toggle_timer("read", True, next_day)
        self.assertFalse(self.store.get_item("read").allow_overrun)
        self.assertEqual(self.store.stop_finished_timers(next_day + timedelta(minutes=29)), [])

    def test_stop_finished_timers(self):
        self.store.toggle_timer("read", True, T0)
        self.assertEqual(self.store.stop_finished_timers(T0 + timedelta(minutes=29)), [])
        self.assertEqual(self.store.stop_finished_timers(T0 + timedelta(minutes=30)), ["read"])
        item = self.store.get_item("read")
        self.assertFalse(item.is_timer_running)
        self.assertTrue(item.is_finished)

    def test_changes_persist(self):
        self.store.increment("water", T0)
        self.store.toggle_timer("read", True, T0)
        reloaded = JsonItemStore(self.path)
        self.assertEqual(len(reloaded.completions_today("water", T0)), 1)
        self.assertEqual(reloaded.get_item("read").session_start, T0)
        with open(self.path) as f:
            self.assertIn("items", json.load(f))

    def test_persist_disabled(self):
        settings.PERSIST_ENABLED = False
        try:
            self.store.increment("water", T0)
            self.assertEqual(JsonItemStore(self.path).doc.completions, [])
        finally:
            settings.PERSIST_ENABLED = True

    def test_local_day_uses_timezone(self):
        late = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
        self.assertEqual(local_day(late, "UTC").day, 18)
        self.assertEqual(local_day(late, "Asia/Tokyo").day, 19)

if __name__ == '__main__':
    unittest.main()
