import os
import tempfile
import time
import unittest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient
from habitsync import server
from habitsync.config import settings
from habitsync.models import (
    CountSnapshot, StoreConstants, TimerActivity, TimerAttributes, TimerContentState,
)
from habitsync.store import SnapshotStore

class MockCommands:
    def __init__(self):
        self.submitted = []
    def submit(self, command):
        self.submitted.append(command)

class MockNotifier:
    sent = 3
    failed = 1

class MockItems:
    def active_items(self):
        return []

class MockService:
    def __init__(self):
        self.commands = MockCommands()
        self.notifier = MockNotifier()
        self.items = MockItems()
        self.last_successful_sync = time.time()
        self.sync_count = 4
        self.failed_syncs = 0

class TestServer(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        shared_root = os.path.join(self.tmp.name, "shared")
        os.makedirs(os.path.join(shared_root, StoreConstants.NAMESPACE))
        settings.PERSIST_ENABLED = True
        settings.HTTP_SERVER_TOKEN = None
        self.store = SnapshotStore(shared_root=shared_root, local_dir=os.path.join(self.tmp.name, "local"))
        server.store = self.store
        server.service = MockService()
        self.client = TestClient(server.app)

    def tearDown(self):
        server.service = None
        settings.HTTP_SERVER_TOKEN = None
        self.tmp.cleanup()

    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        server.service.last_successful_sync = 0
        self.assertEqual(self.client.get("/healthz").json()["status"], "lagging")
        server.service = None
        self.assertEqual(self.client.get("/healthz").json(), {"status": "starting"})

    def test_snapshots_placeholder_when_empty(self):
        resp = self.client.get("/snapshots")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([s["id"] for s in resp.json()], ["placeholder"])

    def test_list_and_lookup_share_read_contract(self):
        self.store.publish([
            CountSnapshot(id="water", name="Water", icon="drop", color_hex="#00F", value=2, goal=3, unit_label="times"),
        ])
        [listed] = self.client.get("/snapshots").json()
        single = self.client.get("/snapshots/water").json()
        self.assertEqual(listed, single)
        self.assertEqual(listed["formatted_progress"], "2/3 times")
        self.assertIn("progress", listed)

    def test_snapshot_lookup(self):
        self.store.publish([
            CountSnapshot(id="water", name="Water", icon="drop", color_hex="#00F", value=2, goal=3, unit_label="times"),
        ])
        data = self.client.get("/snapshots/water").json()
        self.assertEqual(data["formatted_progress"], "2/3 times")
        self.assertAlmostEqual(data["progress"], 2 / 3)
        self.assertEqual(self.client.get("/snapshots/missing").status_code, 404)

    def test_activity_elapsed_reconstructed(self):
        start = datetime.now(timezone.utc) - timedelta(seconds=120)
        self.store.publish_activities({"read": TimerActivity(
            attributes=TimerAttributes(habit_id="read", name="Read", icon="book",
                                       color_hex="#34C759", target_goal_seconds=1800),
            state=TimerContentState(base_elapsed_seconds=60, session_start=start),
        )})
        data = self.client.get("/activities/read").json()
        self.assertTrue(data["is_running"])
        self.assertGreaterEqual(data["elapsed_seconds"], 180)
        self.assertLess(data["elapsed_seconds"], 240)
        self.assertEqual(self.client.get("/activities/none").status_code, 404)

    def test_commands_are_accepted(self):
        resp = self.client.post("/commands/toggle-timer", json={"habit_id": "read", "should_run": True})
        self.assertEqual(resp.status_code, 202)
        resp = self.client.post("/commands/increment", json={"habit_id": "water"})
        self.assertEqual(resp.status_code, 202)
        kinds = [c.kind for c in server.service.commands.submitted]
        self.assertEqual(kinds, ["toggle_timer", "increment"])

    def test_commands_need_running_service(self):
        server.service = None
        resp = self.client.post("/commands/increment", json={"habit_id": "water"})
        self.assertEqual(resp.status_code, 503)

    def test_token_required_when_configured(self):
        settings.HTTP_SERVER_TOKEN = "secret"
        self.assertEqual(self.client.get("/status").status_code, 401)
        resp = self.client.get("/status", headers={"X-Token": "secret"})
        self.assertEqual(resp.json()["sync_count"], 4)
        self.assertEqual(self.client.post("/commands/increment", json={"habit_id": "w"}).status_code, 401)

    def test_metrics(self):
        body = self.client.get("/metrics").text
        self.assertIn("habitsync_syncs_total 4", body)
        self.assertIn("habitsync_reload_failures_total 1", body)

if __name__ == '__main__':
    unittest.main()
