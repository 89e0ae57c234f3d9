"""
Unit tests for the JSON file store and the PersistenceBridge.
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from attempt_tracker.models import SessionRecord
from attempt_tracker.persistence import JsonFileStore, PersistenceBridge, ResumeStatus
from tests.test_fixtures import TestFixtures

START = 1_700_000_000_000


class TestJsonFileStore(unittest.TestCase):
    """Test cases for the on-disk key/value store."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "nested" / "store.json"
        self.store = JsonFileStore(str(self.path))

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_set_get_remove(self):
        self.store.set("a", "1")
        self.store.set("b", "2")

        self.assertEqual(self.store.get("a"), "1")
        self.assertEqual(sorted(self.store.keys()), ["a", "b"])

        self.store.remove("a")
        self.store.remove("missing")
        self.assertIsNone(self.store.get("a"))

    def test_values_survive_new_instance(self):
        self.store.set("a", "1")
        self.assertEqual(JsonFileStore(str(self.path)).get("a"), "1")

    def test_corrupt_file_reads_as_empty(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("{ not json", encoding='utf-8')

        self.assertIsNone(self.store.get("a"))
        self.store.set("a", "1")
        self.assertEqual(self.store.get("a"), "1")

    def test_no_temporary_files_left_behind(self):
        self.store.set("a", "1")
        self.assertEqual([p.name for p in self.path.parent.iterdir()], ["store.json"])


class TestPersistenceBridge(unittest.TestCase):
    """Test cases for saving, loading and validating session records."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = JsonFileStore(str(Path(self.temp_dir) / "sessions.json"))
        self.bridge = PersistenceBridge(self.store, tenant="springfield")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_keys_are_namespaced_by_tenant(self):
        self.assertEqual(self.bridge.key_for("set-1"), "test_session_springfield_set-1")
        untenanted = PersistenceBridge(self.store)
        self.assertEqual(untenanted.key_for("set-1"), "test_session_set-1")

    def test_save_then_load(self):
        record = TestFixtures.create_session_record()
        self.assertTrue(self.bridge.save("set-1", record))

        loaded = self.bridge.load("set-1")
        self.assertEqual(loaded, record)

    def test_save_replaces_existing_record(self):
        self.bridge.save("set-1", TestFixtures.create_session_record())
        newer = SessionRecord("set-1", "attempt-2", START + 5000, 600)
        self.bridge.save("set-1", newer)

        self.assertEqual(self.bridge.load("set-1").attempt_id, "attempt-2")
        self.assertEqual(len(list(self.store.keys())), 1)

    def test_stored_format(self):
        self.bridge.save("set-1", TestFixtures.create_session_record())
        raw = json.loads(self.store.get("test_session_springfield_set-1"))

        self.assertEqual(raw, {
            "questionSetId": "set-1",
            "attemptId": "attempt-1",
            "startedAt": START,
            "duration": 600,
            "answers": {},
            "flagged": [],
            "currentIndex": 0,
        })

    def test_progress_fields_round_trip(self):
        record = SessionRecord(
            "set-1", "attempt-1", START, 600,
            answers={"q1": "B"}, flagged=["q2"], current_index=3
        )
        self.bridge.save("set-1", record)

        self.assertEqual(self.bridge.load("set-1"), record)

    def test_record_without_progress_fields_loads(self):
        self.store.set(self.bridge.key_for("set-1"), json.dumps({
            "questionSetId": "set-1", "attemptId": "attempt-1", "startedAt": START, "duration": 600
        }))

        loaded = self.bridge.load("set-1")
        self.assertEqual(loaded.answers, {})
        self.assertEqual(loaded.flagged, [])
        self.assertEqual(loaded.current_index, 0)

    def test_missing_record_loads_as_none(self):
        self.assertIsNone(self.bridge.load("nope"))

    def test_malformed_record_is_deleted(self):
        key = self.bridge.key_for("set-1")
        for raw in ("not json", json.dumps({"attemptId": "a"}), json.dumps([1, 2])):
            self.store.set(key, raw)
            self.assertIsNone(self.bridge.load("set-1"))
            self.assertIsNone(self.store.get(key))

    def test_delete_is_idempotent(self):
        self.bridge.save("set-1", TestFixtures.create_session_record())
        self.bridge.delete("set-1")
        self.bridge.delete("set-1")

        self.assertIsNone(self.bridge.load("set-1"))

    def test_load_all_filters_namespace(self):
        self.bridge.save("set-1", TestFixtures.create_session_record(question_set_id="set-1"))
        self.bridge.save("set-2", TestFixtures.create_session_record(question_set_id="set-2"))
        other_school = PersistenceBridge(self.store, tenant="shelbyville")
        other_school.save("set-3", TestFixtures.create_session_record(question_set_id="set-3"))
        self.store.set(self.bridge.key_for("broken"), "garbage")

        ids = sorted(record.question_set_id for record in self.bridge.load_all())
        self.assertEqual(ids, ["set-1", "set-2"])
        self.assertIsNone(self.store.get(self.bridge.key_for("broken")))

        # Rescans on every call
        self.bridge.delete("set-2")
        self.assertEqual([r.question_set_id for r in self.bridge.load_all()], ["set-1"])
        self.assertEqual(
            [r.question_set_id for r in self.bridge.load_all("test_session_shelbyville")],
            ["set-3"]
        )


class TestResumeValidation(unittest.TestCase):
    """Test cases for deciding whether a stored attempt can be resumed."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = JsonFileStore(str(Path(self.temp_dir) / "sessions.json"))
        self.bridge = PersistenceBridge(self.store)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_record_within_duration_is_valid(self):
        record = TestFixtures.create_session_record(duration_seconds=600)
        self.assertIs(self.bridge.validate(record, START + 599_000), ResumeStatus.VALID)

    def test_record_past_duration_is_expired(self):
        record = TestFixtures.create_session_record(duration_seconds=600)

        self.assertIs(self.bridge.validate(record, START + 600_000), ResumeStatus.EXPIRED)
        self.assertIs(self.bridge.validate(record, START + 900_000), ResumeStatus.EXPIRED)

    def test_loaded_record_is_valid_at_its_start(self):
        self.bridge.save("set-1", TestFixtures.create_session_record(duration_seconds=600))

        loaded = self.bridge.load("set-1")
        self.assertIs(self.bridge.validate(loaded, loaded.started_at), ResumeStatus.VALID)

    def test_half_hour_test_valid_then_expired(self):
        record = TestFixtures.create_session_record(duration_seconds=1800)

        self.assertIs(self.bridge.validate(record, START + 1_700_000), ResumeStatus.VALID)
        self.assertIs(self.bridge.validate(record, START + 1_900_000), ResumeStatus.EXPIRED)

    def test_untimed_record_is_always_valid(self):
        record = TestFixtures.create_session_record(duration_seconds=None)
        self.assertIs(self.bridge.validate(record, START + 10 ** 12), ResumeStatus.VALID)

    def test_non_record_is_expired(self):
        self.assertIs(self.bridge.validate({"attemptId": "a"}, START), ResumeStatus.EXPIRED)

    def test_grace_window_expires_nearly_finished_attempts(self):
        bridge = PersistenceBridge(self.store, grace_seconds=10)
        record = TestFixtures.create_session_record(duration_seconds=600)

        self.assertIs(bridge.validate(record, START + 589_000), ResumeStatus.VALID)
        self.assertIs(bridge.validate(record, START + 590_000), ResumeStatus.EXPIRED)

    def test_remaining_seconds(self):
        record = TestFixtures.create_session_record(duration_seconds=600)

        self.assertEqual(self.bridge.remaining_seconds(record, START + 100_000), 500)
        self.assertIsNone(
            self.bridge.remaining_seconds(TestFixtures.create_session_record(duration_seconds=None), START)
        )

    def test_resume_deletes_expired_record(self):
        self.bridge.save("set-1", TestFixtures.create_session_record(duration_seconds=60))

        self.assertIsNone(self.bridge.resume("set-1", START + 61_000))
        self.assertIsNone(self.bridge.load("set-1"))

    def test_resume_returns_valid_record(self):
        record = TestFixtures.create_session_record(duration_seconds=60)
        self.bridge.save("set-1", record)

        self.assertEqual(self.bridge.resume("set-1", START + 30_000), record)
        self.assertIsNotNone(self.bridge.load("set-1"))


if __name__ == '__main__':
    unittest.main()
