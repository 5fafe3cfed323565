"""
Unit tests for the attempt stores.
"""
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pydantic import ValidationError

from quizwidget.attempt_store import InMemoryAttemptStore, JsonAttemptStore
from quizwidget.exceptions import DuplicateKeyError, StorageUnavailableError
from quizwidget.models import AttemptRecord
from tests.test_fixtures import TestFixtures


class TestJsonAttemptStore(unittest.TestCase):
    """Test cases for the file-backed attempt store."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.storage_path = Path(self.temp_dir) / "db" / "quiz_database.json"
        self.store = JsonAttemptStore(str(self.storage_path))

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_initialize_creates_database(self):
        """Test that initialize creates the directory and an empty attempts collection."""
        self.store.initialize()

        self.assertTrue(self.storage_path.exists())
        document = json.loads(self.storage_path.read_text(encoding="utf-8"))
        self.assertEqual(document["database"], "QuizDatabase")
        self.assertEqual(document["version"], 1)
        self.assertEqual(document["attempts"], {})
        self.assertEqual(self.store.list_all(), [])

    def test_initialize_is_idempotent(self):
        """Test calling initialize twice keeps existing records."""
        self.store.initialize()
        record = TestFixtures.create_attempt_record()
        self.store.append(record)

        self.store.initialize()

        self.assertEqual(self.store.list_all(), [record])

    def test_append_then_list_round_trip(self):
        """Test an appended record is listed with all fields unchanged."""
        self.store.initialize()
        record = TestFixtures.create_attempt_record(score=1)

        self.store.append(record)

        listed = self.store.list_all()
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0], record)
        self.assertEqual(listed[0].percentage, "33.3")

    def test_list_all_is_repeatable(self):
        """Test listing twice without an append returns the same set."""
        self.store.initialize()
        self.store.append(TestFixtures.create_attempt_record("2024-05-01T12:00:00.000Z"))
        self.store.append(TestFixtures.create_attempt_record("2024-05-02T12:00:00.000Z"))

        first = {r.timestamp: r for r in self.store.list_all()}
        second = {r.timestamp: r for r in self.store.list_all()}

        self.assertEqual(first, second)

    def test_duplicate_timestamp_raises(self):
        """Test that a timestamp collision is surfaced, not dropped."""
        self.store.initialize()
        self.store.append(TestFixtures.create_attempt_record(score=1))

        with self.assertRaises(DuplicateKeyError) as context:
            self.store.append(TestFixtures.create_attempt_record(score=3))

        self.assertEqual(context.exception.timestamp, "2024-05-01T12:00:00.000Z")
        self.assertEqual(self.store.list_all()[0].score, 1)

    def test_records_survive_reopen(self):
        """Test durability across store instances."""
        self.store.initialize()
        record = TestFixtures.create_attempt_record()
        self.store.append(record)

        reopened = JsonAttemptStore(str(self.storage_path))
        reopened.initialize()

        self.assertEqual(reopened.list_all(), [record])

    def test_persisted_layout_uses_camel_case_keys(self):
        """Test records are stored under their timestamp with camelCase fields."""
        self.store.initialize()
        self.store.append(TestFixtures.create_attempt_record())

        document = json.loads(self.storage_path.read_text(encoding="utf-8"))
        stored = document["attempts"]["2024-05-01T12:00:00.000Z"]

        self.assertEqual(
            set(stored.keys()),
            {"timestamp", "formattedTime", "score", "totalQuestions", "percentage"}
        )

    def test_append_before_initialize_raises(self):
        """Test that the store must be opened first."""
        with self.assertRaises(StorageUnavailableError):
            self.store.append(TestFixtures.create_attempt_record())

    def test_corrupt_database_is_unavailable(self):
        """Test that an unreadable database raises StorageUnavailableError."""
        self.storage_path.parent.mkdir(parents=True)
        self.storage_path.write_text("{ not json", encoding="utf-8")

        with self.assertRaises(StorageUnavailableError):
            self.store.initialize()

    def test_database_without_collection_is_unavailable(self):
        """Test that a JSON document without an attempts collection is rejected."""
        self.storage_path.parent.mkdir(parents=True)
        self.storage_path.write_text('{"something": []}', encoding="utf-8")

        with self.assertRaises(StorageUnavailableError):
            self.store.initialize()

    def test_malformed_record_is_skipped(self):
        """Test that one bad record does not hide the others."""
        good = TestFixtures.create_attempt_record()
        self.storage_path.parent.mkdir(parents=True)
        self.storage_path.write_text(json.dumps({
            "version": 1,
            "attempts": {
                good.timestamp: good.to_storage(),
                "bad": {"timestamp": "bad", "score": -1}
            }
        }), encoding="utf-8")

        self.store.initialize()

        self.assertEqual(self.store.list_all(), [good])

    def test_failed_write_keeps_previous_state(self):
        """Test a write failure raises StorageUnavailableError and stores nothing."""
        self.store.initialize()

        with patch("quizwidget.attempt_store.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(StorageUnavailableError):
                self.store.append(TestFixtures.create_attempt_record())

        self.assertEqual(self.store.list_all(), [])
        leftovers = [p for p in os.listdir(self.storage_path.parent) if p.endswith(".tmp")]
        self.assertEqual(leftovers, [])

    def test_non_utf8_database_is_unavailable(self):
        """Test undecodable bytes surface as StorageUnavailableError."""
        self.storage_path.parent.mkdir(parents=True)
        self.storage_path.write_bytes(b'{"attempts": {"\xff\xfe": 1}}')

        with self.assertRaises(StorageUnavailableError):
            self.store.initialize()

    def test_inconsistent_record_is_skipped(self):
        """Test a stored score above the question count is dropped on load."""
        good = TestFixtures.create_attempt_record()
        bad = dict(good.to_storage(), timestamp="2024-05-02T12:00:00.000Z", score=9, percentage="300.0")
        self.storage_path.parent.mkdir(parents=True)
        self.storage_path.write_text(json.dumps({
            "version": 1,
            "attempts": {good.timestamp: good.to_storage(), bad["timestamp"]: bad}
        }), encoding="utf-8")

        self.store.initialize()

        self.assertEqual(self.store.list_all(), [good])

    def test_uncreatable_directory_is_unavailable(self):
        """Test initialize fails when the parent path is a file."""
        blocker = Path(self.temp_dir) / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = JsonAttemptStore(str(blocker / "quiz_database.json"))

        with self.assertRaises(StorageUnavailableError):
            store.initialize()


class TestAttemptRecordValidation(unittest.TestCase):
    """Test cases for AttemptRecord consistency checks."""

    def test_score_above_total_rejected(self):
        with self.assertRaises(ValidationError):
            AttemptRecord(timestamp="t", formatted_time="f", score=4, total_questions=3, percentage="133.3")

    def test_percentage_must_match_score(self):
        with self.assertRaises(ValidationError):
            AttemptRecord(timestamp="t", formatted_time="f", score=1, total_questions=3, percentage="66.7")

    def test_unrounded_percentage_accepted(self):
        record = AttemptRecord(timestamp="t", formatted_time="f", score=1, total_questions=2, percentage="50")

        self.assertEqual(record.percentage, "50")


class TestInMemoryAttemptStore(unittest.TestCase):
    """Test cases for the in-memory fallback store."""

    def setUp(self):
        self.store = InMemoryAttemptStore()
        self.store.initialize()

    def test_empty_store_lists_nothing(self):
        self.assertEqual(self.store.list_all(), [])

    def test_append_and_duplicate(self):
        """Test in-memory store has the same key semantics."""
        record = TestFixtures.create_attempt_record()
        self.store.append(record)

        with self.assertRaises(DuplicateKeyError):
            self.store.append(record)
        self.assertEqual(self.store.list_all(), [record])

    def test_not_durable(self):
        self.assertFalse(self.store.is_durable)
        self.assertTrue(JsonAttemptStore().is_durable)


if __name__ == '__main__':
    unittest.main()
