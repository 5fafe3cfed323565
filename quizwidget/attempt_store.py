"""
Attempt store: durable append-only log of completed quiz attempts.

Records are keyed by their ISO-8601 completion timestamp. The JSON store keeps
one document per database:

    {
        "database": "QuizDatabase",
        "version": 1,
        "attempts": {
            "<timestamp>": {"timestamp": ..., "formattedTime": ..., ...}
        }
    }
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List

from pydantic import ValidationError

from .exceptions import DuplicateKeyError, StorageUnavailableError
from .models import AttemptRecord

DATABASE_NAME = "QuizDatabase"
DATABASE_VERSION = 1
COLLECTION_NAME = "attempts"


class AttemptStore(ABC):
    """Storage contract for attempt records."""

    @abstractmethod
    def initialize(self) -> None:
        """Open or create the backing store. Safe to call more than once."""

    @abstractmethod
    def append(self, record: AttemptRecord) -> None:
        """Insert a new record, raising DuplicateKeyError on a timestamp collision."""

    @abstractmethod
    def list_all(self) -> List[AttemptRecord]:
        """Return every stored record in no particular order."""

    @property
    def is_durable(self) -> bool:
        return True


class InMemoryAttemptStore(AttemptStore):
    """Process-local store, used when durable storage is unavailable."""

    def __init__(self):
        self._records: Dict[str, AttemptRecord] = {}
        self.logger = logging.getLogger(__name__)

    def initialize(self) -> None:
        pass

    def append(self, record: AttemptRecord) -> None:
        if record.timestamp in self._records:
            raise DuplicateKeyError(record.timestamp)
        self._records[record.timestamp] = record
        self.logger.debug(f"Stored attempt {record.timestamp} in memory")

    def list_all(self) -> List[AttemptRecord]:
        return list(self._records.values())

    @property
    def is_durable(self) -> bool:
        return False


class JsonAttemptStore(AttemptStore):
    """Attempt store backed by a single JSON document on local disk."""

    def __init__(self, storage_path: str = "./data/quiz_database.json"):
        """
        Initialize JsonAttemptStore.

        Args:
            storage_path: Path of the JSON database file
        """
        self.storage_path = Path(storage_path)
        self.logger = logging.getLogger(__name__)
        self._records: Dict[str, AttemptRecord] = {}
        self._initialized = False

    def initialize(self) -> None:
        """
        Open the database file, creating it when missing.

        Raises:
            StorageUnavailableError: If the file cannot be created or read,
                or does not contain a valid attempts collection
        """
        if self._initialized:
            return

        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.storage_path.exists():
                self._write_document({})
                self.logger.info(f"Created attempt database: {self.storage_path}")
            self._records = self._read_document()
        except PermissionError as e:
            raise StorageUnavailableError(f"Permission denied: Cannot access {self.storage_path}: {e}") from e
        except OSError as e:
            raise StorageUnavailableError(f"System error accessing {self.storage_path}: {e}") from e

        self._initialized = True
        self.logger.info(f"Opened attempt database {self.storage_path} with {len(self._records)} attempts")

    def append(self, record: AttemptRecord) -> None:
        """
        Persist a new attempt record.

        Raises:
            DuplicateKeyError: If an attempt with the same timestamp exists
            StorageUnavailableError: If the store is not initialized or the
                write fails
        """
        if not self._initialized:
            raise StorageUnavailableError("Attempt store has not been initialized")

        if record.timestamp in self._records:
            raise DuplicateKeyError(record.timestamp)

        updated = dict(self._records)
        updated[record.timestamp] = record
        try:
            self._write_document(updated)
        except OSError as e:
            raise StorageUnavailableError(f"Failed to write {self.storage_path}: {e}") from e

        self._records = updated
        self.logger.info(
            f"Saved attempt {record.timestamp}: {record.score}/{record.total_questions} ({record.percentage}%)"
        )

    def list_all(self) -> List[AttemptRecord]:
        if not self._initialized:
            raise StorageUnavailableError("Attempt store has not been initialized")
        return list(self._records.values())

    def _read_document(self) -> Dict[str, AttemptRecord]:
        try:
            with open(self.storage_path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageUnavailableError(f"Invalid JSON in {self.storage_path}: {e}") from e
        except UnicodeDecodeError as e:
            raise StorageUnavailableError(f"{self.storage_path} is not valid UTF-8: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get(COLLECTION_NAME), dict):
            raise StorageUnavailableError(
                f"{self.storage_path} does not contain an '{COLLECTION_NAME}' collection"
            )

        version = document.get("version", DATABASE_VERSION)
        if version != DATABASE_VERSION:
            raise StorageUnavailableError(
                f"Unsupported database version {version} in {self.storage_path}"
            )

        records = {}
        for key, raw in document[COLLECTION_NAME].items():
            try:
                record = AttemptRecord.model_validate(raw)
            except ValidationError as e:
                self.logger.warning(f"Skipping malformed attempt {key!r} in {self.storage_path}: {e}")
                continue
            records[record.timestamp] = record
        return records

    def _write_document(self, records: Dict[str, AttemptRecord]) -> None:
        document = {
            "database": DATABASE_NAME,
            "version": DATABASE_VERSION,
            COLLECTION_NAME: {key: record.to_storage() for key, record in records.items()},
        }

        # The database file is only ever replaced by a fully written sibling
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{self.storage_path.name}.", suffix=".tmp", dir=self.storage_path.parent
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.storage_path)
        except BaseException:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
