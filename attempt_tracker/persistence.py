"""
Durable local mirror of in-progress attempts.

A timed attempt survives a restart of the client because its identifier,
start timestamp and allotted duration are written to a small JSON key/value
file, keyed by question-set.
"""
import json
import logging
import os
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, Optional

from .models import SessionRecord

DEFAULT_PREFIX = "test_session"


class ResumeStatus(Enum):
    """Outcome of validating a stored session record."""
    VALID = "valid"
    EXPIRED = "expired"


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class JsonFileStore:
    """
    String key/value store persisted as one JSON object on disk.

    Every write rewrites the whole file through a temporary file and
    ``os.replace`` so a crash never leaves a half-written store behind.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in session store {self.path}: {e}")
            return {}
        except OSError as e:
            self.logger.error(f"Failed to read session store {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            self.logger.error(f"Session store {self.path} is not a JSON object")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> Iterator[str]:
        return iter(list(self._read().keys()))


class PersistenceBridge:
    """
    Saves, restores and validates Local Session Records.

    Records are keyed by ``{prefix}_{tenant}_{question_set_id}``, or by
    ``{prefix}_{question_set_id}`` when no tenant is known. Only one client is
    assumed to hold a given attempt; concurrent writers are not detected.
    """

    def __init__(
        self,
        store: JsonFileStore,
        tenant: Optional[str] = None,
        prefix: str = DEFAULT_PREFIX,
        grace_seconds: int = 0
    ):
        """
        Initialize the bridge.

        Args:
            store: Durable key/value store
            tenant: Institution discriminator (school slug), optional
            prefix: Fixed namespace prefix for all keys
            grace_seconds: Records with this many seconds or fewer left are expired
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.tenant = tenant or ""
        self.prefix = prefix
        self.grace_seconds = max(grace_seconds, 0)

    @property
    def namespace(self) -> str:
        return f"{self.prefix}_{self.tenant}" if self.tenant else self.prefix

    def key_for(self, question_set_id: str) -> str:
        return f"{self.namespace}_{question_set_id}"

    def save(self, question_set_id: str, record: SessionRecord) -> bool:
        """
        Write the record for a question-set, replacing any existing one.

        Returns:
            True if the record was written, False if storage failed
        """
        try:
            self.store.set(self.key_for(question_set_id), json.dumps(record.to_dict()))
        except OSError as e:
            self.logger.error(f"Failed to save session record for {question_set_id}: {e}")
            return False

        self.logger.debug(
            f"Saved session record for question-set {question_set_id}",
            extra={
                'event_type': 'session_record_saved',
                'question_set_id': question_set_id,
                'attempt_id': record.attempt_id,
                'timestamp': time.time()
            }
        )
        return True

    def load(self, question_set_id: str) -> Optional[SessionRecord]:
        """
        Load the record for a question-set.

        Malformed records are deleted and reported as absent.
        """
        key = self.key_for(question_set_id)
        try:
            raw = self.store.get(key)
        except OSError as e:
            self.logger.error(f"Failed to read session record {key}: {e}")
            return None
        if raw is None:
            return None
        return self._parse(key, raw)

    def load_all(self, namespace: Optional[str] = None) -> Iterator[SessionRecord]:
        """
        Yield every readable record under ``namespace``.

        Each call rescans the store. Malformed entries are deleted as they
        are encountered.
        """
        namespace = namespace or self.namespace
        key_prefix = f"{namespace}_"
        try:
            keys = self.store.keys()
        except OSError as e:
            self.logger.error(f"Failed to scan session store: {e}")
            return

        for key in keys:
            if not key.startswith(key_prefix):
                continue
            raw = self.store.get(key)
            if raw is None:
                continue
            record = self._parse(key, raw)
            if record is not None:
                yield record

    def validate(self, record: SessionRecord, now: Optional[int] = None) -> ResumeStatus:
        """
        Decide whether a record still describes a resumable attempt.

        Args:
            record: The stored record
            now: Current time in epoch milliseconds, defaults to the wall clock

        Returns:
            ResumeStatus.VALID while the attempt is inside its allotted
            duration (untimed attempts are always valid), else EXPIRED
        """
        if not isinstance(record, SessionRecord):
            return ResumeStatus.EXPIRED
        if not record.duration_seconds:
            return ResumeStatus.VALID

        remaining = self.remaining_seconds(record, now)
        if remaining is None or remaining <= self.grace_seconds or remaining <= 0:
            return ResumeStatus.EXPIRED
        return ResumeStatus.VALID

    def remaining_seconds(self, record: SessionRecord, now: Optional[int] = None) -> Optional[float]:
        """Seconds left on a timed record, None for untimed ones."""
        if not record.duration_seconds:
            return None
        now = now_ms() if now is None else now
        elapsed = (now - record.started_at) / 1000
        return record.duration_seconds - elapsed

    def delete(self, question_set_id: str) -> None:
        """Remove the record for a question-set. Absent records are ignored."""
        key = self.key_for(question_set_id)
        try:
            self.store.remove(key)
        except OSError as e:
            self.logger.error(f"Failed to delete session record {key}: {e}")
            return
        self.logger.debug(f"Deleted session record {key}")

    def resume(self, question_set_id: str, now: Optional[int] = None) -> Optional[SessionRecord]:
        """
        Load and validate the record for a question-set.

        Expired records are deleted. Nothing here is ever surfaced to the
        user as an error.

        Returns:
            The record if the attempt can be resumed, None otherwise
        """
        record = self.load(question_set_id)
        if record is None:
            return None

        if self.validate(record, now) is ResumeStatus.EXPIRED:
            self.logger.info(
                f"Discarding expired session record for question-set {question_set_id}",
                extra={
                    'event_type': 'session_record_expired',
                    'question_set_id': question_set_id,
                    'attempt_id': record.attempt_id,
                    'timestamp': time.time()
                }
            )
            self.delete(question_set_id)
            return None
        return record

    def _parse(self, key: str, raw: str) -> Optional[SessionRecord]:
        try:
            return SessionRecord.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            self.logger.warning(f"Removing malformed session record {key}: {e}")
            try:
                self.store.remove(key)
            except OSError as remove_error:
                self.logger.error(f"Failed to remove malformed record {key}: {remove_error}")
            return None
