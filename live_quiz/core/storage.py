"""Record store collaborator and per-key locking.

The core never keeps quiz state in memory between requests. Every request
loads the records it needs from a :class:`RecordStore`, works on private
copies and writes them back with a version check. :class:`InMemoryRecordStore`
is the bundled implementation; a durable store only has to honour the same
protocol.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from copy import deepcopy
from threading import Lock
from typing import Any, Protocol

from live_quiz.core.errors import ConcurrentModification

RecordKey = tuple[str, ...]


class RecordStore(Protocol):
    """Versioned key-value storage for quiz records.

    Versions start at 1 for the first write; an absent key has version 0.
    """

    def get(self, key: RecordKey) -> Any | None: ...

    def get_versioned(self, key: RecordKey) -> tuple[Any | None, int]: ...

    def put(self, key: RecordKey, record: Any) -> int: ...

    def compare_and_swap(self, key: RecordKey, expected_version: int, record: Any) -> bool: ...

    def commit(
        self,
        writes: Mapping[RecordKey, Any],
        expected_versions: Mapping[RecordKey, int] | None = None,
    ) -> None: ...

    def scan(self, prefix: RecordKey) -> list[tuple[RecordKey, Any]]: ...

    def delete(self, key: RecordKey) -> None: ...


class InMemoryRecordStore:
    """Thread-safe in-process :class:`RecordStore`."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: dict[RecordKey, tuple[int, Any]] = {}

    def get(self, key: RecordKey) -> Any | None:
        record, _version = self.get_versioned(key)
        return record

    def get_versioned(self, key: RecordKey) -> tuple[Any | None, int]:
        with self._lock:
            entry = self._records.get(key)
            if entry is None:
                return None, 0
            version, record = entry
            return deepcopy(record), version

    def put(self, key: RecordKey, record: Any) -> int:
        with self._lock:
            return self._write(key, record)

    def compare_and_swap(self, key: RecordKey, expected_version: int, record: Any) -> bool:
        with self._lock:
            if self._version(key) != expected_version:
                return False
            self._write(key, record)
            return True

    def commit(
        self,
        writes: Mapping[RecordKey, Any],
        expected_versions: Mapping[RecordKey, int] | None = None,
    ) -> None:
        """Write every record or none of them."""
        with self._lock:
            for key, expected in (expected_versions or {}).items():
                actual = self._version(key)
                if actual != expected:
                    raise ConcurrentModification(
                        f"Record {key!r} changed (expected version {expected}, found {actual})."
                    )
            for key, record in writes.items():
                self._write(key, record)

    def scan(self, prefix: RecordKey) -> list[tuple[RecordKey, Any]]:
        size = len(prefix)
        with self._lock:
            return [
                (key, deepcopy(record))
                for key, (_version, record) in sorted(self._records.items(), key=lambda item: item[0])
                if key[:size] == prefix
            ]

    def delete(self, key: RecordKey) -> None:
        with self._lock:
            self._records.pop(key, None)

    def _version(self, key: RecordKey) -> int:
        entry = self._records.get(key)
        return 0 if entry is None else entry[0]

    def _write(self, key: RecordKey, record: Any) -> int:
        version = self._version(key) + 1
        self._records[key] = (version, deepcopy(record))
        return version


class KeyedLocks:
    """Lazily created mutex per key, so unrelated sessions never contend."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[RecordKey, Lock] = {}

    def get(self, key: RecordKey) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: RecordKey) -> Iterator[None]:
        with self.get(key):
            yield

    def discard(self, prefix: RecordKey) -> None:
        """Forget every lock whose key starts with ``prefix``."""
        size = len(prefix)
        with self._guard:
            for key in [key for key in self._locks if key[:size] == prefix]:
                del self._locks[key]
