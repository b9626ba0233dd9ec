"""Typed access to the session records kept in the record store."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from live_quiz.core.errors import ConcurrentModification, NoOpenSession, SessionAlreadyOpen
from live_quiz.core.models import AggregationSpace, Attempt, Session
from live_quiz.core.storage import KeyedLocks, RecordKey, RecordStore


class SessionRepository:
    """Builds record keys, loads records and commits them with version checks."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._locks = KeyedLocks()

    # --- Keys ---

    @staticmethod
    def open_pointer_key(activity_id: str) -> RecordKey:
        return ("open_session", activity_id)

    @staticmethod
    def session_key(activity_id: str, session_id: str) -> RecordKey:
        return ("session", activity_id, session_id)

    @staticmethod
    def attempt_key(activity_id: str, session_id: str, participant_id: str) -> RecordKey:
        return ("attempt", activity_id, session_id, participant_id)

    @staticmethod
    def space_key(activity_id: str, session_id: str, space_key: str) -> RecordKey:
        return ("space", activity_id, session_id, space_key)

    @staticmethod
    def vote_round_key(activity_id: str, session_id: str, round_id: str) -> RecordKey:
        return ("vote_round", activity_id, session_id, round_id)

    @staticmethod
    def connection_key(activity_id: str, session_id: str, connection_id: str) -> RecordKey:
        return ("connection", activity_id, session_id, connection_id)

    # --- Locks ---

    def session_lock(self, activity_id: str):
        """Single-writer lock for the activity's open session."""
        return self._locks.hold(("session-lock", activity_id))

    def space_lock(self, activity_id: str, session_id: str, space_key: str):
        return self._locks.hold(("space-lock", activity_id, session_id, space_key))

    # --- Sessions ---

    def open_session_id(self, activity_id: str) -> str | None:
        return self._store.get(self.open_pointer_key(activity_id))

    def load_open_session(self, activity_id: str) -> tuple[Session, int]:
        session_id = self.open_session_id(activity_id)
        if session_id is None:
            raise NoOpenSession(f"Activity {activity_id} has no open session.")
        session, version = self._store.get_versioned(self.session_key(activity_id, session_id))
        if session is None:
            raise NoOpenSession(f"Session {session_id} no longer exists.")
        return session, version

    def load_session(self, activity_id: str, session_id: str) -> tuple[Session | None, int]:
        return self._store.get_versioned(self.session_key(activity_id, session_id))

    def create_session(self, session: Session) -> None:
        """Store a new session and point the activity at it."""
        pointer_key = self.open_pointer_key(session.activity_id)
        current, pointer_version = self._store.get_versioned(pointer_key)
        if current is not None:
            raise SessionAlreadyOpen(f"Activity {session.activity_id} already has an open session.")
        self._store.commit(
            {
                pointer_key: session.session_id,
                self.session_key(session.activity_id, session.session_id): session,
            },
            {pointer_key: pointer_version},
        )

    def try_commit_session(self, session: Session, version: int) -> bool:
        """Commit a lazily derived change; False if another writer got there first."""
        key = self.session_key(session.activity_id, session.session_id)
        return self._store.compare_and_swap(key, version, session)

    # --- Attempts ---

    def load_attempt(self, activity_id: str, session_id: str, participant_id: str) -> tuple[Attempt | None, int]:
        return self._store.get_versioned(self.attempt_key(activity_id, session_id, participant_id))

    def save_attempt(self, attempt: Attempt, version: int) -> None:
        key = self.attempt_key(attempt.activity_id, attempt.session_id, attempt.participant_id)
        if not self._store.compare_and_swap(key, version, attempt):
            raise ConcurrentModification(f"Attempt for {attempt.participant_id} changed concurrently.")

    def attempts(self, activity_id: str, session_id: str) -> list[Attempt]:
        return [record for _key, record in self._store.scan(("attempt", activity_id, session_id))]

    # --- Aggregation ---

    def load_space(self, activity_id: str, session_id: str, space_key: str) -> tuple[AggregationSpace | None, int]:
        return self._store.get_versioned(self.space_key(activity_id, session_id, space_key))

    def spaces(self, activity_id: str, session_id: str) -> list[AggregationSpace]:
        return [record for _key, record in self._store.scan(("space", activity_id, session_id))]

    def commit(self, writes: Mapping[RecordKey, Any], expected_versions: Mapping[RecordKey, int]) -> None:
        self._store.commit(writes, expected_versions)

    # --- Connections ---

    def swap_seen_revision(self, activity_id: str, session_id: str, connection_id: str, revision: int) -> int | None:
        """Record the revision a connection has now seen; return the previous one."""
        key = self.connection_key(activity_id, session_id, connection_id)
        previous = self._store.get(key)
        if previous != revision:
            self._store.put(key, revision)
        return previous

    def release_session(self, activity_id: str, session_id: str) -> None:
        """Drop the connection records and space locks of a closed session."""
        for key, _record in self._store.scan(("connection", activity_id, session_id)):
            self._store.delete(key)
        self._locks.discard(("space-lock", activity_id, session_id))
