"""Business logic shared by every request handler.

The manager holds no quiz state of its own. Each call loads the records it
needs from the store, runs them through the state machine, aggregator or
resync protocol, and commits the result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from uuid import uuid4

from live_quiz.core.auth import Authorizer, StaticRoster
from live_quiz.core.commands import Command
from live_quiz.core.errors import (
    ConcurrentModification,
    NoOpenSession,
    NotAuthorized,
    NotJoined,
    QuestionNotLive,
)
from live_quiz.core.models import (
    ActivitySettings,
    AggregateSnapshot,
    AggregationSpace,
    Attempt,
    QuestionDefinition,
    Session,
    SessionStatus,
)
from live_quiz.core.services.control_surface import (
    ControlResult,
    InstructorControlSurface,
    enabled_controls,
)
from live_quiz.core.services.question_bank import QuestionBank
from live_quiz.core.services.response_aggregator import (
    ResponseAggregator,
    response_space_key,
    vote_space_key,
)
from live_quiz.core.services.resync import QuestionView, ResyncProtocol, ResyncSnapshot
from live_quiz.core.services.session_repository import SessionRepository
from live_quiz.core.services.session_state_machine import SessionStateMachine
from live_quiz.core.storage import InMemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmissionReceipt:
    """Returned to a student after an accepted answer or vote."""

    slot: int
    bucket_id: int
    tries_left: int | None
    submitted_at: float


@dataclass(slots=True)
class ResultsView:
    """Instructor view of the current responses."""

    responses: AggregateSnapshot | None
    has_votes: bool


class QuizManager:
    """Facade over the question bank, session records and quiz services."""

    def __init__(
        self,
        question_bank: QuestionBank | None = None,
        store: RecordStore | None = None,
        authorizer: Authorizer | None = None,
        clock: Callable[[], float] = time.time,
        settings: ActivitySettings | None = None,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._default_settings = settings or ActivitySettings()
        self._activity_settings: dict[str, ActivitySettings] = {}

        # Services
        self._questions = question_bank or QuestionBank()
        self._authorizer = authorizer or StaticRoster()
        self._repository = SessionRepository(store or InMemoryRecordStore())
        self._aggregator = ResponseAggregator()
        self._resync = ResyncProtocol()
        self._controls = InstructorControlSurface(
            repository=self._repository,
            question_bank=self._questions,
            authorizer=self._authorizer,
            aggregator=self._aggregator,
            settings_for=self.settings_for,
            clock=clock,
        )

    # --- Question Bank Delegation ---

    def load_quiz_from_questions(self, activity_id: str, questions: list[QuestionDefinition]) -> list[QuestionDefinition]:
        default_duration = self.settings_for(activity_id).default_question_seconds
        return self._questions.load_questions(activity_id, questions, default_duration)

    def get_loaded_questions(self, activity_id: str) -> list[QuestionDefinition]:
        return self._questions.get_questions(activity_id)

    # --- Settings ---

    def configure_activity(self, activity_id: str, settings: ActivitySettings) -> None:
        with self._lock:
            self._activity_settings[activity_id] = settings

    def settings_for(self, activity_id: str) -> ActivitySettings:
        with self._lock:
            return self._activity_settings.get(activity_id, self._default_settings)

    # --- Sessions ---

    def is_instructor(self, participant_id: str, activity_id: str) -> bool:
        return self._authorizer.is_instructor(participant_id, activity_id)

    def open_session(self, activity_id: str, caller_id: str, name: str) -> Session:
        """Create the activity's open session in the ``notrunning`` state."""
        if not self.is_instructor(caller_id, activity_id):
            raise NotAuthorized("Only the instructor can start a session.")
        session = Session(
            session_id=uuid4().hex,
            activity_id=activity_id,
            name=name.strip() or "Session",
            created_at=self._clock(),
        )
        with self._repository.session_lock(activity_id):
            self._repository.create_session(session)
        logger.info("Opened session %s (%s) for activity %s", session.session_id, session.name, activity_id)
        return session

    def get_open_session(self, activity_id: str) -> Session | None:
        """The open session with lazy timeouts applied, or None."""
        try:
            session, _version = self._load_fresh_session(activity_id)
        except NoOpenSession:
            return None
        return session

    def join(self, activity_id: str, participant_id: str) -> Attempt:
        """Return the participant's open attempt, creating it on first join."""
        session, _version = self._repository.load_open_session(activity_id)
        attempt, version = self._repository.load_attempt(activity_id, session.session_id, participant_id)
        if attempt is not None and attempt.is_open:
            return attempt
        attempt = Attempt(
            participant_id=participant_id,
            activity_id=activity_id,
            session_id=session.session_id,
            joined_at=self._clock(),
        )
        try:
            self._repository.save_attempt(attempt, version)
        except ConcurrentModification:
            # Another request of the same participant joined first.
            existing, _version = self._repository.load_attempt(activity_id, session.session_id, participant_id)
            if existing is None:
                raise
            return existing
        logger.info("Participant %s joined session %s", participant_id, session.session_id)
        return attempt

    # --- Instructor Commands ---

    def execute(
        self, activity_id: str, caller_id: str, command: Command, session_id: str | None = None
    ) -> ControlResult:
        return self._controls.execute(activity_id, caller_id, command, session_id=session_id)

    def get_results(self, activity_id: str, caller_id: str, slot: int | None = None) -> ResultsView:
        """Responses of the current question run, or of the latest run of ``slot``."""
        self._require_instructor(caller_id, activity_id)
        session, _version = self._load_fresh_session(activity_id)
        enrolled = len(self._repository.attempts(activity_id, session.session_id))
        if slot is None or slot == session.current_slot:
            space_key = response_space_key(session.current_slot, session.question_run)
            space, _space_version = self._repository.load_space(activity_id, session.session_id, space_key)
        else:
            space = self._latest_space_for_slot(session, slot)
        responses = None if space is None else self._aggregator.snapshot(space, enrolled)
        return ResultsView(responses=responses, has_votes=session.vote_round_id is not None)

    def get_vote_results(self, activity_id: str, caller_id: str) -> AggregateSnapshot | None:
        self._require_instructor(caller_id, activity_id)
        session, _version = self._load_fresh_session(activity_id)
        return self._vote_snapshot(session)

    # --- Student Submissions ---

    def submit_response(self, activity_id: str, participant_id: str, raw_text: str) -> SubmissionReceipt:
        now = self._clock()
        session, session_version = self._repository.load_open_session(activity_id)
        machine = SessionStateMachine(session, self.settings_for(activity_id))
        if not machine.is_live(now):
            raise QuestionNotLive("Please wait for the instructor to start the next question.")

        current = session.current_question()
        space_key = response_space_key(session.current_slot, session.question_run)
        with self._repository.space_lock(activity_id, session.session_id, space_key):
            attempt, attempt_version = self._require_attempt(session, participant_id)
            space, space_version = self._repository.load_space(activity_id, session.session_id, space_key)
            if space is None:
                raise QuestionNotLive("Please wait for the instructor to start the next question.")
            bucket = self._aggregator.submit(
                space,
                attempt,
                raw_text,
                max_tries=current.max_tries,
                submitted_at=now,
            )
            self._commit_submission(session, session_version, space_key, space, space_version, attempt, attempt_version)

        tries_left = None
        if current.max_tries is not None:
            tries_left = max(0, current.max_tries - attempt.tries_for(session.current_slot, session.question_run))
        return SubmissionReceipt(
            slot=session.current_slot,
            bucket_id=bucket.bucket_id,
            tries_left=tries_left,
            submitted_at=now,
        )

    def submit_vote(self, activity_id: str, participant_id: str, bucket_id: int) -> SubmissionReceipt:
        now = self._clock()
        session, session_version = self._repository.load_open_session(activity_id)
        if session.status is not SessionStatus.VOTING or session.vote_round_id is None:
            raise QuestionNotLive("There is no vote running right now.")

        round_id = session.vote_round_id
        space_key = vote_space_key(round_id)
        with self._repository.space_lock(activity_id, session.session_id, space_key):
            attempt, attempt_version = self._require_attempt(session, participant_id)
            space, space_version = self._repository.load_space(activity_id, session.session_id, space_key)
            if space is None:
                raise QuestionNotLive("There is no vote running right now.")
            bucket = self._aggregator.vote(space, attempt, round_id, bucket_id, submitted_at=now)
            self._commit_submission(session, session_version, space_key, space, space_version, attempt, attempt_version)

        return SubmissionReceipt(slot=session.current_slot, bucket_id=bucket.bucket_id, tries_left=0, submitted_at=now)

    # --- Polling ---

    def poll(
        self,
        activity_id: str,
        participant_id: str,
        connection_id: str | None = None,
        session_id: str | None = None,
    ) -> ResyncSnapshot:
        """What the caller should be showing right now.

        ``session_id`` lets a client that knew a session keep receiving the
        closed notice after the activity's open-session pointer is released.
        """
        now = self._clock()
        try:
            session, _version = self._load_fresh_session(activity_id, now)
        except NoOpenSession:
            if session_id is None:
                raise
            session, _version = self._repository.load_session(activity_id, session_id)
            if session is None:
                raise

        machine = SessionStateMachine(session, self.settings_for(activity_id))
        is_instructor = self.is_instructor(participant_id, activity_id)
        attempt, _attempt_version = self._repository.load_attempt(activity_id, session.session_id, participant_id)
        attempts = self._repository.attempts(activity_id, session.session_id)
        previous = None
        if session.is_open:
            previous = self._repository.swap_seen_revision(
                activity_id, session.session_id, connection_id or participant_id, session.revision
            )

        status = session.status
        question = None
        responses = None
        votes = None
        if status in (SessionStatus.RUNNING, SessionStatus.REVIEWING, SessionStatus.VOTING):
            if status is not SessionStatus.RUNNING or machine.has_started(now):
                question = self._question_view(session)
            if status is not SessionStatus.RUNNING or is_instructor:
                space_key = response_space_key(session.current_slot, session.question_run)
                space, _space_version = self._repository.load_space(activity_id, session.session_id, space_key)
                if space is not None:
                    responses = self._aggregator.snapshot(space, len(attempts))
                votes = self._vote_snapshot(session, len(attempts))

        return self._resync.build(
            session,
            machine,
            now,
            attempt=attempt,
            is_new_state=previous != session.revision,
            participant_count=len(attempts),
            question=question,
            responses=responses,
            votes=votes,
            controls=enabled_controls(session) if is_instructor else None,
        )

    # --- Helpers ---

    def _load_fresh_session(self, activity_id: str, now: float | None = None) -> tuple[Session, int]:
        """Load the open session and commit any timeout that has become due.

        Reads go without the session lock; only a read that finds a due
        transition takes it, re-checks, and commits with compare-and-swap so
        concurrent pollers crossing the same deadline commit it exactly once.
        """
        now = self._clock() if now is None else now
        settings = self.settings_for(activity_id)
        session, version = self._repository.load_open_session(activity_id)
        if not SessionStateMachine(session, settings).refresh(now):
            return session, version

        with self._repository.session_lock(activity_id):
            session, version = self._repository.load_open_session(activity_id)
            if SessionStateMachine(session, settings).refresh(now):
                if self._repository.try_commit_session(session, version):
                    version += 1
                else:
                    session, version = self._repository.load_open_session(activity_id)
        return session, version

    def _require_instructor(self, caller_id: str, activity_id: str) -> None:
        if not self.is_instructor(caller_id, activity_id):
            raise NotAuthorized("Only the instructor can view the results.")

    def _require_attempt(self, session: Session, participant_id: str) -> tuple[Attempt, int]:
        attempt, version = self._repository.load_attempt(session.activity_id, session.session_id, participant_id)
        if attempt is None or not attempt.is_open:
            raise NotJoined("Join the quiz before answering.")
        return attempt, version

    def _commit_submission(
        self,
        session: Session,
        session_version: int,
        space_key: str,
        space: AggregationSpace,
        space_version: int,
        attempt: Attempt,
        attempt_version: int,
    ) -> None:
        repo = self._repository
        activity_id = session.activity_id
        space_record_key = repo.space_key(activity_id, session.session_id, space_key)
        attempt_key = repo.attempt_key(activity_id, session.session_id, attempt.participant_id)
        session_key = repo.session_key(activity_id, session.session_id)
        try:
            repo.commit(
                {space_record_key: space, attempt_key: attempt},
                {
                    space_record_key: space_version,
                    attempt_key: attempt_version,
                    session_key: session_version,
                },
            )
        except ConcurrentModification as exc:
            # The session moved on (question ended, vote closed) after we read it.
            raise QuestionNotLive("The question is no longer accepting answers.") from exc

    def _question_view(self, session: Session) -> QuestionView | None:
        current = session.current_question()
        if current is None:
            return None
        return QuestionView(
            question_id=current.question_id,
            question_type=self._questions.question_type(current.question_id),
            html=self._questions.render_question(current.question_id),
        )

    def _vote_snapshot(self, session: Session, enrolled: int | None = None) -> AggregateSnapshot | None:
        if session.vote_round_id is None:
            return None
        space, _version = self._repository.load_space(
            session.activity_id, session.session_id, vote_space_key(session.vote_round_id)
        )
        if space is None:
            return None
        if enrolled is None:
            enrolled = len(self._repository.attempts(session.activity_id, session.session_id))
        return self._aggregator.snapshot(space, enrolled)

    def _latest_space_for_slot(self, session: Session, slot: int) -> AggregationSpace | None:
        spaces = [
            space
            for space in self._repository.spaces(session.activity_id, session.session_id)
            if space.slot == slot and space.key == response_space_key(space.slot, space.run)
        ]
        if not spaces:
            return None
        return max(spaces, key=lambda space: space.run)
