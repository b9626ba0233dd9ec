"""State machine owning a session's status, question sequence and timing.

The machine wraps one :class:`Session` record and is rebuilt on every request.
Time only enters as an explicit ``now`` argument: a timed question that ran out
is moved to ``reviewing`` by :meth:`SessionStateMachine.refresh` on whichever
read arrives first after the deadline.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from live_quiz.core.errors import IllegalTransition, InvalidCommand, NoMoreQuestions
from live_quiz.core.models import (
    ActivitySettings,
    PlannedQuestion,
    Session,
    SessionStatus,
    StartMethod,
)

logger = logging.getLogger(__name__)

_OPEN_STATES = frozenset(status for status in SessionStatus if status is not SessionStatus.SESSION_CLOSED)

LEGAL_STATES: dict[str, frozenset[SessionStatus]] = {
    "start_quiz": frozenset({SessionStatus.NOT_RUNNING}),
    "start_question": frozenset({SessionStatus.PREPARING, SessionStatus.REVIEWING}),
    "end_question": frozenset(
        {
            SessionStatus.RUNNING,
            SessionStatus.VOTING,
            SessionStatus.REVIEWING,
            SessionStatus.SESSION_CLOSED,
        }
    ),
    "run_voting": frozenset({SessionStatus.REVIEWING}),
    "show_answer": frozenset({SessionStatus.REVIEWING, SessionStatus.VOTING}),
    "merge_responses": frozenset({SessionStatus.RUNNING, SessionStatus.REVIEWING}),
    "merge_votes": frozenset({SessionStatus.VOTING, SessionStatus.REVIEWING}),
    "list_questions": frozenset({SessionStatus.PREPARING, SessionStatus.REVIEWING}),
    "close_session": _OPEN_STATES,
}


class SessionStateMachine:
    """Applies commands and lazy timeouts to a single session record."""

    def __init__(self, session: Session, settings: ActivitySettings) -> None:
        self._session = session
        self._settings = settings

    @property
    def session(self) -> Session:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    def ensure_legal(self, operation: str) -> None:
        allowed = LEGAL_STATES[operation]
        if self._session.status not in allowed:
            raise IllegalTransition(
                f"Cannot {operation.replace('_', ' ')} while the session is {self._session.status.value}."
            )

    # --- Timing ---

    def question_deadline(self) -> float | None:
        session = self._session
        if session.next_start_time is None or session.question_duration <= 0:
            return None
        return session.next_start_time + session.question_duration

    def has_started(self, now: float) -> bool:
        start = self._session.next_start_time
        return start is not None and now >= start

    def is_live(self, now: float) -> bool:
        """Whether answers are accepted at ``now``, without mutating anything."""
        if self._session.status is not SessionStatus.RUNNING or not self.has_started(now):
            return False
        deadline = self.question_deadline()
        return deadline is None or now < deadline

    def delay_remaining(self, now: float) -> float:
        start = self._session.next_start_time
        return 0.0 if start is None else max(0.0, start - now)

    def time_remaining(self, now: float) -> float | None:
        deadline = self.question_deadline()
        if deadline is None:
            return None
        return max(0.0, deadline - now)

    def refresh(self, now: float) -> bool:
        """End a timed question whose deadline has passed. Returns True on change."""
        if self._session.status is not SessionStatus.RUNNING:
            return False
        deadline = self.question_deadline()
        if deadline is None or now < deadline:
            return False
        self._transition(SessionStatus.REVIEWING, "question time elapsed")
        return True

    # --- Commands ---

    def start_quiz(self) -> None:
        self.ensure_legal("start_quiz")
        self._transition(SessionStatus.PREPARING, "quiz started")

    def start_question(
        self,
        method: StartMethod,
        now: float,
        *,
        slot: int | None = None,
        improvised: PlannedQuestion | None = None,
        duration: int | None = None,
    ) -> PlannedQuestion:
        """Make a question current and schedule its start after the lead-in."""
        self.ensure_legal("start_question")
        session = self._session

        if method is StartMethod.NEXT:
            if not session.has_next_question():
                raise NoMoreQuestions("There are no more planned questions.")
            target = session.plan_position + 1
        elif method is StartMethod.JUMP:
            if slot is None or not 1 <= slot <= session.planned_count:
                raise InvalidCommand(f"Slot {slot} is not a planned question.")
            target = slot
        elif method is StartMethod.REPOLL:
            if session.current_slot == 0:
                raise IllegalTransition("There is no question to repoll yet.")
            target = session.current_slot
        elif method is StartMethod.IMPROVISE:
            if improvised is None:
                raise InvalidCommand("An improvised question is required.")
            target = len(session.questions) + 1
        else:
            raise InvalidCommand(f"Unknown start method {method!r}.")

        if duration is not None and duration < 0:
            raise InvalidCommand("Question time must be an integer of 0 or above.")

        if method is StartMethod.IMPROVISE:
            session.questions.append(replace(improvised, improvised=True))
        elif method in (StartMethod.NEXT, StartMethod.JUMP):
            session.plan_position = target

        question = session.questions[target - 1]
        session.current_slot = target
        session.question_run += 1
        session.question_duration = question.duration_seconds if duration is None else duration
        session.question_started_at = now
        session.next_start_time = now + self._settings.wait_for_question_seconds
        session.votes_pending_review = False
        session.vote_round_id = None
        self._transition(SessionStatus.RUNNING, f"{method.value} to slot {target}")
        return question

    def end_question(self) -> bool:
        """End the running question or vote. Idempotent once reviewing or closed."""
        self.ensure_legal("end_question")
        status = self._session.status
        if status is SessionStatus.RUNNING:
            self._transition(SessionStatus.REVIEWING, "question ended")
            return True
        if status is SessionStatus.VOTING:
            self._session.votes_pending_review = True
            self._transition(SessionStatus.REVIEWING, "vote ended")
            return True
        return False

    def run_voting(self, round_id: str) -> None:
        self.ensure_legal("run_voting")
        self._session.vote_round_id = round_id
        self._transition(SessionStatus.VOTING, f"vote round {round_id}")

    def close(self, now: float) -> None:
        self.ensure_legal("close_session")
        self._session.is_open = False
        self._session.closed_at = now
        self._transition(SessionStatus.SESSION_CLOSED, "session closed")

    def _transition(self, status: SessionStatus, reason: str) -> None:
        previous = self._session.status
        self._session.status = status
        self._session.revision += 1
        logger.info(
            "Session %s: %s -> %s (%s)",
            self._session.session_id,
            previous.value,
            status.value,
            reason,
        )
