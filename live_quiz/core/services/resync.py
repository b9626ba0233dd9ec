"""Computes what a polling client should be showing right now.

Clients poll on a fixed interval and may reload or reconnect at any moment,
so a snapshot is derived only from the stored session, the participant's
attempt and the current time. Nothing about earlier polls is trusted except
the per-connection revision used for the "is new state" flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from live_quiz.constants.quiz_constants import POLL_INTERVAL_MS
from live_quiz.core.models import (
    AggregateSnapshot,
    Attempt,
    Session,
    SessionStatus,
)
from live_quiz.core.services.session_state_machine import SessionStateMachine

WAIT_FOR_QUESTION = "waitForQuestion"
START_QUESTION = "startQuestion"

_MESSAGES = {
    SessionStatus.NOT_RUNNING: "Please wait for the instructor to start the quiz.",
    SessionStatus.PREPARING: "Please wait for the instructor to start the next question.",
    SessionStatus.REVIEWING: "The instructor is reviewing the responses. Please wait for the next question.",
    SessionStatus.VOTING: "Vote for the response you think is best.",
    SessionStatus.SESSION_CLOSED: "Session is now closed.",
}


@dataclass(slots=True)
class QuestionView:
    """Opaque markup plus the type tag of the current question."""

    question_id: int
    question_type: str
    html: str


@dataclass(slots=True)
class ResyncSnapshot:
    """Everything a client needs to render the current moment."""

    state: str
    revision: int
    is_new_state: bool
    message: str | None = None
    participant_count: int | None = None
    slot: int | None = None
    action: str | None = None
    delay_ms: int | None = None
    duration_ms: int | None = None
    remaining_ms: int | None = None
    tries_left: int | None = None
    unlimited_tries: bool = False
    has_answered: bool = False
    question: QuestionView | None = None
    responses: AggregateSnapshot | None = None
    votes: AggregateSnapshot | None = None
    show_votes_first: bool = False
    controls: list[str] = field(default_factory=list)
    poll_interval_ms: int = POLL_INTERVAL_MS


def _to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


class ResyncProtocol:
    """Builds :class:`ResyncSnapshot` objects from stored state."""

    def build(
        self,
        session: Session,
        machine: SessionStateMachine,
        now: float,
        *,
        attempt: Attempt | None,
        is_new_state: bool,
        participant_count: int,
        question: QuestionView | None = None,
        responses: AggregateSnapshot | None = None,
        votes: AggregateSnapshot | None = None,
        controls: list[str] | None = None,
    ) -> ResyncSnapshot:
        status = session.status
        snapshot = ResyncSnapshot(
            state=status.value,
            revision=session.revision,
            is_new_state=is_new_state,
            message=_MESSAGES.get(status),
            controls=list(controls or []),
        )

        if status is SessionStatus.NOT_RUNNING:
            snapshot.participant_count = participant_count
            return snapshot

        if status in (SessionStatus.PREPARING, SessionStatus.SESSION_CLOSED):
            return snapshot

        snapshot.slot = session.current_slot
        answered = attempt is not None and attempt.tries_for(session.current_slot, session.question_run) > 0

        if status is SessionStatus.RUNNING:
            duration_ms = _to_ms(session.question_duration) if session.question_duration > 0 else None
            if not machine.has_started(now):
                snapshot.action = WAIT_FOR_QUESTION
                snapshot.delay_ms = _to_ms(machine.delay_remaining(now))
                snapshot.duration_ms = duration_ms
                snapshot.message = "Waiting for the question to be sent."
                return snapshot

            snapshot.action = START_QUESTION
            snapshot.duration_ms = duration_ms
            remaining = machine.time_remaining(now)
            snapshot.remaining_ms = None if remaining is None else _to_ms(remaining)
            snapshot.question = question
            snapshot.message = None
            self._apply_tries(snapshot, session, attempt)
            snapshot.has_answered = answered
            snapshot.responses = responses
            return snapshot

        # reviewing or voting
        snapshot.has_answered = answered
        snapshot.question = question
        snapshot.responses = responses
        snapshot.votes = votes
        snapshot.show_votes_first = status is SessionStatus.REVIEWING and session.votes_pending_review
        return snapshot

    @staticmethod
    def _apply_tries(snapshot: ResyncSnapshot, session: Session, attempt: Attempt | None) -> None:
        current = session.current_question()
        max_tries = None if current is None else current.max_tries
        if max_tries is None:
            snapshot.unlimited_tries = True
            snapshot.tries_left = None
            return
        used = 0 if attempt is None else attempt.tries_for(session.current_slot, session.question_run)
        snapshot.tries_left = max(0, max_tries - used)
