"""Instructor command dispatcher.

Every command goes through the same steps: the caller must hold the control
capability, the command must be legal in the session's current state, and its
payload must have the right shape. Handlers work on private copies of the
loaded records and return the records to write; nothing is stored unless the
whole command succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from live_quiz.core.auth import Authorizer
from live_quiz.core.commands import (
    CloseSession,
    Command,
    EndQuestion,
    ListImproviseQuestions,
    ListJumpQuestions,
    MergeResponses,
    RunVoting,
    ShowAnswer,
    StartQuestion,
    StartQuiz,
    UndoMerge,
)
from live_quiz.core.errors import (
    IllegalTransition,
    InvalidCommand,
    NoOpenSession,
    NotAuthorized,
    QuizError,
    UnknownBucket,
)
from live_quiz.core.models import (
    ActivitySettings,
    AggregateSnapshot,
    AggregationSpace,
    PlannedQuestion,
    Session,
    SessionStatus,
    StartMethod,
    VoteOption,
    VoteRound,
)
from live_quiz.core.services.question_bank import QuestionBank
from live_quiz.core.services.response_aggregator import (
    ResponseAggregator,
    response_space_key,
    vote_space_key,
)
from live_quiz.core.services.session_repository import SessionRepository
from live_quiz.core.services.session_state_machine import SessionStateMachine
from live_quiz.core.storage import RecordKey

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_CONTROLS: dict[SessionStatus, tuple[str, ...]] = {
    SessionStatus.NOT_RUNNING: ("startquiz", "quit"),
    SessionStatus.PREPARING: ("improvise", "jump", "fullscreen", "quit"),
    SessionStatus.RUNNING: ("end", "responses", "fullscreen"),
    SessionStatus.REVIEWING: ("answer", "vote", "repoll", "fullscreen", "improvise", "jump", "quit"),
    SessionStatus.VOTING: ("quit", "fullscreen", "answer", "responses", "end"),
    SessionStatus.SESSION_CLOSED: (),
}


def enabled_controls(session: Session) -> list[str]:
    """Whitelist of instructor controls for the session's state."""
    controls = list(_CONTROLS[session.status])
    if session.status in (SessionStatus.PREPARING, SessionStatus.REVIEWING) and session.has_next_question():
        controls.append("next")
    return controls


@dataclass(slots=True)
class MenuEntry:
    """A question offered in the jump or improvise menu."""

    name: str
    question_id: int
    time: int
    slot: int | None = None


@dataclass(slots=True)
class ControlResult:
    """Outcome of an instructor command."""

    state: str
    controls: list[str]
    slot: int | None = None
    changed: bool = False
    answer_html: str | None = None
    menu: list[MenuEntry] | None = None
    responses: AggregateSnapshot | None = None
    vote_round_id: str | None = None


@dataclass(slots=True)
class _Outcome:
    changed: bool = False
    writes: dict[RecordKey, Any] = field(default_factory=dict)
    expected: dict[RecordKey, int] = field(default_factory=dict)
    answer_html: str | None = None
    menu: list[MenuEntry] | None = None
    responses: AggregateSnapshot | None = None


class InstructorControlSurface:
    """Validates and executes instructor-only commands."""

    def __init__(
        self,
        repository: SessionRepository,
        question_bank: QuestionBank,
        authorizer: Authorizer,
        aggregator: ResponseAggregator,
        settings_for: Callable[[str], ActivitySettings],
        clock: Clock,
    ) -> None:
        self._repository = repository
        self._questions = question_bank
        self._authorizer = authorizer
        self._aggregator = aggregator
        self._settings_for = settings_for
        self._clock = clock
        self._handlers: dict[type, Callable[[SessionStateMachine, Any, float], _Outcome]] = {
            StartQuiz: self._start_quiz,
            StartQuestion: self._start_question,
            EndQuestion: self._end_question,
            RunVoting: self._run_voting,
            ShowAnswer: self._show_answer,
            MergeResponses: self._merge,
            UndoMerge: self._undo_merge,
            CloseSession: self._close_session,
            ListJumpQuestions: self._list_jump_questions,
            ListImproviseQuestions: self._list_improvise_questions,
        }

    def execute(
        self, activity_id: str, caller_id: str, command: Command, session_id: str | None = None
    ) -> ControlResult:
        """Run ``command`` against the open session, or against ``session_id`` when given.

        Naming the session lets commands sent after a close reach the closed
        record, where they are checked like in any other state.
        """
        if not self._authorizer.is_instructor(caller_id, activity_id):
            raise NotAuthorized("Only the instructor can control the quiz.")
        handler = self._handlers.get(type(command))
        if handler is None:
            raise InvalidCommand(f"Unsupported command {type(command).__name__}.")

        now = self._clock()
        with self._repository.session_lock(activity_id):
            session, version = self._load_target(activity_id, session_id)
            machine = SessionStateMachine(session, self._settings_for(activity_id))
            refreshed = machine.refresh(now)
            try:
                machine.ensure_legal(command.operation)
                command.validate()
                outcome = handler(machine, command, now)
            except QuizError as exc:
                logger.warning(
                    "Rejected %s for session %s in state %s: %s",
                    type(command).__name__,
                    session.session_id,
                    session.status.value,
                    exc,
                )
                raise

            writes = dict(outcome.writes)
            expected = dict(outcome.expected)
            if outcome.changed or refreshed:
                writes[self._repository.session_key(activity_id, session.session_id)] = session
                expected[self._repository.session_key(activity_id, session.session_id)] = version
                if not session.is_open:
                    writes[self._repository.open_pointer_key(activity_id)] = None
            if writes:
                self._repository.commit(writes, expected)
            if outcome.changed and not session.is_open:
                self._repository.release_session(activity_id, session.session_id)

        return ControlResult(
            state=session.status.value,
            controls=enabled_controls(session),
            slot=session.current_slot or None,
            changed=outcome.changed,
            answer_html=outcome.answer_html,
            menu=outcome.menu,
            responses=outcome.responses,
            vote_round_id=session.vote_round_id,
        )

    # --- Handlers ---

    def _start_quiz(self, machine: SessionStateMachine, command: StartQuiz, now: float) -> _Outcome:
        session = machine.session
        plan = self._questions.planned_questions(session.activity_id)
        machine.start_quiz()
        session.questions = plan
        session.planned_count = len(plan)
        return _Outcome(changed=True)

    def _start_question(self, machine: SessionStateMachine, command: StartQuestion, now: float) -> _Outcome:
        session = machine.session
        improvised = None
        slot = command.slot
        if command.method is StartMethod.IMPROVISE:
            question = self._questions.get_question(command.question_id)
            if not question.improvisable:
                raise InvalidCommand(f"Question {question.id} is not offered for improvisation.")
            improvised = PlannedQuestion(
                question_id=question.id,
                duration_seconds=question.duration_seconds,
                max_tries=question.max_tries,
                improvised=True,
            )
        elif command.method is StartMethod.JUMP and slot is None:
            slot = self._planned_slot_for(session, command.question_id)

        planned = machine.start_question(
            command.method,
            now,
            slot=slot,
            improvised=improvised,
            duration=command.duration,
        )
        space = self._aggregator.new_space(
            session.current_slot,
            session.question_run,
            self._questions.question_type(planned.question_id),
        )
        key = self._repository.space_key(session.activity_id, session.session_id, space.key)
        return _Outcome(changed=True, writes={key: space}, expected={key: 0})

    def _end_question(self, machine: SessionStateMachine, command: EndQuestion, now: float) -> _Outcome:
        return _Outcome(changed=machine.end_question())

    def _run_voting(self, machine: SessionStateMachine, command: RunVoting, now: float) -> _Outcome:
        session = machine.session
        space, _version = self._current_space(session)
        options: list[VoteOption] = []
        for bucket_id in command.bucket_ids:
            bucket = space.find_bucket(bucket_id)
            if bucket is None:
                raise UnknownBucket(f"Response {bucket_id} does not exist.")
            options.append(VoteOption(bucket_id=bucket.bucket_id, text=bucket.text, original_count=bucket.count))

        vote_round = VoteRound(
            round_id=uuid4().hex,
            slot=session.current_slot,
            run=session.question_run,
            options=options,
            created_at=now,
        )
        vote_space = self._aggregator.new_vote_space(vote_round, space.question_type)
        machine.run_voting(vote_round.round_id)
        round_key = self._repository.vote_round_key(session.activity_id, session.session_id, vote_round.round_id)
        space_key = self._repository.space_key(session.activity_id, session.session_id, vote_space.key)
        return _Outcome(
            changed=True,
            writes={round_key: vote_round, space_key: vote_space},
            expected={round_key: 0, space_key: 0},
        )

    def _show_answer(self, machine: SessionStateMachine, command: ShowAnswer, now: float) -> _Outcome:
        current = machine.session.current_question()
        if current is None:
            raise IllegalTransition("No question has been asked yet.")
        return _Outcome(answer_html=self._questions.render_answer(current.question_id))

    def _merge(self, machine: SessionStateMachine, command: MergeResponses, now: float) -> _Outcome:
        return self._mutate_space(
            machine.session,
            command.votes,
            lambda space: self._aggregator.merge(space, command.from_id, command.into_id),
        )

    def _undo_merge(self, machine: SessionStateMachine, command: UndoMerge, now: float) -> _Outcome:
        return self._mutate_space(machine.session, command.votes, self._aggregator.undo_last_merge)

    def _close_session(self, machine: SessionStateMachine, command: CloseSession, now: float) -> _Outcome:
        session = machine.session
        machine.close(now)
        writes: dict[RecordKey, Any] = {}
        for attempt in self._repository.attempts(session.activity_id, session.session_id):
            if attempt.is_open:
                attempt.is_open = False
                key = self._repository.attempt_key(session.activity_id, session.session_id, attempt.participant_id)
                writes[key] = attempt
        return _Outcome(changed=True, writes=writes)

    def _list_jump_questions(self, machine: SessionStateMachine, command: ListJumpQuestions, now: float) -> _Outcome:
        session = machine.session
        menu = []
        for slot, planned in enumerate(session.questions[: session.planned_count], start=1):
            question = self._questions.get_question(planned.question_id)
            menu.append(MenuEntry(name=question.name, question_id=question.id, time=planned.duration_seconds, slot=slot))
        return _Outcome(menu=menu)

    def _list_improvise_questions(
        self, machine: SessionStateMachine, command: ListImproviseQuestions, now: float
    ) -> _Outcome:
        questions = self._questions.improvisable_questions(machine.session.activity_id)
        return _Outcome(
            menu=[MenuEntry(name=q.name, question_id=q.id, time=q.duration_seconds) for q in questions]
        )

    # --- Helpers ---

    def _load_target(self, activity_id: str, session_id: str | None) -> tuple[Session, int]:
        if session_id is None:
            return self._repository.load_open_session(activity_id)
        session, version = self._repository.load_session(activity_id, session_id)
        if session is None:
            raise NoOpenSession(f"Session {session_id} does not exist.")
        return session, version

    @staticmethod
    def _planned_slot_for(session: Session, question_id: int | None) -> int:
        for slot, planned in enumerate(session.questions[: session.planned_count], start=1):
            if planned.question_id == question_id:
                return slot
        raise InvalidCommand(f"Question {question_id} is not part of the plan.")

    def _current_space(self, session: Session) -> tuple[AggregationSpace, int]:
        key = response_space_key(session.current_slot, session.question_run)
        space, version = self._repository.load_space(session.activity_id, session.session_id, key)
        if space is None:
            raise IllegalTransition("No question has been asked yet.")
        return space, version

    def _mutate_space(self, session: Session, votes: bool, mutate: Callable[[AggregationSpace], Any]) -> _Outcome:
        if votes:
            if session.vote_round_id is None:
                raise IllegalTransition("There is no vote round to change.")
            space_key = vote_space_key(session.vote_round_id)
        else:
            space_key = response_space_key(session.current_slot, session.question_run)

        with self._repository.space_lock(session.activity_id, session.session_id, space_key):
            space, version = self._repository.load_space(session.activity_id, session.session_id, space_key)
            if space is None:
                raise IllegalTransition("No question has been asked yet.")
            mutate(space)
            key = self._repository.space_key(session.activity_id, session.session_id, space_key)
            # Commit while still holding the space lock so submissions cannot interleave.
            self._repository.commit({key: space}, {key: version})

        attempts = self._repository.attempts(session.activity_id, session.session_id)
        return _Outcome(responses=self._aggregator.snapshot(space, len(attempts)))
