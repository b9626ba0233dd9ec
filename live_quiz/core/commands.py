"""Instructor commands accepted by the control surface.

Each command is a frozen dataclass naming the state-machine operation it is
checked against and validating its own payload. The set is closed: the control
surface keeps one handler per class and rejects anything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from live_quiz.core.errors import EmptyVoteSelection, InvalidCommand
from live_quiz.core.models import StartMethod


@dataclass(frozen=True, slots=True)
class StartQuiz:
    operation: ClassVar[str] = "start_quiz"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class StartQuestion:
    method: StartMethod
    question_id: int | None = None
    duration: int | None = None
    slot: int | None = None

    operation: ClassVar[str] = "start_question"

    def validate(self) -> None:
        if self.duration is not None and self.duration < 0:
            raise InvalidCommand("Question time must be an integer of 0 or above.")
        if self.method is StartMethod.JUMP and self.slot is None and self.question_id is None:
            raise InvalidCommand("Jumping requires a slot or a question id.")
        if self.method is StartMethod.IMPROVISE and self.question_id is None:
            raise InvalidCommand("Improvising requires a question id.")


@dataclass(frozen=True, slots=True)
class EndQuestion:
    operation: ClassVar[str] = "end_question"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class RunVoting:
    bucket_ids: tuple[int, ...]

    operation: ClassVar[str] = "run_voting"

    def validate(self) -> None:
        if not self.bucket_ids:
            raise EmptyVoteSelection("Select at least one response to vote on.")
        if len(set(self.bucket_ids)) != len(self.bucket_ids):
            raise InvalidCommand("Each response can only be selected once.")


@dataclass(frozen=True, slots=True)
class ShowAnswer:
    operation: ClassVar[str] = "show_answer"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class MergeResponses:
    from_id: int
    into_id: int
    votes: bool = False

    @property
    def operation(self) -> str:
        return "merge_votes" if self.votes else "merge_responses"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class UndoMerge:
    votes: bool = False

    @property
    def operation(self) -> str:
        return "merge_votes" if self.votes else "merge_responses"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class CloseSession:
    operation: ClassVar[str] = "close_session"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class ListJumpQuestions:
    operation: ClassVar[str] = "list_questions"

    def validate(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class ListImproviseQuestions:
    operation: ClassVar[str] = "list_questions"

    def validate(self) -> None:
        return None


Command = Union[
    StartQuiz,
    StartQuestion,
    EndQuestion,
    RunVoting,
    ShowAnswer,
    MergeResponses,
    UndoMerge,
    CloseSession,
    ListJumpQuestions,
    ListImproviseQuestions,
]
