"""Domain models for the live quiz."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from live_quiz.constants.quiz_constants import (
    DEFAULT_QUESTION_TIME_SECONDS,
    WAIT_FOR_QUESTION_SECONDS,
)


class SessionStatus(str, Enum):
    """States a session moves through."""

    NOT_RUNNING = "notrunning"
    PREPARING = "preparing"
    RUNNING = "running"
    REVIEWING = "reviewing"
    VOTING = "voting"
    SESSION_CLOSED = "sessionclosed"


class StartMethod(str, Enum):
    """Ways the instructor can start a question."""

    NEXT = "next"
    REPOLL = "repoll"
    JUMP = "jump"
    IMPROVISE = "improvise"


@dataclass(slots=True)
class ActivitySettings:
    """Per-activity timing configuration."""

    wait_for_question_seconds: int = WAIT_FOR_QUESTION_SECONDS
    default_question_seconds: int = DEFAULT_QUESTION_TIME_SECONDS


@dataclass(slots=True)
class QuestionDefinition:
    """A question known to the question bank."""

    id: int
    name: str
    question_text: str
    question_type: str
    correct_answer: str | None = None
    duration_seconds: int | None = None  # None takes the activity default, 0 means untimed
    max_tries: int | None = None  # None means unlimited
    improvisable: bool = False


@dataclass(slots=True)
class PlannedQuestion:
    """One item in a session's question sequence."""

    question_id: int
    duration_seconds: int = 0
    max_tries: int | None = None
    improvised: bool = False


@dataclass(slots=True)
class Session:
    """Authoritative state of one live quiz session."""

    session_id: str
    activity_id: str
    name: str
    created_at: float
    status: SessionStatus = SessionStatus.NOT_RUNNING
    questions: list[PlannedQuestion] = field(default_factory=list)
    planned_count: int = 0
    current_slot: int = 0  # 1-based, 0 until the first question
    plan_position: int = 0
    question_run: int = 0
    question_duration: int = 0
    question_started_at: float | None = None
    next_start_time: float | None = None
    votes_pending_review: bool = False
    vote_round_id: str | None = None
    is_open: bool = True
    revision: int = 0
    closed_at: float | None = None

    def current_question(self) -> PlannedQuestion | None:
        if self.current_slot == 0:
            return None
        return self.questions[self.current_slot - 1]

    def has_next_question(self) -> bool:
        return self.plan_position < self.planned_count


@dataclass(slots=True)
class Attempt:
    """Binds a participant to a session and tracks their tries."""

    participant_id: str
    activity_id: str
    session_id: str
    joined_at: float
    is_open: bool = True
    tries_used: dict[tuple[int, int], int] = field(default_factory=dict)
    votes_cast: dict[str, int] = field(default_factory=dict)

    def tries_for(self, slot: int, run: int) -> int:
        return self.tries_used.get((slot, run), 0)

    def record_try(self, slot: int, run: int) -> None:
        self.tries_used[(slot, run)] = self.tries_for(slot, run) + 1


@dataclass(slots=True)
class RawResponse:
    """A single submission as it arrived."""

    participant_id: str
    slot: int
    normalized_text: str
    raw_text: str
    submitted_at: float


@dataclass(slots=True)
class ResponseBucket:
    """Normalized-identical responses sharing a count."""

    bucket_id: int
    text: str
    members: list[str] = field(default_factory=list)
    count: int = 0


@dataclass(slots=True)
class MergeRecord:
    """Everything needed to reverse the latest merge."""

    from_bucket: ResponseBucket
    from_position: int
    into_id: int
    moved_count: int
    moved_members: list[str]
    # Responses recorded before the merge; later ones may match moved texts.
    response_index: int = 0


@dataclass(slots=True)
class AggregationSpace:
    """Buckets and raw responses of one question run or one vote round."""

    key: str
    slot: int
    run: int
    question_type: str
    buckets: list[ResponseBucket] = field(default_factory=list)
    responses: list[RawResponse] = field(default_factory=list)
    next_bucket_id: int = 1
    last_merge: MergeRecord | None = None

    def find_bucket(self, bucket_id: int) -> ResponseBucket | None:
        return next((b for b in self.buckets if b.bucket_id == bucket_id), None)


@dataclass(slots=True)
class VoteOption:
    """A response bucket offered in a vote round."""

    bucket_id: int
    text: str
    original_count: int


@dataclass(slots=True)
class VoteRound:
    """Instructor-selected responses students vote between."""

    round_id: str
    slot: int
    run: int
    options: list[VoteOption]
    created_at: float


@dataclass(slots=True)
class BucketView:
    """Immutable bucket row returned to consumers."""

    bucket_id: int
    text: str
    members: list[str]
    count: int


@dataclass(slots=True)
class AggregateSnapshot:
    """Ordered buckets plus respondent totals for a slot or vote round."""

    slot: int
    question_type: str
    buckets: list[BucketView]
    respondent_count: int
    enrolled_count: int
    total_count: int
    merge_count: int
