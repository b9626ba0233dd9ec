"""Exceptions raised by the live quiz core.

Every error derives from :class:`QuizError` and carries a stable ``code`` the
server sends to clients next to the human readable message. None of them end a
session: the caller can always retry with a different, valid command.
"""

from __future__ import annotations


class QuizError(Exception):
    """Base class for recoverable quiz errors."""

    code = "quiz_error"


class IllegalTransition(QuizError):
    """Command is not legal in the session's current state."""

    code = "illegal_transition"


class NoMoreQuestions(QuizError):
    """``next`` was requested after the last planned question."""

    code = "no_more_questions"


class QuestionNotLive(QuizError):
    """Submission arrived while no question is accepting answers."""

    code = "question_not_live"


class TriesExhausted(QuizError):
    """Participant already used every try for the current question."""

    code = "tries_exhausted"


class UnknownBucket(QuizError):
    """Bucket id does not exist in the active aggregation space."""

    code = "unknown_bucket"


class SelfMerge(QuizError):
    """A bucket cannot be merged into itself."""

    code = "self_merge"


class NothingToUndo(QuizError):
    """No merge is recorded for the aggregation space."""

    code = "nothing_to_undo"


class InvalidCommand(QuizError):
    """Command payload has the wrong shape."""

    code = "invalid_command"


class EmptyVoteSelection(InvalidCommand):
    """A vote was requested without selecting any response."""

    code = "empty_vote_selection"


class InvalidSubmission(QuizError):
    """Submitted answer is empty after normalization."""

    code = "invalid_submission"


class UnknownQuestion(QuizError):
    """Question reference is not known to the question bank."""

    code = "unknown_question"


class NotAuthorized(QuizError):
    """Caller lacks the control capability for the activity."""

    code = "not_authorized"


class NoOpenSession(QuizError):
    """Activity has no open session."""

    code = "no_open_session"


class SessionAlreadyOpen(QuizError):
    """Activity already has an open session."""

    code = "session_already_open"


class NotJoined(QuizError):
    """Participant has no open attempt in the session."""

    code = "not_joined"


class StorageUnavailable(QuizError):
    """The record store failed; the operation may be retried."""

    code = "storage_unavailable"


class ConcurrentModification(StorageUnavailable):
    """A record changed between read and write; the operation may be retried."""

    code = "concurrent_modification"
