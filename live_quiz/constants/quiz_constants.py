"""Quiz-related constants shared across the core and server layers."""

DEFAULT_QUESTION_TIME_SECONDS: int = 30
WAIT_FOR_QUESTION_SECONDS: int = 2
POLL_INTERVAL_MS: int = 500
VOTE_TRIES_PER_PARTICIPANT: int = 1

FREE_TEXT_QUESTION_TYPES: frozenset[str] = frozenset({"shortanswer", "essay"})
SYMBOLIC_QUESTION_TYPES: frozenset[str] = frozenset({"stack", "equation"})
DEFAULT_QUESTION_TYPE: str = "shortanswer"
