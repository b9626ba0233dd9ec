"""Network configuration constants for the quiz server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
PARTICIPANT_COOKIE: str = "livequiz_participant"
PARTICIPANT_COOKIE_MAX_AGE: int = 60 * 60 * 24 * 30
