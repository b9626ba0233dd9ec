"""Question-type specific normalization of submitted answers."""

from __future__ import annotations

import re

from live_quiz.constants.quiz_constants import (
    FREE_TEXT_QUESTION_TYPES,
    SYMBOLIC_QUESTION_TYPES,
)

_WHITESPACE = re.compile(r"\s+")


def normalize_response(question_type: str, raw_text: str) -> str:
    """Return the text responses are bucketed by.

    Free-text answers are trimmed, symbolic answers lose all whitespace and
    every other type is compared verbatim.
    """
    if question_type in FREE_TEXT_QUESTION_TYPES:
        return raw_text.strip()
    if question_type in SYMBOLIC_QUESTION_TYPES:
        return _WHITESPACE.sub("", raw_text)
    return raw_text
