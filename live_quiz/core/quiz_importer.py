"""Import a quiz plan from a plain-text file.

File format (repeat blocks separated by blank lines or '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    NAME: Short label for the instructor menus (optional)
    TYPE: shortanswer | essay | stack | multichoice | ... (optional)
    ANSWER: Correct answer shown to the class on request (optional)
    TIMELIMIT: seconds (optional, 0 means untimed, omit for the activity default)
    TRIES: maximum submissions per participant (optional, omit for unlimited)
    IMPROVISE: yes  (offer in the improvise menu instead of the plan)

Example:

    Q: What is $6 \\times 7$?
    TYPE: shortanswer
    ANSWER: 42
    TIMELIMIT: 45
    TRIES: 2

Planned questions are asked in file order.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from live_quiz.constants.quiz_constants import DEFAULT_QUESTION_TYPE
from live_quiz.core.models import QuestionDefinition


class QuizImportError(Exception):
    """Raised when a quiz plan cannot be parsed."""


@dataclass(slots=True)
class ImportedQuiz:
    """Container for imported quiz metadata and questions."""

    source_path: Path
    questions: list[QuestionDefinition]

    @property
    def planned_count(self) -> int:
        return sum(1 for question in self.questions if not question.improvisable)


_YES = {"yes", "y", "true", "1"}
_NO = {"no", "n", "false", "0"}


def load_quiz_from_file(file_path: Path) -> ImportedQuiz:
    text = file_path.read_text(encoding="utf-8")
    questions = parse_quiz_text(text)
    if not questions:
        raise QuizImportError("Quiz file did not contain any questions.")
    return ImportedQuiz(source_path=file_path, questions=questions)


def parse_quiz_text(text: str) -> list[QuestionDefinition]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    return [_parse_block(block) for block in blocks if block]


def _parse_block(block: str) -> QuestionDefinition:
    question_lines: list[str] = []
    answer_lines: list[str] = []
    name = ""
    question_type = DEFAULT_QUESTION_TYPE
    time_limit: int | None = None
    max_tries: int | None = None
    improvisable = False
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        marker, _, value = line.partition(":")
        marker = marker.strip().upper()
        value = value.strip()

        if marker == "Q":
            question_lines = [value]
            current_section = "Q"
        elif marker == "ANSWER":
            answer_lines = [value]
            current_section = "ANSWER"
        elif marker == "NAME":
            name = value
            current_section = None
        elif marker == "TYPE":
            if not value:
                raise QuizImportError("TYPE must name a question type.")
            question_type = value.lower()
            current_section = None
        elif marker == "TIMELIMIT":
            time_limit = _parse_int("TIMELIMIT", value, minimum=0)
            current_section = None
        elif marker == "TRIES":
            max_tries = _parse_int("TRIES", value, minimum=1)
            current_section = None
        elif marker == "IMPROVISE":
            improvisable = _parse_flag("IMPROVISE", value)
            current_section = None
        elif current_section == "Q":
            question_lines.append(line)
        elif current_section == "ANSWER":
            answer_lines.append(line)
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")
    answer = "\n".join(answer_lines).strip() or None

    return QuestionDefinition(
        id=0,  # assigned by the question bank when the quiz is loaded
        name=name,
        question_text=question_text,
        question_type=question_type,
        correct_answer=answer,
        duration_seconds=time_limit,
        max_tries=max_tries,
        improvisable=improvisable,
    )


def _parse_int(marker: str, raw_value: str, *, minimum: int) -> int:
    if not raw_value:
        raise QuizImportError(f"{marker} must include an integer value.")
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuizImportError(f"{marker} must be an integer.") from exc
    if parsed_value < minimum:
        raise QuizImportError(f"{marker} must be at least {minimum}.")
    return parsed_value


def _parse_flag(marker: str, raw_value: str) -> bool:
    lowered = raw_value.lower()
    if lowered in _YES:
        return True
    if lowered in _NO:
        return False
    raise QuizImportError(f"{marker} must be yes or no.")
