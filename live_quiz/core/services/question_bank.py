"""Service holding each activity's questions and its saved plan."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock

from live_quiz.core.errors import UnknownQuestion
from live_quiz.core.markdown_math_renderer import MarkdownMathRenderer, renderer
from live_quiz.core.models import PlannedQuestion, QuestionDefinition


class QuestionBank:
    """Supplies question type tags and rendered markup to the core."""

    def __init__(self, markdown_renderer: MarkdownMathRenderer = renderer) -> None:
        self._lock = Lock()
        self._renderer = markdown_renderer
        self._questions: dict[int, QuestionDefinition] = {}
        self._activities: dict[str, list[int]] = {}
        self._question_counter: int = 0

    def load_questions(
        self,
        activity_id: str,
        questions: list[QuestionDefinition],
        default_duration: int = 0,
    ) -> list[QuestionDefinition]:
        """Replace an activity's questions; returns them with assigned ids.

        Questions without a duration get ``default_duration`` seconds.
        """
        if not questions:
            raise ValueError("Quiz must contain at least one question.")
        prepared = [self._prepare_question(q, default_duration) for q in questions]
        with self._lock:
            for old_id in self._activities.get(activity_id, []):
                self._questions.pop(old_id, None)
            stored: list[QuestionDefinition] = []
            for question in prepared:
                question = replace(question, id=self._next_question_id())
                self._questions[question.id] = question
                stored.append(question)
            self._activities[activity_id] = [q.id for q in stored]
        return stored

    def get_question(self, question_id: int) -> QuestionDefinition:
        with self._lock:
            question = self._questions.get(question_id)
        if question is None:
            raise UnknownQuestion(f"Question {question_id} does not exist.")
        return question

    def get_questions(self, activity_id: str) -> list[QuestionDefinition]:
        with self._lock:
            return [self._questions[qid] for qid in self._activities.get(activity_id, [])]

    def question_type(self, question_id: int) -> str:
        return self.get_question(question_id).question_type

    def planned_questions(self, activity_id: str) -> list[PlannedQuestion]:
        """The saved plan: every question not reserved for improvisation."""
        return [
            PlannedQuestion(
                question_id=question.id,
                duration_seconds=question.duration_seconds or 0,
                max_tries=question.max_tries,
            )
            for question in self.get_questions(activity_id)
            if not question.improvisable
        ]

    def improvisable_questions(self, activity_id: str) -> list[QuestionDefinition]:
        return [q for q in self.get_questions(activity_id) if q.improvisable]

    def render_question(self, question_id: int) -> str:
        return self._renderer.render_fragment(self.get_question(question_id).question_text)

    def render_answer(self, question_id: int) -> str | None:
        answer = self.get_question(question_id).correct_answer
        if answer is None:
            return None
        return self._renderer.render_inline(answer)

    def _prepare_question(self, question: QuestionDefinition, default_duration: int) -> QuestionDefinition:
        """Validate and normalize a question before storage."""
        cleaned_text = question.question_text.strip()
        if not cleaned_text:
            raise ValueError("Question text must not be empty.")

        question_type = question.question_type.strip().lower()
        if not question_type:
            raise ValueError("Question type must not be empty.")

        name = question.name.strip() or cleaned_text.splitlines()[0][:60]
        return QuestionDefinition(
            id=question.id,
            name=name,
            question_text=cleaned_text,
            question_type=question_type,
            correct_answer=question.correct_answer,
            duration_seconds=self._normalize_duration(
                default_duration if question.duration_seconds is None else question.duration_seconds
            ),
            max_tries=self._normalize_tries(question.max_tries),
            improvisable=question.improvisable,
        )

    def _next_question_id(self) -> int:
        self._question_counter += 1
        return self._question_counter

    @staticmethod
    def _normalize_duration(duration_seconds: int) -> int:
        if not isinstance(duration_seconds, int):
            raise ValueError("Question time must be provided as an integer number of seconds.")
        if duration_seconds < 0:
            raise ValueError("Question time must be an integer of 0 or above.")
        return duration_seconds

    @staticmethod
    def _normalize_tries(max_tries: int | None) -> int | None:
        if max_tries is None:
            return None
        if not isinstance(max_tries, int) or max_tries < 1:
            raise ValueError("Number of tries must be an integer of 1 or above.")
        return max_tries
