"""Shared pytest fixtures."""

import pytest

from live_quiz.core.auth import StaticRoster
from live_quiz.core.commands import StartQuestion, StartQuiz
from live_quiz.core.models import ActivitySettings, QuestionDefinition, StartMethod
from live_quiz.core.quiz_manager import QuizManager
from live_quiz.core.storage import InMemoryRecordStore


class FakeClock:
    """Manually advanced clock injected wherever the code reads the time."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def activity_id() -> str:
    return "maths-101"


@pytest.fixture
def instructor_id() -> str:
    return "instructor-1"


@pytest.fixture
def roster(instructor_id) -> StaticRoster:
    return StaticRoster(instructors=[instructor_id])


@pytest.fixture
def settings() -> ActivitySettings:
    return ActivitySettings(wait_for_question_seconds=5, default_question_seconds=30)


@pytest.fixture
def sample_questions() -> list[QuestionDefinition]:
    return [
        QuestionDefinition(
            id=0,
            name="Multiplication",
            question_text="What is $6 \\times 7$?",
            question_type="shortanswer",
            correct_answer="42",
            duration_seconds=30,
            max_tries=2,
        ),
        QuestionDefinition(
            id=0,
            name="Like terms",
            question_text="Simplify $x + x$.",
            question_type="stack",
            correct_answer="2x",
            duration_seconds=0,
        ),
        QuestionDefinition(
            id=0,
            name="Prime",
            question_text="Name a prime number larger than 10.",
            question_type="shortanswer",
            duration_seconds=20,
            improvisable=True,
        ),
    ]


@pytest.fixture
def manager(store, roster, clock, settings, activity_id, sample_questions) -> QuizManager:
    quiz_manager = QuizManager(store=store, authorizer=roster, clock=clock, settings=settings)
    quiz_manager.load_quiz_from_questions(activity_id, sample_questions)
    return quiz_manager


@pytest.fixture
def open_session(manager, activity_id, instructor_id):
    return manager.open_session(activity_id, instructor_id, "Period 3")


@pytest.fixture
def running_session(manager, open_session, activity_id, instructor_id):
    """Session with two joined students and question 1 started at t=100."""
    manager.join(activity_id, "alice")
    manager.join(activity_id, "bob")
    manager.execute(activity_id, instructor_id, StartQuiz())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT))
    return manager.get_open_session(activity_id)
