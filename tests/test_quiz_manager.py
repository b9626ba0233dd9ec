"""End-to-end scenarios for live_quiz/core/quiz_manager.py."""

from threading import Barrier, Thread

import pytest

from live_quiz.core.commands import EndQuestion, StartQuestion, StartQuiz
from live_quiz.core.errors import (
    NoOpenSession,
    NotAuthorized,
    NotJoined,
    QuestionNotLive,
    SessionAlreadyOpen,
    TriesExhausted,
)
from live_quiz.core.models import ActivitySettings, QuestionDefinition, SessionStatus, StartMethod
from live_quiz.core.quiz_manager import QuizManager
from live_quiz.core.services.session_repository import SessionRepository
from live_quiz.core.services.session_state_machine import SessionStateMachine


def test_only_instructors_open_sessions(manager, activity_id):
    with pytest.raises(NotAuthorized):
        manager.open_session(activity_id, "alice", "Period 3")


def test_one_open_session_per_activity(manager, open_session, activity_id, instructor_id):
    with pytest.raises(SessionAlreadyOpen):
        manager.open_session(activity_id, instructor_id, "Again")


def test_join_requires_an_open_session(manager, activity_id):
    with pytest.raises(NoOpenSession):
        manager.join(activity_id, "alice")


def test_join_is_idempotent(manager, open_session, activity_id):
    first = manager.join(activity_id, "alice")
    second = manager.join(activity_id, "alice")

    assert first.joined_at == second.joined_at
    assert manager.poll(activity_id, "alice").participant_count == 1


def test_whitespace_variants_with_two_tries(manager, running_session, activity_id, instructor_id, clock):
    clock.advance(6)

    first = manager.submit_response(activity_id, "alice", "42")
    second = manager.submit_response(activity_id, "alice", " 42 ")

    assert first.bucket_id == second.bucket_id
    assert first.tries_left == 1
    assert second.tries_left == 0
    with pytest.raises(TriesExhausted):
        manager.submit_response(activity_id, "alice", "43")

    results = manager.get_results(activity_id, instructor_id)
    assert [(b.text, b.count) for b in results.responses.buckets] == [("42", 2)]
    assert results.responses.respondent_count == 1
    assert results.responses.enrolled_count == 2
    assert results.has_votes is False


def test_submissions_outside_the_live_window_are_rejected(manager, running_session, activity_id, clock):
    with pytest.raises(QuestionNotLive):
        manager.submit_response(activity_id, "alice", "early")

    clock.advance(40)
    with pytest.raises(QuestionNotLive):
        manager.submit_response(activity_id, "alice", "late")


def test_participants_must_join_before_answering(manager, running_session, activity_id, clock):
    clock.advance(6)

    with pytest.raises(NotJoined):
        manager.submit_response(activity_id, "carol", "42")


def test_votes_require_voting_state(manager, running_session, activity_id, clock):
    clock.advance(6)

    with pytest.raises(QuestionNotLive):
        manager.submit_vote(activity_id, "alice", 1)


def test_lazy_timeout_commits_exactly_once(manager, store, open_session, activity_id, instructor_id, clock):
    manager.execute(activity_id, instructor_id, StartQuiz())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT, duration=30))
    revision = manager.get_open_session(activity_id).revision
    clock.now = 145.0

    key = ("session", activity_id, open_session.session_id)

    first = manager.poll(activity_id, "alice")
    _session, version = store.get_versioned(key)
    second = manager.poll(activity_id, "bob")

    assert first.state == second.state == "reviewing"
    assert first.revision == second.revision == revision + 1
    assert store.get_versioned(key)[1] == version


def test_concurrent_polls_at_the_deadline(manager, open_session, activity_id, instructor_id, clock):
    manager.execute(activity_id, instructor_id, StartQuiz())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT))
    revision = manager.get_open_session(activity_id).revision
    clock.now = 145.0
    barrier = Barrier(4)
    states = []

    def poll(participant_id):
        barrier.wait()
        states.append(manager.poll(activity_id, participant_id).state)

    threads = [Thread(target=poll, args=(f"student-{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert states == ["reviewing"] * 4
    assert manager.get_open_session(activity_id).revision == revision + 1


def test_simultaneous_identical_answers_are_all_counted(manager, running_session, activity_id, instructor_id, clock):
    students = [f"student-{n}" for n in range(8)]
    for participant_id in students:
        manager.join(activity_id, participant_id)
    clock.now = 110.0
    barrier = Barrier(len(students))
    receipts = []

    def submit(participant_id):
        barrier.wait()
        receipts.append(manager.submit_response(activity_id, participant_id, "42"))

    threads = [Thread(target=submit, args=(participant_id,)) for participant_id in students]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(receipts) == len(students)
    buckets = manager.get_results(activity_id, instructor_id).responses.buckets
    assert [(b.text, b.count) for b in buckets] == [("42", len(students))]


def test_racing_lazy_commits_only_one_wins(store, open_session, manager, activity_id, instructor_id, settings):
    manager.execute(activity_id, instructor_id, StartQuiz())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT))
    repository = SessionRepository(store)
    first, first_version = repository.load_open_session(activity_id)
    second, second_version = repository.load_open_session(activity_id)

    assert SessionStateMachine(first, settings).refresh(145.0)
    assert SessionStateMachine(second, settings).refresh(145.0)

    assert repository.try_commit_session(first, first_version) is True
    assert repository.try_commit_session(second, second_version) is False


def test_answer_after_the_timeout_is_rejected(manager, running_session, activity_id, clock):
    clock.now = 134.0
    manager.submit_response(activity_id, "alice", "in time")

    clock.now = 135.0
    manager.poll(activity_id, "bob")
    with pytest.raises(QuestionNotLive):
        manager.submit_response(activity_id, "alice", "too late")


def test_repoll_resets_tries_and_keeps_history(manager, running_session, activity_id, instructor_id, clock):
    clock.advance(6)
    manager.submit_response(activity_id, "alice", "41")
    manager.submit_response(activity_id, "alice", "42")
    manager.execute(activity_id, instructor_id, EndQuestion())

    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.REPOLL))
    clock.advance(6)
    receipt = manager.submit_response(activity_id, "alice", "42")

    assert receipt.tries_left == 1
    current = manager.get_results(activity_id, instructor_id)
    assert [(b.text, b.count) for b in current.responses.buckets] == [("42", 1)]

    manager.execute(activity_id, instructor_id, EndQuestion())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT))
    earlier = manager.get_results(activity_id, instructor_id, slot=1)
    assert [(b.text, b.count) for b in earlier.responses.buckets] == [("42", 1)]


def test_results_are_instructor_only(manager, running_session, activity_id):
    with pytest.raises(NotAuthorized):
        manager.get_results(activity_id, "alice")
    with pytest.raises(NotAuthorized):
        manager.get_vote_results(activity_id, "alice")


def test_missing_durations_use_the_activity_default(store, roster, clock):
    manager = QuizManager(
        store=store,
        authorizer=roster,
        clock=clock,
        settings=ActivitySettings(default_question_seconds=45),
    )

    loaded = manager.load_quiz_from_questions(
        "physics",
        [QuestionDefinition(id=0, name="", question_text="Speed of light?", question_type="ShortAnswer")],
    )

    assert loaded[0].duration_seconds == 45
    assert loaded[0].question_type == "shortanswer"
    assert loaded[0].name == "Speed of light?"


def test_activities_are_independent(manager, open_session, activity_id, instructor_id, sample_questions):
    manager.load_quiz_from_questions("history", sample_questions)
    manager.open_session("history", instructor_id, "History")

    manager.execute(activity_id, instructor_id, StartQuiz())

    assert manager.get_open_session(activity_id).status is SessionStatus.PREPARING
    assert manager.get_open_session("history").status is SessionStatus.NOT_RUNNING


def test_activity_settings_override_the_defaults(manager, open_session, activity_id, instructor_id):
    manager.configure_activity(activity_id, ActivitySettings(wait_for_question_seconds=0))
    manager.join(activity_id, "alice")
    manager.execute(activity_id, instructor_id, StartQuiz())
    manager.execute(activity_id, instructor_id, StartQuestion(method=StartMethod.NEXT))

    receipt = manager.submit_response(activity_id, "alice", "42")

    assert receipt.slot == 1
    assert manager.settings_for("other-activity").wait_for_question_seconds == 5
