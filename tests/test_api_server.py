"""Tests for live_quiz/server/api_server.py using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from live_quiz.server.api_server import _InstructorAction, create_api_app


@pytest.fixture
def app(manager):
    return create_api_app(manager)


@pytest.fixture
def instructor(app, roster, activity_id):
    client = TestClient(app)
    participant_id = client.get("/identity").json()["participant_id"]
    roster.grant(participant_id, activity_id)
    return client


@pytest.fixture
def student(app):
    return TestClient(app)


def _action(client, activity_id, **payload):
    return client.post(f"/activities/{activity_id}/action", json=payload)


def test_identity_is_stable_per_client(student):
    first = student.get("/identity").json()["participant_id"]
    second = student.get("/identity").json()["participant_id"]

    assert first == second


def test_full_question_round(instructor, student, activity_id, clock):
    opened = instructor.post(f"/activities/{activity_id}/sessions", json={"name": "Period 3"})
    assert opened.status_code == 201
    assert opened.json()["state"] == "notrunning"

    assert student.post(f"/activities/{activity_id}/join").status_code == 201
    assert _action(instructor, activity_id, action="start_quiz").json()["state"] == "preparing"
    started = _action(instructor, activity_id, action="start_question", method="next")
    assert started.json()["state"] == "running"

    waiting = student.get(f"/activities/{activity_id}/poll").json()
    assert waiting["action"] == "waitForQuestion"

    clock.advance(6)
    live = student.get(f"/activities/{activity_id}/poll").json()
    assert live["action"] == "startQuestion"
    assert live["question"]["question_type"] == "shortanswer"

    receipt = _action(student, activity_id, action="submit_response", response=" 42 ")
    assert receipt.status_code == 200
    assert receipt.json()["tries_left"] == 1

    results = _action(instructor, activity_id, action="get_results").json()
    assert results["responses"]["buckets"][0]["text"] == "42"

    _action(instructor, activity_id, action="end_question")
    voting = _action(instructor, activity_id, action="run_voting", bucket_ids=[1])
    assert voting.json()["state"] == "voting"
    assert _action(student, activity_id, action="submit_vote", bucket_id=1).status_code == 200

    votes = _action(instructor, activity_id, action="get_vote_results").json()
    assert votes["votes"]["total_count"] == 1


def test_students_get_403_for_instructor_actions(instructor, student, activity_id):
    instructor.post(f"/activities/{activity_id}/sessions", json={})

    response = _action(student, activity_id, action="start_quiz")

    assert response.status_code == 403
    assert response.json()["code"] == "not_authorized"


def test_illegal_transition_is_a_conflict(instructor, activity_id):
    instructor.post(f"/activities/{activity_id}/sessions", json={})

    response = _action(instructor, activity_id, action="end_question")

    assert response.status_code == 409
    assert response.json()["code"] == "illegal_transition"


def test_empty_vote_selection_is_a_payload_error(instructor, student, activity_id):
    instructor.post(f"/activities/{activity_id}/sessions", json={})
    _action(instructor, activity_id, action="start_quiz")
    _action(instructor, activity_id, action="start_question", method="next")
    _action(instructor, activity_id, action="end_question")

    response = _action(instructor, activity_id, action="run_voting", bucket_ids=[])

    assert response.status_code == 422
    assert response.json()["code"] == "empty_vote_selection"


def test_unknown_action_is_rejected(instructor, activity_id):
    instructor.post(f"/activities/{activity_id}/sessions", json={})

    response = _action(instructor, activity_id, action="self_destruct")

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_command"


def test_poll_without_session_is_not_found(student, activity_id):
    response = student.get(f"/activities/{activity_id}/poll")

    assert response.status_code == 404
    assert response.json()["code"] == "no_open_session"


def test_question_menus_over_http(instructor, activity_id):
    instructor.post(f"/activities/{activity_id}/sessions", json={})
    _action(instructor, activity_id, action="start_quiz")

    menu = _action(instructor, activity_id, action="list_jump_questions").json()["menu"]

    assert [entry["name"] for entry in menu] == ["Multiplication", "Like terms"]


def test_commands_naming_a_closed_session(instructor, activity_id):
    session_id = instructor.post(f"/activities/{activity_id}/sessions", json={}).json()["session_id"]
    _action(instructor, activity_id, action="close_session")

    assert _action(instructor, activity_id, action="end_question").status_code == 404

    ended = _action(instructor, activity_id, action="end_question", session_id=session_id)
    assert ended.status_code == 200
    assert ended.json()["state"] == "sessionclosed"
    assert ended.json()["changed"] is False

    restarted = _action(instructor, activity_id, action="start_quiz", session_id=session_id)
    assert restarted.status_code == 409
    assert restarted.json()["code"] == "illegal_transition"


def test_instructor_action_base_builds_no_command():
    with pytest.raises(TypeError):
        _InstructorAction()
