"""Tests for live_quiz/core/services/response_aggregator.py."""

from copy import deepcopy

import pytest

from live_quiz.core.errors import (
    InvalidSubmission,
    NothingToUndo,
    SelfMerge,
    TriesExhausted,
    UnknownBucket,
)
from live_quiz.core.models import Attempt, VoteOption, VoteRound
from live_quiz.core.normalization import normalize_response
from live_quiz.core.services.response_aggregator import ResponseAggregator


@pytest.fixture
def aggregator() -> ResponseAggregator:
    return ResponseAggregator()


def _attempt(participant_id: str) -> Attempt:
    return Attempt(participant_id=participant_id, activity_id="a", session_id="s", joined_at=0.0)


def _submit(aggregator, space, participant_id, text, max_tries=None):
    return aggregator.submit(space, _attempt(participant_id), text, max_tries=max_tries, submitted_at=1.0)


def test_normalize_trims_free_text():
    assert normalize_response("shortanswer", "  Paris \n") == "Paris"


def test_normalize_strips_all_whitespace_for_symbolic_answers():
    assert normalize_response("stack", " x + 1 ") == "x+1"


def test_normalize_leaves_other_types_verbatim():
    assert normalize_response("multichoice", " B ") == " B "


def test_whitespace_variants_share_one_bucket(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")

    for index, text in enumerate(["42", " 42", "42 \t"]):
        _submit(aggregator, space, f"student-{index}", text)

    snapshot = aggregator.snapshot(space, enrolled_count=5)
    assert len(snapshot.buckets) == 1
    assert snapshot.buckets[0].text == "42"
    assert snapshot.buckets[0].count == 3
    assert snapshot.respondent_count == 3
    assert snapshot.enrolled_count == 5
    assert snapshot.total_count == 3


def test_symbolic_answers_ignore_inner_whitespace(aggregator):
    space = aggregator.new_space(1, 1, "stack")

    _submit(aggregator, space, "alice", "x + 1")
    _submit(aggregator, space, "bob", "x+1")

    assert [b.count for b in space.buckets] == [2]


def test_free_text_keeps_inner_whitespace(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")

    _submit(aggregator, space, "alice", "x + 1")
    _submit(aggregator, space, "bob", "x+1")

    assert len(space.buckets) == 2


def test_empty_answer_is_rejected_without_using_a_try(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    attempt = _attempt("alice")

    with pytest.raises(InvalidSubmission):
        aggregator.submit(space, attempt, "   ", max_tries=1, submitted_at=1.0)

    assert attempt.tries_for(1, 1) == 0
    assert space.buckets == []


def test_tries_are_enforced_per_run(aggregator):
    attempt = _attempt("alice")
    first_run = aggregator.new_space(1, 1, "shortanswer")
    aggregator.submit(first_run, attempt, "a", max_tries=1, submitted_at=1.0)

    with pytest.raises(TriesExhausted):
        aggregator.submit(first_run, attempt, "b", max_tries=1, submitted_at=2.0)

    second_run = aggregator.new_space(1, 2, "shortanswer")
    aggregator.submit(second_run, attempt, "b", max_tries=1, submitted_at=3.0)
    assert attempt.tries_for(1, 2) == 1


def test_snapshot_orders_by_count_then_creation(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    _submit(aggregator, space, "a", "red")
    _submit(aggregator, space, "b", "blue")
    _submit(aggregator, space, "c", "green")
    _submit(aggregator, space, "d", "green")

    snapshot = aggregator.snapshot(space, enrolled_count=4)

    assert [b.text for b in snapshot.buckets] == ["green", "red", "blue"]


def test_merge_then_undo_restores_both_buckets(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    _submit(aggregator, space, "a", "Paris")
    _submit(aggregator, space, "b", "paris")
    _submit(aggregator, space, "c", "paris")
    before = deepcopy(space.buckets)

    aggregator.merge(space, from_id=1, into_id=2)
    merged = aggregator.snapshot(space, enrolled_count=3)
    assert [(b.bucket_id, b.count) for b in merged.buckets] == [(2, 3)]
    assert merged.merge_count == 1

    aggregator.undo_last_merge(space)

    assert space.buckets == before
    assert space.last_merge is None


def test_second_merge_replaces_undo_record(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    for participant_id, text in [("a", "one"), ("b", "two"), ("c", "three")]:
        _submit(aggregator, space, participant_id, text)

    aggregator.merge(space, from_id=2, into_id=1)
    aggregator.merge(space, from_id=3, into_id=1)
    aggregator.undo_last_merge(space)

    assert [(b.bucket_id, b.count) for b in space.buckets] == [(1, 2), (3, 1)]
    with pytest.raises(NothingToUndo):
        aggregator.undo_last_merge(space)


def test_merged_text_keeps_counting_into_target(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    _submit(aggregator, space, "a", "colour")
    _submit(aggregator, space, "b", "color")

    aggregator.merge(space, from_id=1, into_id=2)
    _submit(aggregator, space, "c", "colour")

    assert [(b.bucket_id, b.count) for b in space.buckets] == [(2, 3)]


def test_undo_returns_answers_given_after_the_merge(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    _submit(aggregator, space, "a", "colour")
    _submit(aggregator, space, "b", "color")

    aggregator.merge(space, from_id=1, into_id=2)
    _submit(aggregator, space, "c", "colour")
    _submit(aggregator, space, "d", "color")
    aggregator.undo_last_merge(space)

    counts = {b.text: b.count for b in space.buckets}
    assert counts == {"colour": 2, "color": 2}
    assert [b.members for b in space.buckets] == [["colour"], ["color"]]


def test_merge_rejects_self_and_unknown_buckets(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")
    _submit(aggregator, space, "a", "x")

    with pytest.raises(SelfMerge):
        aggregator.merge(space, from_id=1, into_id=1)
    with pytest.raises(UnknownBucket):
        aggregator.merge(space, from_id=1, into_id=9)
    assert space.last_merge is None


def test_undo_without_merge_fails(aggregator):
    space = aggregator.new_space(1, 1, "shortanswer")

    with pytest.raises(NothingToUndo):
        aggregator.undo_last_merge(space)


def test_votes_count_once_per_round(aggregator):
    vote_round = VoteRound(
        round_id="r1",
        slot=1,
        run=1,
        options=[VoteOption(bucket_id=4, text="42", original_count=3), VoteOption(bucket_id=7, text="24", original_count=1)],
        created_at=0.0,
    )
    space = aggregator.new_vote_space(vote_round, "shortanswer")
    attempt = _attempt("alice")

    assert [(b.bucket_id, b.text, b.count) for b in space.buckets] == [(1, "42", 0), (2, "24", 0)]

    aggregator.vote(space, attempt, "r1", 2, submitted_at=1.0)
    with pytest.raises(TriesExhausted):
        aggregator.vote(space, attempt, "r1", 1, submitted_at=2.0)
    with pytest.raises(UnknownBucket):
        aggregator.vote(space, _attempt("bob"), "r1", 5, submitted_at=2.0)

    assert [b.count for b in space.buckets] == [0, 1]
