"""Service that buckets, counts and merges responses.

The aggregator works on :class:`AggregationSpace` records: one per question
run and one per vote round. Callers load a private copy of the space, let the
aggregator mutate it and commit it back, so a rejected operation never leaves
a half-applied change behind.
"""

from __future__ import annotations

import logging

from live_quiz.constants.quiz_constants import VOTE_TRIES_PER_PARTICIPANT
from live_quiz.core.errors import (
    InvalidSubmission,
    NothingToUndo,
    SelfMerge,
    TriesExhausted,
    UnknownBucket,
)
from live_quiz.core.models import (
    AggregateSnapshot,
    AggregationSpace,
    Attempt,
    BucketView,
    MergeRecord,
    RawResponse,
    ResponseBucket,
    VoteRound,
)
from live_quiz.core.normalization import normalize_response

logger = logging.getLogger(__name__)


def response_space_key(slot: int, run: int) -> str:
    return f"slot-{slot}-run-{run}"


def vote_space_key(round_id: str) -> str:
    return f"vote-{round_id}"


class ResponseAggregator:
    """Deduplicates normalized answers into buckets with counts."""

    def new_space(self, slot: int, run: int, question_type: str) -> AggregationSpace:
        return AggregationSpace(
            key=response_space_key(slot, run),
            slot=slot,
            run=run,
            question_type=question_type,
        )

    def new_vote_space(self, vote_round: VoteRound, question_type: str) -> AggregationSpace:
        """Seed a vote space with one zero-count bucket per selected option."""
        space = AggregationSpace(
            key=vote_space_key(vote_round.round_id),
            slot=vote_round.slot,
            run=vote_round.run,
            question_type=question_type,
        )
        for option in vote_round.options:
            space.buckets.append(
                ResponseBucket(bucket_id=space.next_bucket_id, text=option.text, members=[option.text])
            )
            space.next_bucket_id += 1
        return space

    def submit(
        self,
        space: AggregationSpace,
        attempt: Attempt,
        raw_text: str,
        *,
        max_tries: int | None,
        submitted_at: float,
    ) -> ResponseBucket:
        """Count one answer and consume one of the participant's tries."""
        used = attempt.tries_for(space.slot, space.run)
        if max_tries is not None and used >= max_tries:
            raise TriesExhausted("You have no tries left for this question.")

        normalized = normalize_response(space.question_type, raw_text)
        if not normalized:
            raise InvalidSubmission("Response must not be empty.")

        bucket = self._find_by_text(space, normalized)
        if bucket is None:
            bucket = ResponseBucket(bucket_id=space.next_bucket_id, text=normalized, members=[normalized])
            space.next_bucket_id += 1
            space.buckets.append(bucket)
        bucket.count += 1

        space.responses.append(
            RawResponse(
                participant_id=attempt.participant_id,
                slot=space.slot,
                normalized_text=normalized,
                raw_text=raw_text,
                submitted_at=submitted_at,
            )
        )
        attempt.record_try(space.slot, space.run)
        return bucket

    def vote(
        self,
        space: AggregationSpace,
        attempt: Attempt,
        round_id: str,
        bucket_id: int,
        *,
        submitted_at: float,
    ) -> ResponseBucket:
        """Count one vote for an option of a vote round."""
        if attempt.votes_cast.get(round_id, 0) >= VOTE_TRIES_PER_PARTICIPANT:
            raise TriesExhausted("You have already voted in this round.")
        bucket = self._require_bucket(space, bucket_id)
        bucket.count += 1
        space.responses.append(
            RawResponse(
                participant_id=attempt.participant_id,
                slot=space.slot,
                normalized_text=bucket.text,
                raw_text=bucket.text,
                submitted_at=submitted_at,
            )
        )
        attempt.votes_cast[round_id] = attempt.votes_cast.get(round_id, 0) + 1
        return bucket

    def merge(self, space: AggregationSpace, from_id: int, into_id: int) -> MergeRecord:
        """Fold ``from_id`` into ``into_id``, replacing any earlier undo record."""
        if from_id == into_id:
            raise SelfMerge("A response cannot be merged into itself.")
        source = self._require_bucket(space, from_id)
        target = self._require_bucket(space, into_id)

        position = space.buckets.index(source)
        moved_members = [text for text in source.members if text not in target.members]
        target.members.extend(moved_members)
        target.count += source.count
        del space.buckets[position]

        record = MergeRecord(
            from_bucket=source,
            from_position=position,
            into_id=into_id,
            moved_count=source.count,
            moved_members=moved_members,
            response_index=len(space.responses),
        )
        space.last_merge = record
        logger.info(
            "Merged bucket %s (%d) into %s in %s", from_id, source.count, into_id, space.key
        )
        return record

    def undo_last_merge(self, space: AggregationSpace) -> ResponseBucket:
        record = space.last_merge
        if record is None:
            raise NothingToUndo("There is no merge to undo.")

        target = self._require_bucket(space, record.into_id)
        # Answers matching a moved text after the merge were counted into the target.
        late = sum(
            1 for r in space.responses[record.response_index :] if r.normalized_text in record.moved_members
        )
        target.count -= record.moved_count + late
        target.members = [text for text in target.members if text not in record.moved_members]
        restored = record.from_bucket
        restored.count += late
        space.buckets.insert(min(record.from_position, len(space.buckets)), restored)
        space.last_merge = None
        logger.info("Undid merge of bucket %s into %s in %s", restored.bucket_id, target.bucket_id, space.key)
        return restored

    def snapshot(self, space: AggregationSpace, enrolled_count: int) -> AggregateSnapshot:
        """Buckets by descending count, ties in creation order."""
        ordered = sorted(space.buckets, key=lambda b: (-b.count, b.bucket_id))
        return AggregateSnapshot(
            slot=space.slot,
            question_type=space.question_type,
            buckets=[
                BucketView(bucket_id=b.bucket_id, text=b.text, members=list(b.members), count=b.count)
                for b in ordered
            ],
            respondent_count=len({r.participant_id for r in space.responses}),
            enrolled_count=enrolled_count,
            total_count=sum(b.count for b in space.buckets),
            merge_count=0 if space.last_merge is None else 1,
        )

    @staticmethod
    def _find_by_text(space: AggregationSpace, text: str) -> ResponseBucket | None:
        return next((b for b in space.buckets if text in b.members), None)

    @staticmethod
    def _require_bucket(space: AggregationSpace, bucket_id: int) -> ResponseBucket:
        bucket = space.find_bucket(bucket_id)
        if bucket is None:
            raise UnknownBucket(f"Response {bucket_id} does not exist.")
        return bucket
