"""Integration tests for weighted peer reviews."""

from uuid import uuid4

import pytest
import pytest_asyncio

from member_authority.exceptions import (
    InvalidPayload,
    InvalidRating,
    ReviewNotFound,
    ValidationError,
)
from member_authority.infrastructure.database.models import MemberAuthorityScore

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def senior_reviewer(seed, clock):
    """A reviewer at the top of the MA scale (weight 2.0)."""
    await seed(MemberAuthorityScore(user_id="alice", value=1000, calculated_at=clock()))
    return "alice"


class TestWeightedReviews:
    @pytest.mark.asyncio
    async def test_high_authority_review_doubles_delta(self, engine, senior_reviewer):
        review_id = await engine.submit_peer_review(
            "T-1", senior_reviewer, "bob", "star_rating", rating=5
        )

        review = await engine.get_review(review_id)
        assert review.authority_weight == 2.0
        assert review.sentiment == 1
        assert review.applied is True
        assert review.status == "active"
        assert review.finalized_at is not None
        assert review.applied_deltas == {"expertise": 10, "trust": 10, "authority": 6}

        breakdown = await engine.get_authority_breakdown("bob")
        assert breakdown.expertise_score == 10
        assert breakdown.trust_score == 10
        assert breakdown.authority_score == 6
        assert breakdown.experience_score == 0
        assert breakdown.member_authority == 65

        history = await engine.get_authority_history("bob")
        peer = [h for h in history if h.change_reason == "peer_review"]
        assert len(peer) == 1
        assert peer[0].previous_ma == 0
        assert peer[0].new_ma == 65
        assert peer[0].related_review_id == review_id
        assert peer[0].related_task_id == "T-1"

    @pytest.mark.asyncio
    async def test_new_reviewer_has_minimum_weight(self, engine):
        review_id = await engine.submit_peer_review("T-1", "carol", "bob", "thumbs_up")

        review = await engine.get_review(review_id)
        assert review.authority_weight == 0.1
        assert review.applied is True
        assert review.applied_deltas == {}
        assert await engine.get_authority_history("bob") == []

    @pytest.mark.asyncio
    async def test_weight_is_a_snapshot(self, engine, senior_reviewer, session_factory):
        review_id = await engine.submit_peer_review(
            "T-1", senior_reviewer, "bob", "thumbs_up"
        )
        async with session_factory() as session:
            async with session.begin():
                score = await session.get(MemberAuthorityScore, "alice")
                score.value = 100

        await engine.rebuild_user("bob")
        review = await engine.get_review(review_id)
        assert review.authority_weight == 2.0
        assert (await engine.get_authority_breakdown("bob")).trust_score == 6

    @pytest.mark.asyncio
    async def test_review_credits_both_users(self, engine, senior_reviewer):
        await engine.submit_peer_review("T-1", senior_reviewer, "bob", "thumbs_up")

        assert (await engine.get_progression("alice")).experience_points == 30
        assert (await engine.get_progression("bob")).experience_points == 20

    @pytest.mark.asyncio
    async def test_neutral_review_has_no_effect(self, engine, senior_reviewer):
        review_id = await engine.submit_peer_review(
            "T-1", senior_reviewer, "bob", "star_rating", rating=3
        )

        review = await engine.get_review(review_id)
        assert review.sentiment == 0
        assert review.applied_deltas == {}
        assert await engine.get_authority_history("bob") == []
        assert (await engine.get_progression("bob")).experience_points == 0

    @pytest.mark.asyncio
    async def test_negative_review_waits_for_cooling_off(self, make_engine, clock):
        engine = make_engine(initial_sub_score=50)
        review_id = await engine.submit_peer_review("T-1", "alice", "bob", "thumbs_down")

        review = await engine.get_review(review_id)
        assert review.authority_weight == 1.0
        assert review.applied is False
        assert review.finalized_at is None
        assert (await engine.get_authority_breakdown("bob")).trust_score == 50

        clock.advance(hours=47)
        assert await engine.finalize_due_reviews() == 0

        clock.advance(hours=1)
        assert await engine.finalize_due_reviews() == 1
        assert (await engine.get_authority_breakdown("bob")).trust_score == 47
        assert (await engine.get_review(review_id)).applied is True

        assert await engine.finalize_due_reviews() == 0

    @pytest.mark.asyncio
    async def test_provisional_negative_review(self, make_engine):
        engine = make_engine(initial_sub_score=50, apply_negative_reviews_provisionally=True)
        review_id = await engine.submit_peer_review(
            "T-1", "alice", "bob", "detailed_review", rating=1, feedback="Off topic"
        )

        review = await engine.get_review(review_id)
        assert review.applied is True
        assert review.finalized_at is None

        breakdown = await engine.get_authority_breakdown("bob")
        assert breakdown.expertise_score == 45
        assert breakdown.trust_score == 45

    @pytest.mark.asyncio
    async def test_decay_then_rebuild_replays_reviews(self, engine, senior_reviewer, clock):
        for task in ("T-1", "T-2", "T-3"):
            await engine.submit_peer_review(task, senior_reviewer, "bob", "star_rating", rating=5)

        clock.advance(days=31)
        assert await engine.run_decay_pass() == 1

        breakdown = await engine.get_authority_breakdown("bob")
        assert breakdown.trust_score == 28
        assert breakdown.expertise_score == 30
        assert breakdown.authority_score == 18

        result = await engine.rebuild_user("bob")
        assert result.sub_scores_changed is False


class TestReviewValidation:
    @pytest.mark.asyncio
    async def test_self_review_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.submit_peer_review("T-1", "bob", "bob", "thumbs_up")

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, engine):
        with pytest.raises(InvalidRating):
            await engine.submit_peer_review("T-1", "alice", "bob", "star_rating", rating=6)

    @pytest.mark.asyncio
    async def test_rating_on_thumbs_rejected(self, engine):
        with pytest.raises(InvalidRating):
            await engine.submit_peer_review("T-1", "alice", "bob", "thumbs_down", rating=1)

    @pytest.mark.asyncio
    async def test_detailed_review_needs_feedback(self, engine):
        with pytest.raises(InvalidPayload):
            await engine.submit_peer_review("T-1", "alice", "bob", "detailed_review", rating=4)

    @pytest.mark.asyncio
    async def test_task_required(self, engine):
        with pytest.raises(ValidationError):
            await engine.submit_peer_review("", "alice", "bob", "thumbs_up")

    @pytest.mark.asyncio
    async def test_nothing_written_on_rejection(self, engine):
        with pytest.raises(InvalidRating):
            await engine.submit_peer_review("T-1", "alice", "bob", "star_rating")
        assert await engine.list_activity("alice") == []

    @pytest.mark.asyncio
    async def test_unknown_review(self, engine):
        with pytest.raises(ReviewNotFound):
            await engine.get_review(uuid4())

    @pytest.mark.asyncio
    async def test_history_limit_validated(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_authority_history("bob", limit=0)
