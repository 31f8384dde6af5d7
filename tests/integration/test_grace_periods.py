"""Integration tests for disputing negative reviews."""

from uuid import uuid4

import pytest
import pytest_asyncio

from member_authority.exceptions import (
    AlreadyResolved,
    DuplicateRequest,
    GracePeriodRequestNotFound,
    ReviewAlreadyFinalized,
    ReviewNotFound,
    ValidationError,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def appeal_engine(make_engine):
    """Engine where users start at 50 so negative reviews have room to bite."""
    return make_engine(initial_sub_score=50)


@pytest_asyncio.fixture
async def negative_review(appeal_engine):
    return await appeal_engine.submit_peer_review("T-1", "alice", "bob", "thumbs_down")


class TestRequestGracePeriod:
    @pytest.mark.asyncio
    async def test_request_marks_review_disputed(self, appeal_engine, negative_review, clock):
        request_id = await appeal_engine.request_grace_period(
            "bob", negative_review, "The task requirements changed mid-way"
        )

        review = await appeal_engine.get_review(negative_review)
        assert review.status == "disputed"

        requests = await appeal_engine.list_grace_period_requests("bob")
        assert len(requests) == 1
        assert requests[0].id == request_id
        assert requests[0].status == "pending"
        assert requests[0].requested_days == 3
        assert requests[0].task_id == "T-1"
        assert requests[0].expires_at == clock.advance(days=3)

    @pytest.mark.asyncio
    async def test_disputed_review_not_finalized(self, appeal_engine, negative_review, clock):
        await appeal_engine.request_grace_period("bob", negative_review, "Unfair", 7)
        clock.advance(hours=72)
        assert await appeal_engine.finalize_due_reviews() == 0
        assert (await appeal_engine.get_authority_breakdown("bob")).trust_score == 50

    @pytest.mark.asyncio
    async def test_duplicate_request(self, appeal_engine, negative_review):
        await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        with pytest.raises(DuplicateRequest):
            await appeal_engine.request_grace_period("bob", negative_review, "Still unfair")

    @pytest.mark.asyncio
    async def test_only_reviewee_can_request(self, appeal_engine, negative_review):
        with pytest.raises(ValidationError):
            await appeal_engine.request_grace_period("carol", negative_review, "Unfair")

    @pytest.mark.asyncio
    async def test_positive_review_cannot_be_disputed(self, appeal_engine):
        review_id = await appeal_engine.submit_peer_review("T-2", "alice", "bob", "thumbs_up")
        with pytest.raises(ValidationError):
            await appeal_engine.request_grace_period("bob", review_id, "More please")

    @pytest.mark.asyncio
    async def test_reason_required(self, appeal_engine, negative_review):
        with pytest.raises(ValidationError):
            await appeal_engine.request_grace_period("bob", negative_review, " ")

    @pytest.mark.asyncio
    async def test_requested_days_bounded(self, appeal_engine, negative_review):
        with pytest.raises(ValidationError):
            await appeal_engine.request_grace_period("bob", negative_review, "Unfair", 15)
        with pytest.raises(ValidationError):
            await appeal_engine.request_grace_period("bob", negative_review, "Unfair", 0)

    @pytest.mark.asyncio
    async def test_after_cooling_off(self, appeal_engine, negative_review, clock):
        clock.advance(hours=49)
        with pytest.raises(ReviewAlreadyFinalized):
            await appeal_engine.request_grace_period("bob", negative_review, "Too late")

    @pytest.mark.asyncio
    async def test_after_finalization(self, appeal_engine, negative_review, clock):
        clock.advance(hours=48)
        assert await appeal_engine.finalize_due_reviews() == 1
        with pytest.raises(ReviewAlreadyFinalized):
            await appeal_engine.request_grace_period("bob", negative_review, "Too late")

    @pytest.mark.asyncio
    async def test_unknown_review(self, appeal_engine):
        with pytest.raises(ReviewNotFound):
            await appeal_engine.request_grace_period("bob", uuid4(), "Unfair")


class TestResolveGracePeriod:
    @pytest.mark.asyncio
    async def test_approval_voids_review(self, appeal_engine, negative_review, clock):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        clock.advance(hours=1)
        await appeal_engine.resolve_grace_period(request_id, "approved", "moderator")

        review = await appeal_engine.get_review(negative_review)
        assert review.status == "voided"
        assert review.applied is False

        request = (await appeal_engine.list_grace_period_requests("bob"))[0]
        assert request.status == "approved"
        assert request.approver_id == "moderator"
        assert request.resolved_at == clock()

        assert (await appeal_engine.get_authority_breakdown("bob")).trust_score == 50

    @pytest.mark.asyncio
    async def test_rejection_applies_review(self, appeal_engine, negative_review):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        await appeal_engine.resolve_grace_period(request_id, "rejected", "moderator")

        review = await appeal_engine.get_review(negative_review)
        assert review.status == "active"
        assert review.applied is True
        assert review.finalized_at is not None
        assert (await appeal_engine.get_authority_breakdown("bob")).trust_score == 47

    @pytest.mark.asyncio
    async def test_resolve_twice(self, appeal_engine, negative_review):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        await appeal_engine.resolve_grace_period(request_id, "approved", "moderator")

        with pytest.raises(AlreadyResolved) as exc_info:
            await appeal_engine.resolve_grace_period(request_id, "rejected", "moderator")
        assert exc_info.value.status == "approved"

    @pytest.mark.asyncio
    async def test_requester_cannot_resolve(self, appeal_engine, negative_review):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        with pytest.raises(ValidationError):
            await appeal_engine.resolve_grace_period(request_id, "approved", "bob")

    @pytest.mark.asyncio
    async def test_unknown_decision(self, appeal_engine, negative_review):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        with pytest.raises(ValidationError):
            await appeal_engine.resolve_grace_period(request_id, "maybe", "moderator")

    @pytest.mark.asyncio
    async def test_unknown_request(self, appeal_engine):
        with pytest.raises(GracePeriodRequestNotFound):
            await appeal_engine.resolve_grace_period(uuid4(), "approved", "moderator")

    @pytest.mark.asyncio
    async def test_resolve_past_deadline_expires(self, appeal_engine, negative_review, clock):
        request_id = await appeal_engine.request_grace_period("bob", negative_review, "Unfair")
        clock.advance(days=4)

        with pytest.raises(AlreadyResolved) as exc_info:
            await appeal_engine.resolve_grace_period(request_id, "approved", "moderator")
        assert exc_info.value.status == "expired"

        request = (await appeal_engine.list_grace_period_requests("bob"))[0]
        assert request.status == "expired"
        assert (await appeal_engine.get_authority_breakdown("bob")).trust_score == 47


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expiry_applies_review(self, appeal_engine, negative_review, clock):
        await appeal_engine.request_grace_period("bob", negative_review, "Unfair")

        clock.advance(days=2)
        assert await appeal_engine.expire_grace_periods() == 0

        clock.advance(days=1)
        assert await appeal_engine.expire_grace_periods() == 1

        review = await appeal_engine.get_review(negative_review)
        assert review.status == "active"
        assert review.applied is True
        assert (await appeal_engine.get_authority_breakdown("bob")).trust_score == 47

        history = await appeal_engine.get_authority_history("bob")
        assert [h.change_reason for h in history] == ["peer_review"]

        assert await appeal_engine.expire_grace_periods() == 0

    @pytest.mark.asyncio
    async def test_custom_window(self, appeal_engine, negative_review, clock):
        await appeal_engine.request_grace_period("bob", negative_review, "Unfair", requested_days=5)
        clock.advance(days=4)
        assert await appeal_engine.expire_grace_periods() == 0
        clock.advance(days=1)
        assert await appeal_engine.expire_grace_periods() == 1


class TestProvisionalVoid:
    """Voiding an already-applied review restores the exact prior state."""

    @pytest.mark.asyncio
    async def test_void_round_trip(self, make_engine):
        engine = make_engine(initial_sub_score=50, apply_negative_reviews_provisionally=True)
        before = await engine.get_authority_breakdown("bob")

        review_id = await engine.submit_peer_review(
            "T-1", "alice", "bob", "star_rating", rating=1
        )
        applied = await engine.get_authority_breakdown("bob")
        assert applied.trust_score == 45
        assert applied.expertise_score == 45

        request_id = await engine.request_grace_period("bob", review_id, "Wrong task")
        await engine.resolve_grace_period(request_id, "approved", "moderator")

        after = await engine.get_authority_breakdown("bob")
        assert after.trust_score == before.trust_score
        assert after.expertise_score == before.expertise_score
        assert after.member_authority == before.member_authority

        history = await engine.get_authority_history("bob")
        assert [h.change_reason for h in history] == ["review_voided", "peer_review"]
        assert history[0].sub_score_deltas == {"expertise": 5, "trust": 5}

        result = await engine.rebuild_user("bob")
        assert result.sub_scores_changed is False

    @pytest.mark.asyncio
    async def test_provisional_expiry_applies_once(self, make_engine, clock):
        engine = make_engine(initial_sub_score=50, apply_negative_reviews_provisionally=True)
        review_id = await engine.submit_peer_review("T-1", "alice", "bob", "thumbs_down")
        await engine.request_grace_period("bob", review_id, "Unfair")

        clock.advance(days=3)
        assert await engine.expire_grace_periods() == 1
        assert (await engine.get_authority_breakdown("bob")).trust_score == 47
