"""GracePeriodService: disputes of negative reviews.

A negative review stays provisional for the cooling-off window. While it
is provisional its reviewee may open one grace period request; the review
is then `disputed` until the request is approved (review voided),
rejected (review applied) or expires (review applied as if never
disputed).
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.authority.service import AuthorityService
from member_authority.config import EngineSettings
from member_authority.exceptions import (
    AlreadyResolved,
    DuplicateRequest,
    GracePeriodRequestNotFound,
    ReviewAlreadyFinalized,
    ValidationError,
)
from member_authority.infrastructure.database.models import GracePeriodRequest, PeerReview
from member_authority.shared.schemas.base import (
    GracePeriodDecision,
    GracePeriodStatus,
    ReviewStatus,
)
from member_authority.shared.utils.datetime_utils import ensure_utc, is_expired
from member_authority.shared.utils.logging import get_logger

from .schemas import GracePeriodRequestResponse
from .state_machine import transition_reason, validate_transition

logger = get_logger(__name__)


def coerce_decision(decision: str | GracePeriodDecision) -> GracePeriodDecision:
    try:
        return GracePeriodDecision(decision)
    except ValueError:
        raise ValidationError(
            f"Unknown decision '{decision}'",
            field="decision",
            errors=[f"must be one of: {[d.value for d in GracePeriodDecision]}"],
        )


class GracePeriodService:
    """Opens, resolves and expires grace period requests."""

    def __init__(self, session: AsyncSession, settings: EngineSettings):
        self.session = session
        self.settings = settings
        self.authority = AuthorityService(session, settings)

    def cooling_off_ends(self, review: PeerReview) -> datetime:
        return ensure_utc(review.created_at) + timedelta(hours=self.settings.cooling_off_hours)

    async def get(self, request_id: UUID, for_update: bool = False) -> GracePeriodRequest:
        query = select(GracePeriodRequest).where(GracePeriodRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        request = result.scalar_one_or_none()
        if request is None:
            raise GracePeriodRequestNotFound(request_id)
        return request

    async def request(
        self,
        user_id: str,
        review_id: UUID,
        reason: str,
        requested_days: int | None,
        now: datetime,
    ) -> GracePeriodRequest:
        """Open a dispute against a provisional negative review.

        Raises:
            ReviewNotFound: Unknown review
            ValidationError: Not the reviewee, review not negative, blank
                reason or requested_days out of range
            ReviewAlreadyFinalized: Cooling-off elapsed, finalized or voided
            DuplicateRequest: A pending request already exists
        """
        review = await self.authority.get_review(review_id, for_update=True)

        if review.reviewee_id != user_id:
            raise ValidationError("Only the reviewee can dispute a review", field="user_id")
        if review.sentiment >= 0:
            raise ValidationError("Only negative reviews can be disputed", field="review_id")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required", field="reason")

        days = self.settings.default_requested_days if requested_days is None else requested_days
        if not 1 <= days <= self.settings.max_requested_days:
            raise ValidationError(
                f"requested_days must be between 1 and {self.settings.max_requested_days}",
                field="requested_days",
            )

        if (
            review.status == ReviewStatus.VOIDED.value
            or review.finalized_at is not None
            or is_expired(self.cooling_off_ends(review), now)
        ):
            raise ReviewAlreadyFinalized(review.id)

        pending = await self.session.execute(
            select(GracePeriodRequest.id).where(
                GracePeriodRequest.review_id == review.id,
                GracePeriodRequest.status == GracePeriodStatus.PENDING.value,
            )
        )
        if pending.scalar_one_or_none() is not None:
            raise DuplicateRequest(review.id)

        request = GracePeriodRequest(
            user_id=user_id,
            task_id=review.task_id,
            review_id=review.id,
            reason=reason,
            status=GracePeriodStatus.PENDING.value,
            requested_days=days,
            expires_at=now + timedelta(days=days),
            created_at=now,
            open_review_id=review.id,
        )
        self.session.add(request)
        review.status = ReviewStatus.DISPUTED.value

        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateRequest(review.id) from e

        logger.info(
            "grace_period_requested",
            request_id=str(request.id),
            review_id=str(review.id),
            user_id=user_id,
            requested_days=days,
            expires_at=request.expires_at.isoformat(),
        )
        return request

    async def _close(
        self,
        request: GracePeriodRequest,
        target: GracePeriodStatus,
        now: datetime,
        approver_id: str | None = None,
    ) -> PeerReview:
        validate_transition(request.id, request.status, target.value)
        request.status = target.value
        request.resolved_at = now
        request.approver_id = approver_id
        request.open_review_id = None
        review = await self.authority.get_review(request.review_id, for_update=True)
        logger.info(
            "grace_period_closed",
            request_id=str(request.id),
            review_id=str(review.id),
            status=target.value,
            transition=transition_reason(GracePeriodStatus.PENDING.value, target.value),
            approver_id=approver_id,
        )
        return review

    async def resolve(
        self,
        request_id: UUID,
        decision: str | GracePeriodDecision,
        approver_id: str,
        now: datetime,
    ) -> GracePeriodRequest:
        """Approve (void the review) or reject (apply it).

        Raises:
            ValidationError: Unknown decision or self-approval
            GracePeriodRequestNotFound: Unknown request
            AlreadyResolved: Request is not pending or already past expiry
        """
        verdict = coerce_decision(decision)
        if not approver_id:
            raise ValidationError("approver_id is required", field="approver_id")

        request = await self.get(request_id, for_update=True)
        if request.status != GracePeriodStatus.PENDING.value:
            raise AlreadyResolved(request.id, request.status)
        if is_expired(request.expires_at, now):
            raise AlreadyResolved(request.id, GracePeriodStatus.EXPIRED.value)
        if approver_id == request.user_id:
            raise ValidationError("Requesters cannot resolve their own request", field="approver_id")

        if verdict == GracePeriodDecision.APPROVED:
            review = await self._close(request, GracePeriodStatus.APPROVED, now, approver_id)
            await self.authority.void_review(review, now)
        else:
            review = await self._close(request, GracePeriodStatus.REJECTED, now, approver_id)
            await self.authority.finalize_review(review, now)

        await self.session.flush()
        return request

    async def expire(self, request_id: UUID, now: datetime) -> bool:
        """Expire a pending request past its deadline and apply its review.

        Returns:
            True if the request was expired by this call
        """
        request = await self.get(request_id, for_update=True)
        if request.status != GracePeriodStatus.PENDING.value:
            return False
        if not is_expired(request.expires_at, now):
            return False

        review = await self._close(request, GracePeriodStatus.EXPIRED, now)
        await self.authority.finalize_review(review, now)
        await self.session.flush()
        return True

    async def due_requests(self, now: datetime) -> list[tuple[UUID, str]]:
        """(request id, user id) of pending requests past expiry."""
        result = await self.session.execute(
            select(GracePeriodRequest.id, GracePeriodRequest.user_id)
            .where(
                GracePeriodRequest.status == GracePeriodStatus.PENDING.value,
                GracePeriodRequest.expires_at <= now,
            )
            .order_by(GracePeriodRequest.expires_at)
        )
        return [(row.id, row.user_id) for row in result.all()]

    async def due_reviews(self, now: datetime) -> list[tuple[UUID, str]]:
        """(review id, reviewee id) of undisputed reviews past cooling-off."""
        cutoff = now - timedelta(hours=self.settings.cooling_off_hours)
        result = await self.session.execute(
            select(PeerReview.id, PeerReview.reviewee_id)
            .where(
                PeerReview.status == ReviewStatus.ACTIVE.value,
                PeerReview.finalized_at.is_(None),
                PeerReview.created_at <= cutoff,
            )
            .order_by(PeerReview.created_at)
        )
        return [(row.id, row.reviewee_id) for row in result.all()]

    async def finalize_if_due(self, review_id: UUID, now: datetime) -> bool:
        review = await self.authority.get_review(review_id, for_update=True)
        if review.status != ReviewStatus.ACTIVE.value or review.finalized_at is not None:
            return False
        if not is_expired(self.cooling_off_ends(review), now):
            return False
        await self.authority.finalize_review(review, now)
        return True

    async def list_for_user(self, user_id: str) -> list[GracePeriodRequestResponse]:
        """Most recent first."""
        result = await self.session.execute(
            select(GracePeriodRequest)
            .where(GracePeriodRequest.user_id == user_id)
            .order_by(GracePeriodRequest.created_at.desc())
        )
        return [GracePeriodRequestResponse.model_validate(r) for r in result.scalars().all()]
