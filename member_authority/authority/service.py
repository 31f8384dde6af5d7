"""AuthorityService: E-E-A-T sub-scores, Member Authority and its audit trail.

Every change to a user's sub-scores goes through `record_change` or
`rebuild_sub_scores`, both of which recompute MA from the sub-scores
and append one AuthorityHistory row. History rows point at the fact that
caused them (ledger event, review, decay pass), which makes the history
the ordering index for replaying a user's scores from scratch.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.config import EngineSettings
from member_authority.exceptions import ReviewNotFound
from member_authority.infrastructure.database.models import (
    ActivityEvent,
    AuthorityHistory,
    MemberAuthorityScore,
    PeerReview,
    SubScore,
)
from member_authority.shared.schemas.activity_payloads import parse_review_payload
from member_authority.shared.schemas.base import (
    ActivityType,
    ChangeReason,
    Dimension,
    ReviewStatus,
)
from member_authority.shared.utils.logging import get_logger

from .calculator import (
    Deltas,
    apply_deltas,
    authority_weight,
    decayed_value,
    event_deltas,
    member_authority,
    review_deltas,
)
from .schemas import AuthorityBreakdownResponse, AuthorityHistoryEntry

logger = get_logger(__name__)

DIMENSIONS = [d.value for d in Dimension]

# History reasons whose effect is re-derived from a ledger event during replay.
EVENT_REASONS = frozenset(
    {
        ChangeReason.TASK_COMPLETION.value,
        ChangeReason.ACTIVITY_COMPENSATED.value,
        ChangeReason.REVIEWER_SELECTION.value,
    }
)


def reason_for_event(event: ActivityEvent) -> ChangeReason:
    if event.compensates_event_id is not None:
        return ChangeReason.ACTIVITY_COMPENSATED
    if event.activity_type == ActivityType.TASK_COMPLETED.value:
        return ChangeReason.TASK_COMPLETION
    return ChangeReason.REVIEWER_SELECTION


class AuthorityService:
    """Maintains sub-scores, MA and authority history for users."""

    def __init__(self, session: AsyncSession, settings: EngineSettings):
        self.session = session
        self.settings = settings

    # ------------------------------------------------------------------
    # Sub-scores and MA
    # ------------------------------------------------------------------

    def initial_values(self) -> dict[str, int]:
        return {dim: self.settings.initial_sub_score for dim in DIMENSIONS}

    async def load_sub_scores(self, user_id: str, now: datetime) -> dict[str, SubScore]:
        """Load (with row lock) or create the user's four sub-score rows."""
        result = await self.session.execute(
            select(SubScore).where(SubScore.user_id == user_id).with_for_update()
        )
        rows = {row.dimension: row for row in result.scalars().all()}

        missing = [dim for dim in DIMENSIONS if dim not in rows]
        for dim in missing:
            rows[dim] = SubScore(
                user_id=user_id,
                dimension=dim,
                value=self.settings.initial_sub_score,
                last_updated_at=now,
            )
            self.session.add(rows[dim])
        if missing:
            await self.session.flush()
        return rows

    async def current_values(self, user_id: str) -> dict[str, int]:
        result = await self.session.execute(
            select(SubScore.dimension, SubScore.value).where(SubScore.user_id == user_id)
        )
        values = self.initial_values()
        values.update({row.dimension: row.value for row in result.all()})
        return values

    async def current_ma(self, user_id: str) -> int:
        result = await self.session.execute(
            select(MemberAuthorityScore.value).where(MemberAuthorityScore.user_id == user_id)
        )
        value = result.scalar_one_or_none()
        if value is None:
            return member_authority(self.initial_values(), self.settings)
        return value

    async def commit_values(
        self,
        user_id: str,
        values: dict[str, int],
        effective: Deltas,
        reason: ChangeReason,
        now: datetime,
        related_task_id: str | None = None,
        related_review_id: UUID | None = None,
        related_event_id: int | None = None,
    ) -> AuthorityHistory:
        """Recompute MA from ``values`` and append the explaining history row."""
        result = await self.session.execute(
            select(MemberAuthorityScore)
            .where(MemberAuthorityScore.user_id == user_id)
            .with_for_update()
        )
        score = result.scalar_one_or_none()
        if score is None:
            score = MemberAuthorityScore(
                user_id=user_id,
                value=member_authority(self.initial_values(), self.settings),
                calculated_at=now,
            )
            self.session.add(score)

        previous_ma = score.value
        score.value = member_authority(values, self.settings)
        score.calculated_at = now

        history = AuthorityHistory(
            user_id=user_id,
            previous_ma=previous_ma,
            new_ma=score.value,
            change_reason=reason.value,
            related_task_id=related_task_id,
            related_review_id=related_review_id,
            related_event_id=related_event_id,
            sub_score_deltas=dict(effective),
            created_at=now,
        )
        self.session.add(history)
        await self.session.flush()

        logger.info(
            "authority_changed",
            user_id=user_id,
            reason=reason.value,
            previous_ma=previous_ma,
            new_ma=score.value,
            deltas=effective,
        )
        return history

    async def record_change(
        self,
        user_id: str,
        raw_deltas: Deltas,
        reason: ChangeReason,
        now: datetime,
        **related: Any,
    ) -> AuthorityHistory | None:
        """Apply raw deltas with clamping. No-op for empty deltas."""
        if not raw_deltas:
            return None

        rows = await self.load_sub_scores(user_id, now)
        values = {dim: row.value for dim, row in rows.items()}
        new_values, effective = apply_deltas(values, raw_deltas)
        for dim in raw_deltas:
            rows[dim].value = new_values[dim]
            rows[dim].last_updated_at = now

        return await self.commit_values(user_id, new_values, effective, reason, now, **related)

    async def apply_event(self, event: ActivityEvent, now: datetime) -> AuthorityHistory | None:
        """Fold a ledger event's sub-score contribution in."""
        raw = event_deltas(event.activity_type, event.point_value, self.settings)
        if not raw:
            return None
        related_task_id = (
            event.related_entity_id
            if event.activity_type in (ActivityType.TASK_COMPLETED.value, ActivityType.REVIEWER_SELECTED.value)
            else None
        )
        return await self.record_change(
            event.user_id,
            raw,
            reason_for_event(event),
            now,
            related_task_id=related_task_id,
            related_event_id=event.id,
        )

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def create_review(
        self,
        task_id: str,
        reviewer_id: str,
        reviewee_id: str,
        review_type: str,
        rating: int | None,
        feedback: str | None,
        now: datetime,
    ) -> PeerReview:
        """Persist a review with the reviewer's current weight snapshot."""
        payload = parse_review_payload(review_type, rating, feedback)
        reviewer_ma = await self.current_ma(reviewer_id)
        weight = authority_weight(reviewer_ma, self.settings)

        review = PeerReview(
            task_id=task_id,
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            review_type=payload.type,
            rating=rating,
            feedback=feedback,
            authority_weight=weight,
            sentiment=payload.sentiment(),
            status=ReviewStatus.ACTIVE.value,
            applied=False,
            applied_deltas={},
            created_at=now,
        )
        self.session.add(review)
        await self.session.flush()

        logger.info(
            "review_submitted",
            review_id=str(review.id),
            task_id=task_id,
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            review_type=review.review_type,
            sentiment=review.sentiment,
            authority_weight=weight,
            reviewer_ma=reviewer_ma,
        )
        return review

    async def get_review(self, review_id: UUID, for_update: bool = False) -> PeerReview:
        query = select(PeerReview).where(PeerReview.id == review_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        review = result.scalar_one_or_none()
        if review is None:
            raise ReviewNotFound(review_id)
        return review

    async def apply_review(self, review: PeerReview, now: datetime) -> AuthorityHistory | None:
        """Fold a review into its reviewee's sub-scores. Idempotent."""
        if review.applied or review.status == ReviewStatus.VOIDED.value:
            return None

        raw = review_deltas(
            review.review_type, review.authority_weight, review.sentiment, self.settings
        )
        history = await self.record_change(
            review.reviewee_id,
            raw,
            ChangeReason.PEER_REVIEW,
            now,
            related_task_id=review.task_id,
            related_review_id=review.id,
        )
        review.applied = True
        review.applied_at = now
        review.applied_deltas = dict(history.sub_score_deltas) if history else {}
        await self.session.flush()
        return history

    async def finalize_review(self, review: PeerReview, now: datetime) -> AuthorityHistory | None:
        """Make a review permanent, applying it if it has not applied yet."""
        review.status = ReviewStatus.ACTIVE.value
        review.finalized_at = now
        history = await self.apply_review(review, now)
        await self.session.flush()
        logger.info(
            "review_finalized",
            review_id=str(review.id),
            reviewee_id=review.reviewee_id,
            applied_now=history is not None,
        )
        return history

    async def void_review(self, review: PeerReview, now: datetime) -> AuthorityHistory | None:
        """Void a review and remove its effect if it had applied."""
        was_applied = review.applied
        review.status = ReviewStatus.VOIDED.value
        review.voided_at = now
        review.finalized_at = now
        await self.session.flush()

        logger.info(
            "review_voided",
            review_id=str(review.id),
            reviewee_id=review.reviewee_id,
            was_applied=was_applied,
        )
        if not was_applied:
            return None
        return await self.rebuild_sub_scores(
            review.reviewee_id,
            now,
            ChangeReason.REVIEW_VOIDED,
            related_task_id=review.task_id,
            related_review_id=review.id,
            always_record=True,
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def replay(self, user_id: str) -> dict[str, int]:
        """Recompute sub-scores from scratch.

        Walks the user's history in order and re-derives each step from
        its source: ledger events, non-voided reviews and decay passes.
        Rows written by earlier rebuilds are derived data and skipped.
        """
        history = (
            await self.session.execute(
                select(AuthorityHistory)
                .where(AuthorityHistory.user_id == user_id)
                .order_by(AuthorityHistory.id)
            )
        ).scalars().all()

        event_ids = {h.related_event_id for h in history if h.related_event_id is not None}
        review_ids = {
            h.related_review_id
            for h in history
            if h.change_reason == ChangeReason.PEER_REVIEW.value and h.related_review_id
        }
        events = await self._by_id(ActivityEvent, event_ids)
        reviews = await self._by_id(PeerReview, review_ids)

        values = self.initial_values()
        for row in history:
            if row.change_reason in EVENT_REASONS:
                event = events.get(row.related_event_id)
                if event is None:
                    continue
                raw = event_deltas(event.activity_type, event.point_value, self.settings)
                values, _ = apply_deltas(values, raw)
            elif row.change_reason == ChangeReason.PEER_REVIEW.value:
                review = reviews.get(row.related_review_id)
                if review is None or review.status == ReviewStatus.VOIDED.value:
                    continue
                raw = review_deltas(
                    review.review_type, review.authority_weight, review.sentiment, self.settings
                )
                values, _ = apply_deltas(values, raw)
            elif row.change_reason == ChangeReason.PERFORMANCE_DECAY.value:
                for dim in row.sub_score_deltas:
                    values[dim] = decayed_value(values[dim], self.settings)
        return values

    async def _by_id(self, model: Any, ids: Iterable[Any]) -> dict[Any, Any]:
        ids = list(ids)
        if not ids:
            return {}
        result = await self.session.execute(select(model).where(model.id.in_(ids)))
        return {row.id: row for row in result.scalars().all()}

    async def rebuild_sub_scores(
        self,
        user_id: str,
        now: datetime,
        reason: ChangeReason = ChangeReason.RECOMPUTED,
        always_record: bool = False,
        **related: Any,
    ) -> AuthorityHistory | None:
        """Overwrite stored sub-scores with the replayed values.

        A history row is written when anything changed, or always when
        ``always_record`` is set (used for compensating void entries).
        """
        target = await self.replay(user_id)
        rows = await self.load_sub_scores(user_id, now)

        effective: Deltas = {}
        for dim, row in rows.items():
            if row.value != target[dim]:
                effective[dim] = target[dim] - row.value
                row.value = target[dim]

        if not effective and not always_record:
            return None
        if effective and reason == ChangeReason.RECOMPUTED:
            logger.warning("sub_score_drift_repaired", user_id=user_id, deltas=effective)
        return await self.commit_values(user_id, target, effective, reason, now, **related)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_breakdown(self, user_id: str) -> AuthorityBreakdownResponse:
        values = await self.current_values(user_id)
        result = await self.session.execute(
            select(MemberAuthorityScore).where(MemberAuthorityScore.user_id == user_id)
        )
        score = result.scalar_one_or_none()
        return AuthorityBreakdownResponse(
            user_id=user_id,
            experience_score=values[Dimension.EXPERIENCE.value],
            expertise_score=values[Dimension.EXPERTISE.value],
            authority_score=values[Dimension.AUTHORITY.value],
            trust_score=values[Dimension.TRUST.value],
            member_authority=score.value if score else member_authority(values, self.settings),
            calculated_at=score.calculated_at if score else None,
        )

    async def get_history(self, user_id: str, limit: int = 50) -> list[AuthorityHistoryEntry]:
        """Most recent first."""
        result = await self.session.execute(
            select(AuthorityHistory)
            .where(AuthorityHistory.user_id == user_id)
            .order_by(AuthorityHistory.created_at.desc(), AuthorityHistory.id.desc())
            .limit(limit)
        )
        return [AuthorityHistoryEntry.model_validate(row) for row in result.scalars().all()]
