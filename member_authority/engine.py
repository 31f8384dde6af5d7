"""MemberAuthorityEngine: the async facade collaborators call.

Every mutating operation runs as one unit: take the per-user lock(s),
open a session, run everything inside a single transaction, and retry
the whole unit on `ConcurrencyConflict`. Derived state for the subject
user is recomputed in that same transaction, and the achievement
evaluator runs from one post-write hook.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from member_authority.achievements.evaluator import AchievementEvaluator
from member_authority.achievements.schemas import BadgeAwardResponse
from member_authority.appeals.schemas import GracePeriodRequestResponse
from member_authority.appeals.service import GracePeriodService, coerce_decision
from member_authority.authority.schemas import (
    AuthorityBreakdownResponse,
    AuthorityHistoryEntry,
    PeerReviewResponse,
)
from member_authority.authority.service import AuthorityService
from member_authority.config import EngineSettings, get_engine_settings
from member_authority.decay.service import DecayService
from member_authority.exceptions import (
    AlreadyResolved,
    ConcurrencyConflict,
    MemberAuthorityError,
    ValidationError,
)
from member_authority.infrastructure.concurrency import (
    RetryConfig,
    UserLockRegistry,
    conflicts_as_retryable,
    run_with_retry,
)
from member_authority.infrastructure.database.models import ActivityEvent
from member_authority.infrastructure.database.session import get_db_session
from member_authority.ledger.schemas import ActivityEventResponse, ActivityRecordResponse
from member_authority.ledger.service import ActivityLedger
from member_authority.progression.calculator import level_progress
from member_authority.progression.leaderboard import LeaderboardService
from member_authority.progression.schemas import (
    LeaderboardResponse,
    ProgressionResponse,
    RebuildResponse,
)
from member_authority.progression.service import ProgressionService
from member_authority.shared.schemas.activity_payloads import parse_review_payload
from member_authority.shared.schemas.base import (
    ActivityType,
    ChangeReason,
    GracePeriodStatus,
    LeaderboardCategory,
)
from member_authority.shared.utils.datetime_utils import Clock, utcnow
from member_authority.shared.utils.logging import (
    bind_user_context,
    clear_user_context,
    get_logger,
)

logger = get_logger(__name__)

T = TypeVar("T")

Work = Callable[[AsyncSession, datetime], Awaitable[T]]


class MemberAuthorityEngine:
    """Reputation and progression engine for one database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: EngineSettings | None = None,
        clock: Clock = utcnow,
        locks: UserLockRegistry | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_engine_settings()
        self.clock = clock
        self.locks = locks or UserLockRegistry()
        self.retry_config = RetryConfig(
            max_retries=self.settings.max_retries,
            base_delay=self.settings.retry_base_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
        )

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    async def _run(self, operation: str, user_ids: Sequence[str], work: Work[T]) -> T:
        """Run ``work`` under the users' locks in one retried transaction."""

        async def attempt() -> T:
            async with self.locks.acquire(*user_ids):
                now = self.clock()
                async with get_db_session(self.session_factory) as session:
                    with conflicts_as_retryable(user_ids[0] if user_ids else None):
                        async with session.begin():
                            return await work(session, now)

        attempt.__name__ = operation
        bind_user_context(",".join(sorted(set(user_ids))), operation)
        try:
            return await run_with_retry(self.retry_config, attempt)
        except MemberAuthorityError as e:
            logger.warning(
                "operation_failed",
                error_type=e.error_type,
                error=e.message,
                retryable=e.is_retryable,
            )
            raise
        finally:
            clear_user_context()

    async def _read(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with get_db_session(self.session_factory) as session:
            return await work(session)

    async def _after_ledger_write(
        self, session: AsyncSession, event: ActivityEvent, now: datetime
    ) -> tuple[int, int, list[str]]:
        """Recompute derived state for the event's user, then check badges."""
        old_level, new_level = await ProgressionService(session).apply_event(event, now)
        await AuthorityService(session, self.settings).apply_event(event, now)
        unlocked = await self._refresh_achievements(session, event.user_id, now)
        return old_level, new_level, unlocked

    async def _refresh_achievements(
        self, session: AsyncSession, user_id: str, now: datetime
    ) -> list[str]:
        badges = await AchievementEvaluator(session, self.settings).evaluate(user_id, now)
        return [badge.badge_type for badge in badges]

    async def _record(
        self,
        session: AsyncSession,
        now: datetime,
        user_id: str,
        activity_type: str,
        related_entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> ActivityRecordResponse:
        event = await ActivityLedger(session, self.settings).record(
            user_id, activity_type, related_entity_id, payload, occurred_at=now
        )
        return await self._record_response(session, event, now)

    async def _record_response(
        self, session: AsyncSession, event: ActivityEvent, now: datetime
    ) -> ActivityRecordResponse:
        old_level, new_level, unlocked = await self._after_ledger_write(session, event, now)
        progression = await ProgressionService(session).get(event.user_id)
        return ActivityRecordResponse(
            event_id=event.id,
            user_id=event.user_id,
            activity_type=event.activity_type,
            point_value=event.point_value,
            experience_points=progression.experience_points,
            current_level=new_level,
            level_up=new_level > old_level,
            badges_unlocked=unlocked,
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        user_id: str,
        activity_type: str | ActivityType,
        related_entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> ActivityRecordResponse:
        """Append an activity event and recompute the user's derived state."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")

        async def work(session: AsyncSession, now: datetime) -> ActivityRecordResponse:
            return await self._record(
                session, now, user_id, activity_type, related_entity_id, payload
            )

        return await self._run("record_activity", [user_id], work)

    async def award_experience(
        self, user_id: str, activity_type: str | ActivityType
    ) -> ActivityRecordResponse:
        """Award the configured points for ``activity_type``."""
        return await self.record_activity(user_id, activity_type)

    async def compensate_activity(self, event_id: int, reason: str) -> ActivityRecordResponse:
        """Cancel an event with a compensating entry. XP is kept."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required", field="reason")

        original = await self._read(
            lambda session: ActivityLedger(session, self.settings).get(event_id)
        )

        async def work(session: AsyncSession, now: datetime) -> ActivityRecordResponse:
            event = await ActivityLedger(session, self.settings).compensate(
                event_id, reason, occurred_at=now
            )
            return await self._record_response(session, event, now)

        return await self._run("compensate_activity", [original.user_id], work)

    async def submit_peer_review(
        self,
        task_id: str,
        reviewer_id: str,
        reviewee_id: str,
        review_type: str,
        rating: int | None = None,
        feedback: str | None = None,
    ) -> UUID:
        """Record a review with the reviewer's weight snapshot.

        Non-negative reviews apply and finalize immediately. Negative ones
        wait out the cooling-off window unless provisional application is
        enabled.
        """
        if not task_id:
            raise ValidationError("task_id is required", field="task_id")
        if not reviewer_id or not reviewee_id:
            raise ValidationError("reviewer_id and reviewee_id are required", field="reviewer_id")
        if reviewer_id == reviewee_id:
            raise ValidationError("Users cannot review themselves", field="reviewee_id")
        parse_review_payload(review_type, rating, feedback)

        async def work(session: AsyncSession, now: datetime) -> UUID:
            authority = AuthorityService(session, self.settings)
            review = await authority.create_review(
                task_id, reviewer_id, reviewee_id, review_type, rating, feedback, now
            )
            if review.sentiment >= 0:
                await authority.finalize_review(review, now)
            elif self.settings.apply_negative_reviews_provisionally:
                await authority.apply_review(review, now)

            credits = [(reviewer_id, ActivityType.REVIEW_GIVEN)]
            if review.sentiment > 0:
                credits.append((reviewee_id, ActivityType.REVIEW_RECEIVED_POSITIVE))
            for user_id, activity in credits:
                if self.settings.points_for(activity.value) is not None:
                    await self._record(session, now, user_id, activity, str(review.id))
            return review.id

        return await self._run("submit_peer_review", [reviewer_id, reviewee_id], work)

    async def request_grace_period(
        self,
        user_id: str,
        review_id: UUID,
        reason: str,
        requested_days: int | None = None,
    ) -> UUID:
        """Dispute a provisional negative review."""

        async def work(session: AsyncSession, now: datetime) -> UUID:
            request = await GracePeriodService(session, self.settings).request(
                user_id, review_id, reason, requested_days, now
            )
            return request.id

        return await self._run("request_grace_period", [user_id], work)

    async def resolve_grace_period(
        self,
        request_id: UUID,
        decision: str,
        approver_id: str,
    ) -> None:
        """Approve or reject a pending request.

        A pending request already past its deadline is expired first and
        then reported as resolved.
        """
        coerce_decision(decision)
        request = await self._read(
            lambda session: GracePeriodService(session, self.settings).get(request_id)
        )

        async def expire(session: AsyncSession, now: datetime) -> bool:
            expired = await GracePeriodService(session, self.settings).expire(request_id, now)
            if expired:
                await self._refresh_achievements(session, request.user_id, now)
            return expired

        if await self._run("expire_grace_period", [request.user_id], expire):
            raise AlreadyResolved(request_id, GracePeriodStatus.EXPIRED.value)

        async def work(session: AsyncSession, now: datetime) -> None:
            await GracePeriodService(session, self.settings).resolve(
                request_id, decision, approver_id, now
            )
            await self._refresh_achievements(session, request.user_id, now)

        await self._run("resolve_grace_period", [request.user_id], work)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def get_progression(self, user_id: str) -> ProgressionResponse:
        async def work(session: AsyncSession) -> ProgressionResponse:
            progression = await ProgressionService(session).get(user_id)
            xp = progression.experience_points if progression else 0
            progress = level_progress(xp)
            return ProgressionResponse(
                user_id=user_id,
                experience_points=xp,
                current_level=progression.current_level if progression else 1,
                current_streak=progression.current_streak if progression else 0,
                longest_streak=progression.longest_streak if progression else 0,
                last_login_date=progression.last_login_date if progression else None,
                xp_into_level=progress.xp_into_level,
                xp_required=progress.xp_required,
                progress_percent=progress.progress_percent,
                last_recomputed_at=progression.last_recomputed_at if progression else None,
            )

        return await self._read(work)

    async def get_authority_breakdown(self, user_id: str) -> AuthorityBreakdownResponse:
        return await self._read(
            lambda session: AuthorityService(session, self.settings).get_breakdown(user_id)
        )

    async def get_badges(self, user_id: str) -> list[BadgeAwardResponse]:
        return await self._read(
            lambda session: AchievementEvaluator(session, self.settings).get_badges(user_id)
        )

    async def get_authority_history(
        self, user_id: str, limit: int = 50
    ) -> list[AuthorityHistoryEntry]:
        if limit < 1:
            raise ValidationError("limit must be positive", field="limit")
        return await self._read(
            lambda session: AuthorityService(session, self.settings).get_history(user_id, limit)
        )

    async def get_review(self, review_id: UUID) -> PeerReviewResponse:
        async def work(session: AsyncSession) -> PeerReviewResponse:
            review = await AuthorityService(session, self.settings).get_review(review_id)
            return PeerReviewResponse.model_validate(review)

        return await self._read(work)

    async def list_activity(
        self, user_id: str, since: datetime | None = None
    ) -> list[ActivityEventResponse]:
        async def work(session: AsyncSession) -> list[ActivityEventResponse]:
            events = await ActivityLedger(session, self.settings).list_since(user_id, since)
            return [ActivityEventResponse.model_validate(e) for e in events]

        return await self._read(work)

    async def list_grace_period_requests(self, user_id: str) -> list[GracePeriodRequestResponse]:
        return await self._read(
            lambda session: GracePeriodService(session, self.settings).list_for_user(user_id)
        )

    async def get_leaderboard(
        self,
        category: LeaderboardCategory | str = LeaderboardCategory.EXPERIENCE,
        limit: int = 20,
    ) -> LeaderboardResponse:
        return await self._read(
            lambda session: LeaderboardService(session).get_leaderboard(category, limit)
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_decay_pass(self) -> int:
        """Decay every inactive user once. Returns the number of users changed."""
        now = self.clock()
        candidates = await self._read(
            lambda session: DecayService(session, self.settings).candidate_users(now)
        )

        async def decay(user_id: str) -> bool:
            async def work(session: AsyncSession, now: datetime) -> bool:
                history = await DecayService(session, self.settings).decay_user(user_id, now)
                await self._refresh_achievements(session, user_id, now)
                return history is not None

            return await self._run("decay_user", [user_id], work)

        decayed = 0
        for user_id in candidates:
            try:
                decayed += await decay(user_id)
            except ConcurrencyConflict as e:
                logger.error("decay_user_failed", user_id=user_id, error=e.message)

        logger.info("decay_pass_completed", candidates=len(candidates), decayed=decayed)
        return decayed

    async def finalize_due_reviews(self) -> int:
        """Fold in undisputed reviews whose cooling-off window has elapsed."""
        now = self.clock()
        due = await self._read(
            lambda session: GracePeriodService(session, self.settings).due_reviews(now)
        )

        finalized = 0
        for review_id, reviewee_id in due:

            async def work(session: AsyncSession, now: datetime) -> bool:
                done = await GracePeriodService(session, self.settings).finalize_if_due(review_id, now)
                if done:
                    await self._refresh_achievements(session, reviewee_id, now)
                return done

            try:
                finalized += await self._run("finalize_review", [reviewee_id], work)
            except ConcurrencyConflict as e:
                logger.error("finalize_review_failed", review_id=str(review_id), error=e.message)

        if due:
            logger.info("reviews_finalized", due=len(due), finalized=finalized)
        return finalized

    async def expire_grace_periods(self) -> int:
        """Expire pending requests past their deadline."""
        now = self.clock()
        due = await self._read(
            lambda session: GracePeriodService(session, self.settings).due_requests(now)
        )

        expired = 0
        for request_id, user_id in due:

            async def work(session: AsyncSession, now: datetime) -> bool:
                done = await GracePeriodService(session, self.settings).expire(request_id, now)
                if done:
                    await self._refresh_achievements(session, user_id, now)
                return done

            try:
                expired += await self._run("expire_grace_period", [user_id], work)
            except ConcurrencyConflict as e:
                logger.error("grace_expiry_failed", request_id=str(request_id), error=e.message)

        if due:
            logger.info("grace_periods_expired", due=len(due), expired=expired)
        return expired

    async def rebuild_user(self, user_id: str) -> RebuildResponse:
        """Recompute progression and sub-scores from the ledger."""

        async def work(session: AsyncSession, now: datetime) -> RebuildResponse:
            events = await ActivityLedger(session, self.settings).list_since(user_id)
            progression = await ProgressionService(session).rebuild(user_id, events, now)
            history = await AuthorityService(session, self.settings).rebuild_sub_scores(
                user_id, now, ChangeReason.RECOMPUTED
            )
            await self._refresh_achievements(session, user_id, now)
            return RebuildResponse(
                user_id=user_id,
                experience_points=progression.experience_points,
                current_level=progression.current_level,
                sub_scores_changed=history is not None,
            )

        return await self._run("rebuild_user", [user_id], work)

