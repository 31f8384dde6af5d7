"""AchievementEvaluator: idempotent badge unlocks.

Thresholds are compared against indexed aggregates (activity counters,
the progression row and the MA row), never against a ledger scan.
Awards go through an insert-or-ignore on the (user_id, badge_type)
unique constraint, so concurrent evaluations cannot double-award even
without the per-user lock.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.authority.service import AuthorityService
from member_authority.config import EngineSettings
from member_authority.exceptions import ConsistencyViolation
from member_authority.infrastructure.database.models import UserBadgeAward, UserProgression
from member_authority.infrastructure.database.upsert import insert_or_ignore
from member_authority.ledger.service import ActivityLedger
from member_authority.shared.schemas.base import ActivityType, BadgeCategory
from member_authority.shared.utils.logging import get_logger

from .catalog import BadgeDefinition, catalog_by_type
from .schemas import BadgeAwardResponse

logger = get_logger(__name__)

# Activity counter behind each count-based category.
CATEGORY_ACTIVITY: dict[BadgeCategory, ActivityType] = {
    BadgeCategory.TASKS: ActivityType.TASK_COMPLETED,
    BadgeCategory.DOCUMENTS: ActivityType.DOCUMENT_UPLOADED,
    BadgeCategory.REVIEWS: ActivityType.REVIEW_GIVEN,
    BadgeCategory.PROJECTS: ActivityType.PROJECT_JOINED,
}


class AchievementEvaluator:
    """Checks catalog thresholds and persists new awards."""

    def __init__(self, session: AsyncSession, settings: EngineSettings):
        self.session = session
        self.settings = settings

    async def aggregates(self, user_id: str) -> dict[BadgeCategory, int]:
        """Current value of every category's aggregate for a user."""
        counters = await ActivityLedger(self.session, self.settings).counters(user_id)
        result = await self.session.execute(
            select(UserProgression.current_level, UserProgression.longest_streak).where(
                UserProgression.user_id == user_id
            )
        )
        progression = result.one_or_none()
        ma = await AuthorityService(self.session, self.settings).current_ma(user_id)

        values = {
            category: counters.get(activity.value, 0)
            for category, activity in CATEGORY_ACTIVITY.items()
        }
        values[BadgeCategory.STREAKS] = progression.longest_streak if progression else 0
        values[BadgeCategory.LEVELS] = progression.current_level if progression else 1
        values[BadgeCategory.AUTHORITY] = ma
        return values

    async def evaluate(self, user_id: str, now: datetime) -> list[BadgeDefinition]:
        """Award every badge whose threshold is met and not yet awarded.

        Returns:
            The badges unlocked by this call, empty when nothing changed
        """
        owned = set(
            (
                await self.session.execute(
                    select(UserBadgeAward.badge_type).where(UserBadgeAward.user_id == user_id)
                )
            ).scalars().all()
        )
        aggregates = await self.aggregates(user_id)

        unlocked: list[BadgeDefinition] = []
        for badge in self.settings.badge_catalog:
            if badge.badge_type in owned:
                continue
            if aggregates.get(badge.category, 0) < badge.required_value:
                continue
            try:
                await self._award(user_id, badge, now)
            except ConsistencyViolation as e:
                logger.info(
                    "badge_already_awarded",
                    user_id=user_id,
                    badge_type=badge.badge_type,
                    detail=e.message,
                )
                continue
            unlocked.append(badge)

        if unlocked:
            logger.info(
                "badges_unlocked",
                user_id=user_id,
                badge_types=[b.badge_type for b in unlocked],
            )
        return unlocked

    async def _award(self, user_id: str, badge: BadgeDefinition, now: datetime) -> None:
        inserted = await insert_or_ignore(
            self.session,
            UserBadgeAward,
            {"user_id": user_id, "badge_type": badge.badge_type, "awarded_at": now},
            ["user_id", "badge_type"],
        )
        if not inserted:
            raise ConsistencyViolation(
                f"Badge '{badge.badge_type}' already awarded to '{user_id}'",
                {"user_id": user_id, "badge_type": badge.badge_type},
            )

    async def get_badges(self, user_id: str) -> list[BadgeAwardResponse]:
        """Awards for a user, oldest first, with display fields."""
        result = await self.session.execute(
            select(UserBadgeAward)
            .where(UserBadgeAward.user_id == user_id)
            .order_by(UserBadgeAward.awarded_at, UserBadgeAward.id)
        )
        catalog = catalog_by_type(self.settings.badge_catalog)

        badges = []
        for award in result.scalars().all():
            badge = catalog.get(award.badge_type)
            display = badge.model_dump(exclude={"badge_type"}) if badge else {}
            badges.append(
                BadgeAwardResponse(badge_type=award.badge_type, awarded_at=award.awarded_at, **display)
            )
        return badges
