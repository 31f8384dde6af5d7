"""LeaderboardService: ranked views over progression and authority.

Ties are broken by user id so rankings are stable between calls.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.exceptions import ValidationError
from member_authority.infrastructure.database.models import MemberAuthorityScore, UserProgression
from member_authority.shared.schemas.base import LeaderboardCategory
from member_authority.shared.utils.logging import get_logger

from .schemas import LeaderboardEntryResponse, LeaderboardResponse

logger = get_logger(__name__)

MAX_LEADERBOARD_SIZE = 100


class LeaderboardService:
    """Queries derived state for ranked leaderboards."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_leaderboard(
        self,
        category: LeaderboardCategory | str,
        limit: int = 20,
    ) -> LeaderboardResponse:
        try:
            category = LeaderboardCategory(category)
        except ValueError:
            raise ValidationError(
                f"Unknown leaderboard category '{category}'",
                field="category",
                errors=[f"must be one of: {[c.value for c in LeaderboardCategory]}"],
            )
        if not 1 <= limit <= MAX_LEADERBOARD_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_LEADERBOARD_SIZE}", field="limit"
            )

        if category == LeaderboardCategory.EXPERIENCE:
            entries = await self._experience(limit)
        else:
            entries = await self._authority(limit)

        logger.debug("leaderboard_queried", category=category.value, entries=len(entries))
        return LeaderboardResponse(category=category, entries=entries)

    async def _experience(self, limit: int) -> list[LeaderboardEntryResponse]:
        """Top users by XP."""
        result = await self.session.execute(
            select(
                UserProgression.user_id,
                UserProgression.experience_points,
                UserProgression.current_level,
            )
            .order_by(UserProgression.experience_points.desc(), UserProgression.user_id)
            .limit(limit)
        )
        return [
            LeaderboardEntryResponse(
                rank=rank,
                user_id=row.user_id,
                value=row.experience_points,
                current_level=row.current_level,
            )
            for rank, row in enumerate(result.all(), start=1)
        ]

    async def _authority(self, limit: int) -> list[LeaderboardEntryResponse]:
        """Top users by Member Authority."""
        result = await self.session.execute(
            select(MemberAuthorityScore.user_id, MemberAuthorityScore.value)
            .order_by(MemberAuthorityScore.value.desc(), MemberAuthorityScore.user_id)
            .limit(limit)
        )
        return [
            LeaderboardEntryResponse(rank=rank, user_id=row.user_id, value=row.value)
            for rank, row in enumerate(result.all(), start=1)
        ]
