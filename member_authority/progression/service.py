"""ProgressionService: XP, level and login streak bookkeeping."""

from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.infrastructure.database.models import ActivityEvent, UserProgression
from member_authority.shared.schemas.base import ActivityType
from member_authority.shared.utils.logging import get_logger

from .calculator import StreakState, advance_streak, level_of, streak_from_dates

logger = get_logger(__name__)


def effective_login_dates(events: Iterable[ActivityEvent]) -> list[date]:
    """Login days from events that were not compensated."""
    events = list(events)
    compensated = {e.compensates_event_id for e in events if e.compensates_event_id is not None}
    return [
        date.fromisoformat(e.related_entity_id)
        for e in events
        if e.activity_type == ActivityType.USER_LOGIN.value
        and e.compensates_event_id is None
        and e.id not in compensated
        and e.related_entity_id
    ]


def experience_from_events(events: Iterable[ActivityEvent]) -> int:
    """XP implied by a ledger. Compensations never take XP back."""
    return sum(e.point_value for e in events if e.point_value > 0)


class ProgressionService:
    """Maintains one UserProgression row per user."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> UserProgression | None:
        result = await self.session.execute(
            select(UserProgression).where(UserProgression.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def load_for_update(self, user_id: str, now: datetime) -> UserProgression:
        """Load (with row lock) or create the user's progression row."""
        result = await self.session.execute(
            select(UserProgression)
            .where(UserProgression.user_id == user_id)
            .with_for_update()
        )
        progression = result.scalar_one_or_none()

        if progression is None:
            progression = UserProgression(
                user_id=user_id,
                experience_points=0,
                current_level=1,
                current_streak=0,
                longest_streak=0,
                last_recomputed_at=now,
            )
            self.session.add(progression)
            await self.session.flush()
        return progression

    async def apply_event(self, event: ActivityEvent, now: datetime) -> tuple[int, int]:
        """Fold one ledger event into the user's progression.

        Returns:
            (previous level, new level)
        """
        progression = await self.load_for_update(event.user_id, now)
        old_level = progression.current_level

        if event.point_value > 0:
            progression.experience_points += event.point_value
            progression.current_level = level_of(progression.experience_points)

        if event.activity_type == ActivityType.USER_LOGIN.value:
            await self._update_streak(progression, event)

        progression.last_recomputed_at = now
        await self.session.flush()

        if progression.current_level > old_level:
            logger.info(
                "level_up",
                user_id=event.user_id,
                old_level=old_level,
                new_level=progression.current_level,
                experience_points=progression.experience_points,
            )
        return old_level, progression.current_level

    async def _update_streak(self, progression: UserProgression, event: ActivityEvent) -> None:
        login_day = date.fromisoformat(event.related_entity_id) if event.related_entity_id else None
        last = progression.last_login_date

        if (
            event.compensates_event_id is None
            and login_day is not None
            and (last is None or login_day >= last)
        ):
            state = advance_streak(
                StreakState(progression.current_streak, progression.longest_streak, last),
                login_day,
            )
        else:
            # Backfilled or compensated login: recount from the ledger.
            result = await self.session.execute(
                select(ActivityEvent).where(
                    ActivityEvent.user_id == progression.user_id,
                    ActivityEvent.activity_type == ActivityType.USER_LOGIN.value,
                )
            )
            state = streak_from_dates(effective_login_dates(result.scalars().all()))

        progression.current_streak = state.current_streak
        progression.longest_streak = state.longest_streak
        progression.last_login_date = state.last_login_date

    async def rebuild(
        self,
        user_id: str,
        events: list[ActivityEvent],
        now: datetime,
    ) -> UserProgression:
        """Recompute XP, level and streaks from the user's full ledger."""
        progression = await self.load_for_update(user_id, now)
        xp = experience_from_events(events)
        streak = streak_from_dates(effective_login_dates(events))

        if xp != progression.experience_points:
            logger.warning(
                "progression_drift_repaired",
                user_id=user_id,
                stored_xp=progression.experience_points,
                ledger_xp=xp,
            )

        progression.experience_points = xp
        progression.current_level = level_of(xp)
        progression.current_streak = streak.current_streak
        progression.longest_streak = streak.longest_streak
        progression.last_login_date = streak.last_login_date
        progression.last_recomputed_at = now
        await self.session.flush()
        return progression
