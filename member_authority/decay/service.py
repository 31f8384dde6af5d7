"""DecayService: erosion of inactive Trust and Authority sub-scores.

A dimension decays only when it has not been updated inside the
inactivity window, its value is above the floor, and it has not been
decayed within the minimum interval. Decay does not count as an update,
so an inactive dimension keeps decaying on later passes.
"""

from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.authority.calculator import Deltas, decayed_value
from member_authority.authority.service import AuthorityService
from member_authority.config import EngineSettings
from member_authority.infrastructure.database.models import AuthorityHistory, SubScore
from member_authority.shared.schemas.base import ChangeReason
from member_authority.shared.utils.datetime_utils import ensure_utc
from member_authority.shared.utils.logging import get_logger

logger = get_logger(__name__)


class DecayService:
    """Finds and decays inactive sub-scores."""

    def __init__(self, session: AsyncSession, settings: EngineSettings):
        self.session = session
        self.settings = settings
        self.authority = AuthorityService(session, settings)

    def _inactive_before(self, now: datetime) -> datetime:
        return now - timedelta(days=self.settings.decay_inactivity_days)

    def _decayed_before(self, now: datetime) -> datetime:
        return now - timedelta(hours=self.settings.decay_min_interval_hours)

    def _dimensions(self) -> list[str]:
        return [dim.value for dim in self.settings.decay_dimensions]

    def is_due(self, row: SubScore, now: datetime) -> bool:
        if row.dimension not in self._dimensions():
            return False
        if row.value <= self.settings.decay_floor:
            return False
        if ensure_utc(row.last_updated_at) >= self._inactive_before(now):
            return False
        if row.last_decayed_at is not None and ensure_utc(row.last_decayed_at) > self._decayed_before(now):
            return False
        return True

    async def candidate_users(self, now: datetime) -> list[str]:
        """Users with at least one sub-score due for decay."""
        result = await self.session.execute(
            select(SubScore.user_id)
            .where(
                SubScore.dimension.in_(self._dimensions()),
                SubScore.value > self.settings.decay_floor,
                SubScore.last_updated_at < self._inactive_before(now),
                or_(
                    SubScore.last_decayed_at.is_(None),
                    SubScore.last_decayed_at <= self._decayed_before(now),
                ),
            )
            .distinct()
            .order_by(SubScore.user_id)
        )
        return list(result.scalars().all())

    async def decay_user(self, user_id: str, now: datetime) -> AuthorityHistory | None:
        """Apply one decay step to each due dimension of a user."""
        rows = await self.authority.load_sub_scores(user_id, now)

        effective: Deltas = {}
        for dim, row in rows.items():
            if not self.is_due(row, now):
                continue
            new_value = decayed_value(row.value, self.settings)
            row.last_decayed_at = now
            if new_value != row.value:
                effective[dim] = new_value - row.value
                row.value = new_value

        if not effective:
            await self.session.flush()
            return None

        values = {dim: row.value for dim, row in rows.items()}
        history = await self.authority.commit_values(
            user_id, values, effective, ChangeReason.PERFORMANCE_DECAY, now
        )
        logger.info("sub_scores_decayed", user_id=user_id, deltas=effective)
        return history
