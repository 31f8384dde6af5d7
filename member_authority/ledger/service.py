"""ActivityLedger: append-only record of point-bearing events.

The ledger is the source of truth for every derived number. Rows are
never updated or deleted; a removal is a compensating event carrying the
negated point value and a reference to the event it cancels.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from member_authority.config import EngineSettings
from member_authority.exceptions import (
    ActivityEventNotFound,
    DuplicateEvent,
    InvalidActivityType,
    ValidationError,
)
from member_authority.infrastructure.database.models import ActivityCounter, ActivityEvent
from member_authority.infrastructure.database.upsert import increment
from member_authority.shared.schemas.activity_payloads import (
    coerce_activity_type,
    parse_activity_payload,
)
from member_authority.shared.utils.datetime_utils import utc_date
from member_authority.shared.utils.logging import get_logger

logger = get_logger(__name__)


def dedupe_key_for(user_id: str, activity_type: str, related_entity_id: str | None) -> str:
    """Natural key of an at-most-once activity."""
    return f"{activity_type}:{user_id}:{related_entity_id or ''}"


class ActivityLedger:
    """Appends, compensates and reads activity events."""

    def __init__(self, session: AsyncSession, settings: EngineSettings):
        self.session = session
        self.settings = settings

    async def record(
        self,
        user_id: str,
        activity_type: str,
        related_entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> ActivityEvent:
        """Validate and append one activity event.

        Raises:
            InvalidActivityType: Type not in the configured point table
            InvalidPayload: Payload does not match the type's variant
            DuplicateEvent: At-most-once activity already recorded
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")

        kind = coerce_activity_type(activity_type)
        points = self.settings.points_for(kind.value)
        if points is None:
            raise InvalidActivityType(kind.value, list(self.settings.activity_points))

        parsed = parse_activity_payload(
            kind,
            payload,
            related_entity_id=related_entity_id,
            default_login_date=utc_date(occurred_at) if occurred_at else None,
        )
        entity_id = parsed.entity_id or related_entity_id

        dedupe_key = None
        if self.settings.is_at_most_once(kind.value):
            dedupe_key = dedupe_key_for(user_id, kind.value, entity_id)
            existing = await self.session.execute(
                select(ActivityEvent.id).where(ActivityEvent.dedupe_key == dedupe_key)
            )
            if existing.scalar_one_or_none() is not None:
                logger.info(
                    "duplicate_activity_rejected",
                    user_id=user_id,
                    activity_type=kind.value,
                    related_entity_id=entity_id,
                )
                raise DuplicateEvent(user_id, kind.value, entity_id)

        event = ActivityEvent(
            user_id=user_id,
            activity_type=kind.value,
            point_value=points,
            related_entity_id=entity_id,
            payload=parsed.model_dump(mode="json"),
            dedupe_key=dedupe_key,
        )
        if occurred_at is not None:
            event.occurred_at = occurred_at
        self.session.add(event)

        try:
            await self.session.flush()
        except IntegrityError as e:
            if dedupe_key is None:
                raise
            raise DuplicateEvent(user_id, kind.value, entity_id) from e

        await increment(
            self.session,
            ActivityCounter,
            {"user_id": user_id, "activity_type": kind.value},
            "event_count",
            1,
        )

        logger.info(
            "activity_recorded",
            event_id=event.id,
            user_id=user_id,
            activity_type=kind.value,
            points=points,
            related_entity_id=entity_id,
        )
        return event

    async def get(self, event_id: int) -> ActivityEvent:
        event = await self.session.get(ActivityEvent, event_id)
        if event is None:
            raise ActivityEventNotFound(event_id)
        return event

    async def compensate(
        self,
        event_id: int,
        reason: str,
        occurred_at: datetime | None = None,
    ) -> ActivityEvent:
        """Append the compensating event for ``event_id``.

        Raises:
            ActivityEventNotFound: No such event
            ValidationError: The event is itself a compensation
            DuplicateEvent: The event was already compensated
        """
        original = await self.get(event_id)
        if original.compensates_event_id is not None:
            raise ValidationError(
                f"Event {event_id} is a compensation and cannot be compensated",
                field="event_id",
            )

        dedupe_key = f"comp:{event_id}"
        existing = await self.session.execute(
            select(ActivityEvent.id).where(ActivityEvent.compensates_event_id == event_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateEvent(
                original.user_id, original.activity_type, original.related_entity_id
            )

        compensation = ActivityEvent(
            user_id=original.user_id,
            activity_type=original.activity_type,
            point_value=-original.point_value,
            related_entity_id=original.related_entity_id,
            payload=original.payload,
            compensates_event_id=original.id,
            reason=reason,
            dedupe_key=dedupe_key,
        )
        if occurred_at is not None:
            compensation.occurred_at = occurred_at
        self.session.add(compensation)

        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEvent(
                original.user_id, original.activity_type, original.related_entity_id
            ) from e

        await increment(
            self.session,
            ActivityCounter,
            {"user_id": original.user_id, "activity_type": original.activity_type},
            "event_count",
            -1,
        )

        logger.info(
            "activity_compensated",
            event_id=compensation.id,
            compensates_event_id=event_id,
            user_id=original.user_id,
            activity_type=original.activity_type,
            reason=reason,
        )
        return compensation

    async def list_since(self, user_id: str, since: datetime | None = None) -> list[ActivityEvent]:
        """Events for a user at or after ``since``, by occurred_at then id."""
        query = select(ActivityEvent).where(ActivityEvent.user_id == user_id)
        if since is not None:
            query = query.where(ActivityEvent.occurred_at >= since)
        result = await self.session.execute(
            query.order_by(ActivityEvent.occurred_at, ActivityEvent.id)
        )
        return list(result.scalars().all())

    async def counters(self, user_id: str) -> dict[str, int]:
        """Net count of recorded activities per type."""
        result = await self.session.execute(
            select(ActivityCounter.activity_type, ActivityCounter.event_count).where(
                ActivityCounter.user_id == user_id
            )
        )
        return {row.activity_type: row.event_count for row in result.all()}
