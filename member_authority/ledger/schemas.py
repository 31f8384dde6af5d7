"""Pydantic v2 schemas for the Activity Ledger."""

from datetime import datetime
from typing import Any

from pydantic import Field

from member_authority.shared.schemas.base import BaseSchema


class ActivityEventResponse(BaseSchema):
    """A single ledger entry."""

    id: int
    user_id: str
    activity_type: str
    point_value: int
    related_entity_id: str | None = None
    payload: dict[str, Any] | None = None
    occurred_at: datetime
    compensates_event_id: int | None = None
    reason: str | None = None


class ActivityRecordResponse(BaseSchema):
    """Response after recording or compensating an activity."""

    event_id: int
    user_id: str
    activity_type: str
    point_value: int
    experience_points: int
    current_level: int
    level_up: bool = False
    badges_unlocked: list[str] = Field(default_factory=list)
