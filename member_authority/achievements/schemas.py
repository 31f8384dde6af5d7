"""Pydantic v2 schemas for achievements."""

from datetime import datetime

from member_authority.shared.schemas.base import BadgeCategory, BaseSchema


class BadgeAwardResponse(BaseSchema):
    """An unlocked badge with its catalog display fields."""

    badge_type: str
    awarded_at: datetime
    name: str | None = None
    description: str | None = None
    icon_name: str | None = None
    badge_color: str | None = None
    category: BadgeCategory | None = None
    required_value: int | None = None
