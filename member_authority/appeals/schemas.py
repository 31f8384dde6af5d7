"""Pydantic v2 schemas for grace period requests."""

from datetime import datetime
from uuid import UUID

from member_authority.shared.schemas.base import BaseSchema, GracePeriodStatus


class GracePeriodRequestResponse(BaseSchema):
    id: UUID
    user_id: str
    task_id: str
    review_id: UUID
    reason: str
    status: GracePeriodStatus
    requested_days: int
    expires_at: datetime
    approver_id: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime
