"""Pydantic v2 schemas for the Authority Aggregator."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from member_authority.shared.schemas.base import BaseSchema, ReviewStatus, ReviewType


class AuthorityBreakdownResponse(BaseSchema):
    """Four E-E-A-T sub-scores and the composite."""

    user_id: str
    experience_score: int
    expertise_score: int
    authority_score: int
    trust_score: int
    member_authority: int
    calculated_at: datetime | None


class AuthorityHistoryEntry(BaseSchema):
    """One explained MA change."""

    id: int
    user_id: str
    previous_ma: int
    new_ma: int
    change_reason: str
    related_task_id: str | None = None
    related_review_id: UUID | None = None
    related_event_id: int | None = None
    sub_score_deltas: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class PeerReviewResponse(BaseSchema):
    id: UUID
    task_id: str
    reviewer_id: str
    reviewee_id: str
    review_type: ReviewType
    rating: int | None
    feedback: str | None
    authority_weight: float
    sentiment: int
    status: ReviewStatus
    applied: bool
    applied_deltas: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    finalized_at: datetime | None
