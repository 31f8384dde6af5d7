"""Strictly Typed Activity and Review Payload Schemas.

Collaborators used to attach free-form JSON to activities and reviews.
Here every activity type and review type has exactly one payload shape,
selected by its ``type`` tag. Unknown tags, unknown fields and values
outside their ranges are rejected before anything reaches the ledger.

Usage:
------
    from member_authority.shared.schemas.activity_payloads import (
        parse_activity_payload,
    )

    payload = parse_activity_payload(
        "task_completed", {"type": "task_completed", "task_id": "T-17"}
    )
    payload.entity_id  # "T-17"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from member_authority.exceptions import InvalidActivityType, InvalidPayload, InvalidRating
from member_authority.shared.schemas.base import ActivityType, ReviewType


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Name of the field holding the natural entity id.
    entity_field: ClassVar[str]

    @property
    def entity_id(self) -> str | None:
        value = getattr(self, self.entity_field)
        if value is None:
            return None
        if isinstance(value, date):
            return value.isoformat()
        return str(value)


# =============================================================================
# ACTIVITY PAYLOADS
# =============================================================================


class TaskCompletedPayload(_Payload):
    entity_field: ClassVar[str] = "task_id"

    type: Literal["task_completed"] = "task_completed"
    task_id: str | None = Field(default=None, min_length=1)
    project_id: str | None = None


class TaskItemCompletedPayload(_Payload):
    entity_field: ClassVar[str] = "task_item_id"

    type: Literal["task_item_completed"] = "task_item_completed"
    task_item_id: str | None = Field(default=None, min_length=1)
    task_id: str | None = None


class DocumentUploadedPayload(_Payload):
    entity_field: ClassVar[str] = "document_id"

    type: Literal["document_uploaded"] = "document_uploaded"
    document_id: str | None = Field(default=None, min_length=1)
    mime_type: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)


class ReviewGivenPayload(_Payload):
    entity_field: ClassVar[str] = "review_id"

    type: Literal["review_given"] = "review_given"
    review_id: str | None = Field(default=None, min_length=1)
    task_id: str | None = None


class ReviewReceivedPositivePayload(_Payload):
    entity_field: ClassVar[str] = "review_id"

    type: Literal["review_received_positive"] = "review_received_positive"
    review_id: str | None = Field(default=None, min_length=1)
    task_id: str | None = None


class ProjectCreatedPayload(_Payload):
    entity_field: ClassVar[str] = "project_id"

    type: Literal["project_created"] = "project_created"
    project_id: str | None = Field(default=None, min_length=1)


class ProjectJoinedPayload(_Payload):
    entity_field: ClassVar[str] = "project_id"

    type: Literal["project_joined"] = "project_joined"
    project_id: str | None = Field(default=None, min_length=1)
    permission_level: Literal["view", "edit", "admin"] | None = None


class UserLoginPayload(_Payload):
    entity_field: ClassVar[str] = "login_date"

    type: Literal["user_login"] = "user_login"
    login_date: date


class CommentAddedPayload(_Payload):
    entity_field: ClassVar[str] = "comment_id"

    type: Literal["comment_added"] = "comment_added"
    comment_id: str | None = Field(default=None, min_length=1)
    task_id: str | None = None


class ReviewerSelectedPayload(_Payload):
    entity_field: ClassVar[str] = "task_id"

    type: Literal["reviewer_selected"] = "reviewer_selected"
    task_id: str | None = Field(default=None, min_length=1)


class MentorAssignedPayload(_Payload):
    entity_field: ClassVar[str] = "mentee_id"

    type: Literal["mentor_assigned"] = "mentor_assigned"
    mentee_id: str | None = Field(default=None, min_length=1)


ActivityPayload = Annotated[
    Union[
        TaskCompletedPayload,
        TaskItemCompletedPayload,
        DocumentUploadedPayload,
        ReviewGivenPayload,
        ReviewReceivedPositivePayload,
        ProjectCreatedPayload,
        ProjectJoinedPayload,
        UserLoginPayload,
        CommentAddedPayload,
        ReviewerSelectedPayload,
        MentorAssignedPayload,
    ],
    Field(discriminator="type"),
]

_activity_adapter: TypeAdapter[Any] = TypeAdapter(ActivityPayload)

ACTIVITY_PAYLOAD_MODELS: dict[ActivityType, type[_Payload]] = {
    ActivityType.TASK_COMPLETED: TaskCompletedPayload,
    ActivityType.TASK_ITEM_COMPLETED: TaskItemCompletedPayload,
    ActivityType.DOCUMENT_UPLOADED: DocumentUploadedPayload,
    ActivityType.REVIEW_GIVEN: ReviewGivenPayload,
    ActivityType.REVIEW_RECEIVED_POSITIVE: ReviewReceivedPositivePayload,
    ActivityType.PROJECT_CREATED: ProjectCreatedPayload,
    ActivityType.PROJECT_JOINED: ProjectJoinedPayload,
    ActivityType.USER_LOGIN: UserLoginPayload,
    ActivityType.COMMENT_ADDED: CommentAddedPayload,
    ActivityType.REVIEWER_SELECTED: ReviewerSelectedPayload,
    ActivityType.MENTOR_ASSIGNED: MentorAssignedPayload,
}


def _errors(exc: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]


def coerce_activity_type(activity_type: str | ActivityType) -> ActivityType:
    """Map a raw activity type string onto the closed enum."""
    try:
        return ActivityType(activity_type)
    except ValueError:
        raise InvalidActivityType(str(activity_type), [t.value for t in ActivityType])


def parse_activity_payload(
    activity_type: str | ActivityType,
    payload: dict[str, Any] | None,
    related_entity_id: str | None = None,
    default_login_date: date | None = None,
) -> _Payload:
    """Validate an activity payload against its variant.

    When ``payload`` is omitted, the variant is built from
    ``related_entity_id`` (and, for logins, ``default_login_date``).

    Raises:
        InvalidActivityType: Unknown activity type
        InvalidPayload: Shape does not match the activity type's variant
    """
    kind = coerce_activity_type(activity_type)
    model = ACTIVITY_PAYLOAD_MODELS[kind]

    if payload is None:
        raw: dict[str, Any] = {"type": kind.value}
        if kind == ActivityType.USER_LOGIN:
            raw["login_date"] = related_entity_id or default_login_date
        elif related_entity_id is not None:
            raw[model.entity_field] = related_entity_id
    else:
        raw = dict(payload)
        raw.setdefault("type", kind.value)

    if raw.get("type") != kind.value:
        raise InvalidPayload(
            f"Payload type '{raw.get('type')}' does not match activity type '{kind.value}'",
            field="type",
        )

    try:
        parsed = _activity_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise InvalidPayload(
            f"Invalid payload for activity '{kind.value}'",
            field="payload",
            errors=_errors(e),
        ) from e

    if (
        payload is not None
        and related_entity_id is not None
        and parsed.entity_id is not None
        and parsed.entity_id != related_entity_id
    ):
        raise InvalidPayload(
            f"related_entity_id '{related_entity_id}' disagrees with payload "
            f"{model.entity_field} '{parsed.entity_id}'",
            field="related_entity_id",
        )
    return parsed


# =============================================================================
# REVIEW PAYLOADS
# =============================================================================


class _ReviewPayload(BaseModel, ABC):
    model_config = ConfigDict(extra="forbid", frozen=True)

    @abstractmethod
    def sentiment(self) -> int:
        """+1 positive, 0 neutral, -1 negative."""


def _rating_sentiment(rating: int) -> int:
    if rating >= 4:
        return 1
    if rating <= 2:
        return -1
    return 0


class StarRatingReview(_ReviewPayload):
    type: Literal["star_rating"] = "star_rating"
    rating: int = Field(..., ge=1, le=5)
    feedback: str | None = None

    def sentiment(self) -> int:
        return _rating_sentiment(self.rating)


class DetailedReview(_ReviewPayload):
    type: Literal["detailed_review"] = "detailed_review"
    rating: int = Field(..., ge=1, le=5)
    feedback: str = Field(..., min_length=1)

    @field_validator("feedback")
    @classmethod
    def validate_feedback(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Detailed reviews require written feedback")
        return v

    def sentiment(self) -> int:
        return _rating_sentiment(self.rating)


class ThumbsUpReview(_ReviewPayload):
    type: Literal["thumbs_up"] = "thumbs_up"
    feedback: str | None = None

    def sentiment(self) -> int:
        return 1


class ThumbsDownReview(_ReviewPayload):
    type: Literal["thumbs_down"] = "thumbs_down"
    feedback: str | None = None

    def sentiment(self) -> int:
        return -1


ReviewPayload = Annotated[
    Union[StarRatingReview, DetailedReview, ThumbsUpReview, ThumbsDownReview],
    Field(discriminator="type"),
]

_review_adapter: TypeAdapter[Any] = TypeAdapter(ReviewPayload)


def parse_review_payload(
    review_type: str | ReviewType,
    rating: int | None = None,
    feedback: str | None = None,
) -> _ReviewPayload:
    """Build and validate the payload variant for a review type.

    Raises:
        InvalidPayload: Unknown review type or malformed feedback
        InvalidRating: Rating missing where required, present where not
            allowed, or outside 1-5
    """
    try:
        kind = ReviewType(review_type)
    except ValueError:
        raise InvalidPayload(
            f"Unknown review type '{review_type}'",
            field="review_type",
            errors=[f"must be one of: {[t.value for t in ReviewType]}"],
        )

    rated = kind in (ReviewType.STAR_RATING, ReviewType.DETAILED_REVIEW)
    if rated and rating is None:
        raise InvalidRating(f"Review type '{kind.value}' requires a rating")
    if not rated and rating is not None:
        raise InvalidRating(
            f"Review type '{kind.value}' does not accept a rating", rating=rating
        )
    if rating is not None and not 1 <= rating <= 5:
        raise InvalidRating(f"Rating must be between 1 and 5, got {rating}", rating=rating)

    raw: dict[str, Any] = {"type": kind.value}
    if rating is not None:
        raw["rating"] = rating
    if feedback is not None:
        raw["feedback"] = feedback

    try:
        return _review_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise InvalidPayload(
            f"Invalid payload for review '{kind.value}'",
            field="feedback",
            errors=_errors(e),
        ) from e


__all__ = [
    "ActivityPayload",
    "ACTIVITY_PAYLOAD_MODELS",
    "coerce_activity_type",
    "parse_activity_payload",
    "ReviewPayload",
    "StarRatingReview",
    "DetailedReview",
    "ThumbsUpReview",
    "ThumbsDownReview",
    "parse_review_payload",
]
