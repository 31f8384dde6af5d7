"""Base schemas and common types used across the engine."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


# ===========================================
# ENUMS
# ===========================================


class ActivityType(str, Enum):
    """Point-bearing activities emitted by collaborators."""

    TASK_COMPLETED = "task_completed"
    TASK_ITEM_COMPLETED = "task_item_completed"
    DOCUMENT_UPLOADED = "document_uploaded"
    REVIEW_GIVEN = "review_given"
    REVIEW_RECEIVED_POSITIVE = "review_received_positive"
    PROJECT_CREATED = "project_created"
    PROJECT_JOINED = "project_joined"
    USER_LOGIN = "user_login"
    COMMENT_ADDED = "comment_added"
    REVIEWER_SELECTED = "reviewer_selected"
    MENTOR_ASSIGNED = "mentor_assigned"


class ReviewType(str, Enum):
    """Kinds of peer review."""

    STAR_RATING = "star_rating"
    DETAILED_REVIEW = "detailed_review"
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"


class Dimension(str, Enum):
    """E-E-A-T sub-score dimensions."""

    EXPERIENCE = "experience"
    EXPERTISE = "expertise"
    AUTHORITY = "authority"
    TRUST = "trust"


class ReviewStatus(str, Enum):
    """Lifecycle of a peer review with respect to disputes."""

    ACTIVE = "active"
    DISPUTED = "disputed"
    VOIDED = "voided"


class GracePeriodStatus(str, Enum):
    """Grace period request states. Everything but PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class GracePeriodDecision(str, Enum):
    """Decisions an approver can take on a pending request."""

    APPROVED = "approved"
    REJECTED = "rejected"


class BadgeCategory(str, Enum):
    """Aggregate a badge threshold is compared against."""

    TASKS = "tasks"
    DOCUMENTS = "documents"
    STREAKS = "streaks"
    REVIEWS = "reviews"
    PROJECTS = "projects"
    LEVELS = "levels"
    AUTHORITY = "authority"


class LeaderboardCategory(str, Enum):
    EXPERIENCE = "experience"
    AUTHORITY = "authority"


class ChangeReason(str, Enum):
    """Reasons recorded on authority history rows."""

    TASK_COMPLETION = "task_completion"
    ACTIVITY_COMPENSATED = "activity_compensated"
    REVIEWER_SELECTION = "reviewer_selection"
    PEER_REVIEW = "peer_review"
    REVIEW_VOIDED = "review_voided"
    PERFORMANCE_DECAY = "performance_decay"
    RECOMPUTED = "recomputed"


# ===========================================
# BASE SCHEMAS
# ===========================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )
