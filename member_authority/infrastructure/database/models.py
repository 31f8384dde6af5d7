"""SQLAlchemy ORM models for the Member Authority engine."""

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from member_authority.shared.utils.datetime_utils import ensure_utc, utcnow


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on storage, so values are normalized to UTC on the
    way in and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON().with_variant(JSONB(), "postgresql"),
        datetime: UTCDateTime(),
    }


# ===========================================
# ACTIVITY LEDGER TABLES
# ===========================================


class ActivityEvent(Base):
    """Immutable point-bearing fact. Removals are compensating rows."""

    __tablename__ = "activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    point_value: Mapped[int] = mapped_column(Integer, nullable=False)
    related_entity_id: Mapped[str | None] = mapped_column(String(255))
    payload: Mapped[dict[str, Any] | None] = mapped_column()
    occurred_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    compensates_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("activity_events.id"), unique=True
    )
    reason: Mapped[str | None] = mapped_column(Text)
    # Set only for at-most-once activity types and compensations.
    dedupe_key: Mapped[str | None] = mapped_column(String(600), unique=True)

    __table_args__ = (
        Index("idx_activity_user_time", "user_id", "occurred_at", "id"),
        Index("idx_activity_type", "activity_type"),
    )


class ActivityCounter(Base):
    """Per-user count of net recorded activities by type."""

    __tablename__ = "activity_counters"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    activity_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ===========================================
# PROGRESSION TABLES
# ===========================================


class UserProgression(Base):
    """Derived XP, level and login streak per user."""

    __tablename__ = "user_progression"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    experience_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_date: Mapped[date | None] = mapped_column(Date)
    last_recomputed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("experience_points >= 0", name="xp_non_negative"),
        CheckConstraint("current_level >= 1", name="level_positive"),
        Index("idx_progression_xp", "experience_points"),
    )


# ===========================================
# AUTHORITY TABLES
# ===========================================


class SubScore(Base):
    """One E-E-A-T dimension for a user."""

    __tablename__ = "sub_scores"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    dimension: Mapped[str] = mapped_column(String(20), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    last_decayed_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint("value >= 0 AND value <= 100", name="sub_score_range"),
        CheckConstraint(
            "dimension IN ('experience', 'expertise', 'authority', 'trust')",
            name="valid_dimension",
        ),
        Index("idx_sub_scores_decay", "dimension", "last_updated_at"),
    )


class MemberAuthorityScore(Base):
    """Composite score, always recomputed from sub-scores."""

    __tablename__ = "member_authority_scores"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calculated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("value >= 0 AND value <= 1000", name="ma_range"),
        Index("idx_ma_value", "value"),
    )


class PeerReview(Base):
    """A review with its reviewer weight snapshot."""

    __tablename__ = "peer_reviews"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewee_id: Mapped[str] = mapped_column(String(255), nullable=False)
    review_type: Mapped[str] = mapped_column(String(30), nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer)
    feedback: Mapped[str | None] = mapped_column(Text)
    authority_weight: Mapped[float] = mapped_column(Float, nullable=False)
    sentiment: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applied_at: Mapped[datetime | None] = mapped_column()
    applied_deltas: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    finalized_at: Mapped[datetime | None] = mapped_column()
    voided_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="valid_rating"),
        CheckConstraint("authority_weight > 0", name="positive_weight"),
        CheckConstraint("status IN ('active', 'disputed', 'voided')", name="valid_review_status"),
        CheckConstraint("reviewer_id <> reviewee_id", name="no_self_review"),
        Index("idx_reviews_reviewee", "reviewee_id"),
        Index("idx_reviews_pending", "applied", "status", "created_at"),
    )


class AuthorityHistory(Base):
    """Append-only explanation of every MA change."""

    __tablename__ = "authority_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    previous_ma: Mapped[int] = mapped_column(Integer, nullable=False)
    new_ma: Mapped[int] = mapped_column(Integer, nullable=False)
    change_reason: Mapped[str] = mapped_column(String(50), nullable=False)
    related_task_id: Mapped[str | None] = mapped_column(String(255))
    related_review_id: Mapped[UUID | None] = mapped_column(Uuid)
    related_event_id: Mapped[int | None] = mapped_column(Integer)
    sub_score_deltas: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_history_user_time", "user_id", "created_at", "id"),
        Index("idx_history_reason", "change_reason"),
    )


# ===========================================
# APPEAL TABLES
# ===========================================


class GracePeriodRequest(Base):
    """Dispute of a negative review."""

    __tablename__ = "grace_period_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    review_id: Mapped[UUID] = mapped_column(ForeignKey("peer_reviews.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    approver_id: Mapped[str | None] = mapped_column(String(255))
    resolved_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    # Mirrors review_id while pending so at most one open request exists per review.
    open_review_id: Mapped[UUID | None] = mapped_column(Uuid, unique=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired')",
            name="valid_request_status",
        ),
        CheckConstraint("requested_days >= 1", name="requested_days_positive"),
        Index("idx_grace_user", "user_id", "created_at"),
        Index("idx_grace_pending", "status", "expires_at"),
    )


# ===========================================
# ACHIEVEMENT TABLES
# ===========================================


class UserBadgeAward(Base):
    """A badge unlocked by a user. Never awarded twice."""

    __tablename__ = "user_badge_awards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    badge_type: Mapped[str] = mapped_column(String(50), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_type", name="uq_user_badge"),
        Index("idx_badges_user", "user_id"),
    )
