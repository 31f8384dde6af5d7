"""Pydantic v2 schemas for progression and leaderboards."""

from datetime import date, datetime

from member_authority.shared.schemas.base import BaseSchema, LeaderboardCategory


class ProgressionResponse(BaseSchema):
    """XP, level and streak snapshot for a user."""

    user_id: str
    experience_points: int
    current_level: int
    current_streak: int
    longest_streak: int
    last_login_date: date | None
    xp_into_level: int
    xp_required: int
    progress_percent: float
    last_recomputed_at: datetime | None


class LeaderboardEntryResponse(BaseSchema):
    """A single row in a leaderboard."""

    rank: int
    user_id: str
    value: int
    current_level: int | None = None


class LeaderboardResponse(BaseSchema):
    category: LeaderboardCategory
    entries: list[LeaderboardEntryResponse]


class RebuildResponse(BaseSchema):
    """Outcome of recomputing a user's derived state from the ledger."""

    user_id: str
    experience_points: int
    current_level: int
    sub_scores_changed: bool
