"""Progression calculator: stateless, deterministic, total.

Level is a pure function of cumulative XP, so derived state can always
be recomputed from the ledger.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Final

# Cumulative XP required for levels 2 through 11.
LEVEL_THRESHOLDS: Final[list[int]] = [100, 300, 600, 1000, 1500, 2100, 2800, 3600, 4500, 5500]

# Flat XP per level once the stepped table is exhausted.
XP_PER_LEVEL_ABOVE_TABLE: Final[int] = 1000


@dataclass(frozen=True)
class LevelProgress:
    """Position of an XP total within its level."""

    level: int
    xp_into_level: int
    xp_required: int
    progress_percent: float


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int
    last_login_date: date | None


def level_of(xp: int) -> int:
    """Current level given total XP. Negative input counts as 0."""
    xp = max(0, xp)
    top = LEVEL_THRESHOLDS[-1]
    if xp >= top:
        return (xp - top) // XP_PER_LEVEL_ABOVE_TABLE + len(LEVEL_THRESHOLDS) + 1

    level = 1
    for threshold in LEVEL_THRESHOLDS:
        if xp < threshold:
            break
        level += 1
    return level


def xp_for_level(level: int) -> int:
    """Cumulative XP at which ``level`` starts.

    Level 1: 0 XP
    Level 2: 100 XP
    Level 11: 5,500 XP
    Level 12: 6,500 XP
    """
    if level <= 1:
        return 0
    if level <= len(LEVEL_THRESHOLDS) + 1:
        return LEVEL_THRESHOLDS[level - 2]
    return LEVEL_THRESHOLDS[-1] + (level - len(LEVEL_THRESHOLDS) - 1) * XP_PER_LEVEL_ABOVE_TABLE


def level_progress(xp: int) -> LevelProgress:
    """Progress towards the next level, as shown on the profile widget."""
    xp = max(0, xp)
    level = level_of(xp)
    start = xp_for_level(level)
    required = xp_for_level(level + 1) - start
    into = xp - start
    return LevelProgress(
        level=level,
        xp_into_level=into,
        xp_required=required,
        progress_percent=round(min(into / required * 100, 100.0), 2),
    )


def advance_streak(state: StreakState, login_date: date) -> StreakState:
    """Fold a login that is not earlier than the last one into the streak.

    A login on the day after the last one extends the streak; a repeat of
    the same day changes nothing; any gap restarts it at 1.
    """
    last = state.last_login_date
    if last is not None and login_date < last:
        raise ValueError("advance_streak requires logins in date order")
    if last == login_date:
        return state
    if last is not None and login_date - last == timedelta(days=1):
        current = state.current_streak + 1
    else:
        current = 1
    return StreakState(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_login_date=login_date,
    )


def streak_from_dates(login_dates: Iterable[date]) -> StreakState:
    """Streak fields for a set of login days, in any order."""
    state = StreakState(current_streak=0, longest_streak=0, last_login_date=None)
    for day in sorted(set(login_dates)):
        state = advance_streak(state, day)
    return state
