"""Unit tests for the progression calculator (levels and streaks)."""

from datetime import date

import pytest

from member_authority.progression.calculator import (
    LEVEL_THRESHOLDS,
    StreakState,
    advance_streak,
    level_of,
    level_progress,
    streak_from_dates,
    xp_for_level,
)


class TestLevelOf:
    @pytest.mark.parametrize(
        "xp,level",
        [
            (0, 1),
            (99, 1),
            (100, 2),
            (299, 2),
            (300, 3),
            (999, 4),
            (1000, 5),
            (5499, 10),
            (5500, 11),
            (6499, 11),
            (6500, 12),
            (7500, 13),
        ],
    )
    def test_thresholds(self, xp, level):
        assert level_of(xp) == level

    def test_negative_xp_is_level_one(self):
        assert level_of(-50) == 1

    def test_monotonic(self):
        levels = [level_of(xp) for xp in range(0, 12000, 25)]
        assert levels == sorted(levels)


class TestXpForLevel:
    def test_known_values(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(2) == 100
        assert xp_for_level(11) == 5500
        assert xp_for_level(12) == 6500
        assert xp_for_level(15) == 9500

    def test_below_one_is_zero(self):
        assert xp_for_level(0) == 0

    def test_inverse_of_level_of(self):
        for level in range(1, 25):
            start = xp_for_level(level)
            assert level_of(start) == level
            if start > 0:
                assert level_of(start - 1) == level - 1

    def test_table_is_strictly_increasing(self):
        assert all(a < b for a, b in zip(LEVEL_THRESHOLDS, LEVEL_THRESHOLDS[1:]))


class TestLevelProgress:
    def test_mid_level(self):
        progress = level_progress(150)
        assert progress.level == 2
        assert progress.xp_into_level == 50
        assert progress.xp_required == 200
        assert progress.progress_percent == 25.0

    def test_level_start(self):
        progress = level_progress(0)
        assert progress.level == 1
        assert progress.xp_into_level == 0
        assert progress.xp_required == 100
        assert progress.progress_percent == 0.0

    def test_above_table(self):
        progress = level_progress(7000)
        assert progress.level == 12
        assert progress.xp_into_level == 500
        assert progress.xp_required == 1000
        assert progress.progress_percent == 50.0


class TestStreaks:
    def _empty(self) -> StreakState:
        return StreakState(current_streak=0, longest_streak=0, last_login_date=None)

    def test_first_login_starts_streak(self):
        state = advance_streak(self._empty(), date(2025, 1, 1))
        assert state.current_streak == 1
        assert state.longest_streak == 1
        assert state.last_login_date == date(2025, 1, 1)

    def test_consecutive_days_extend(self):
        state = self._empty()
        for day in (1, 2, 3):
            state = advance_streak(state, date(2025, 1, day))
        assert state.current_streak == 3
        assert state.longest_streak == 3

    def test_same_day_is_noop(self):
        state = advance_streak(self._empty(), date(2025, 1, 1))
        assert advance_streak(state, date(2025, 1, 1)) == state

    def test_gap_resets_but_keeps_longest(self):
        state = self._empty()
        for day in (1, 2, 3, 5):
            state = advance_streak(state, date(2025, 1, day))
        assert state.current_streak == 1
        assert state.longest_streak == 3

    def test_out_of_order_rejected(self):
        state = advance_streak(self._empty(), date(2025, 1, 5))
        with pytest.raises(ValueError):
            advance_streak(state, date(2025, 1, 4))

    def test_from_unordered_dates_with_duplicates(self):
        days = [date(2025, 1, 3), date(2025, 1, 1), date(2025, 1, 2), date(2025, 1, 2)]
        state = streak_from_dates(days)
        assert state.current_streak == 3
        assert state.longest_streak == 3
        assert state.last_login_date == date(2025, 1, 3)

    def test_from_no_dates(self):
        state = streak_from_dates([])
        assert state.current_streak == 0
        assert state.last_login_date is None

    def test_month_boundary(self):
        state = streak_from_dates([date(2025, 1, 31), date(2025, 2, 1)])
        assert state.current_streak == 2
