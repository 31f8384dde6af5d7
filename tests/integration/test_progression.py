"""Integration tests for XP, levels, streaks and rebuilds."""

from datetime import date

import pytest
from sqlalchemy import update

from member_authority.infrastructure.database.models import SubScore, UserProgression

pytestmark = pytest.mark.integration


class TestExperienceAndLevels:
    @pytest.mark.asyncio
    async def test_level_up_at_threshold(self, engine):
        first = await engine.record_activity("u-1", "task_completed", "T-1")
        second = await engine.record_activity("u-1", "task_completed", "T-2")
        third = await engine.record_activity("u-1", "task_completed", "T-3")

        assert first.level_up is False
        assert second.level_up is True
        assert second.current_level == 2
        assert third.experience_points == 150
        assert third.level_up is False

        progression = await engine.get_progression("u-1")
        assert progression.experience_points == 150
        assert progression.current_level == 2
        assert progression.xp_into_level == 50
        assert progression.xp_required == 200
        assert progression.progress_percent == 25.0

    @pytest.mark.asyncio
    async def test_unknown_user_defaults(self, engine):
        progression = await engine.get_progression("nobody")
        assert progression.experience_points == 0
        assert progression.current_level == 1
        assert progression.current_streak == 0
        assert progression.last_login_date is None
        assert progression.last_recomputed_at is None


class TestStreaks:
    @pytest.mark.asyncio
    async def test_consecutive_logins(self, engine, clock):
        for _ in range(3):
            await engine.record_activity("u-1", "user_login")
            clock.advance(days=1)

        progression = await engine.get_progression("u-1")
        assert progression.current_streak == 3
        assert progression.longest_streak == 3
        assert progression.last_login_date == date(2025, 1, 8)

    @pytest.mark.asyncio
    async def test_gap_resets_streak(self, engine, clock):
        for _ in range(3):
            await engine.record_activity("u-1", "user_login")
            clock.advance(days=1)
        clock.advance(days=1)
        await engine.record_activity("u-1", "user_login")

        progression = await engine.get_progression("u-1")
        assert progression.current_streak == 1
        assert progression.longest_streak == 3
        assert progression.last_login_date == date(2025, 1, 10)

    @pytest.mark.asyncio
    async def test_backfilled_login_fills_gap(self, engine, clock):
        for _ in range(3):
            await engine.record_activity("u-1", "user_login")
            clock.advance(days=1)
        clock.advance(days=1)
        await engine.record_activity("u-1", "user_login")

        await engine.record_activity("u-1", "user_login", payload={"login_date": "2025-01-09"})

        progression = await engine.get_progression("u-1")
        assert progression.current_streak == 5
        assert progression.longest_streak == 5
        assert progression.last_login_date == date(2025, 1, 10)

    @pytest.mark.asyncio
    async def test_compensated_login_leaves_streak(self, engine, clock):
        await engine.record_activity("u-1", "user_login")
        clock.advance(days=1)
        last = await engine.record_activity("u-1", "user_login")

        await engine.compensate_activity(last.event_id, "bot login")

        progression = await engine.get_progression("u-1")
        assert progression.current_streak == 1
        assert progression.last_login_date == date(2025, 1, 6)
        assert progression.experience_points == 20


class TestRebuild:
    async def _history(self, engine, clock):
        await engine.record_activity("u-1", "user_login")
        first = await engine.record_activity("u-1", "task_completed", "T-1")
        await engine.record_activity("u-1", "task_completed", "T-2")
        clock.advance(days=1)
        await engine.record_activity("u-1", "user_login")
        await engine.record_activity("u-1", "reviewer_selected", "T-9")
        await engine.record_activity("u-1", "comment_added", "C-1")
        await engine.compensate_activity(first.event_id, "task reopened")

    @pytest.mark.asyncio
    async def test_rebuild_matches_incremental(self, engine, clock):
        await self._history(engine, clock)
        progression = await engine.get_progression("u-1")
        breakdown = await engine.get_authority_breakdown("u-1")

        result = await engine.rebuild_user("u-1")

        assert result.experience_points == progression.experience_points == 145
        assert result.current_level == progression.current_level == 2
        assert result.sub_scores_changed is False

        rebuilt = await engine.get_progression("u-1")
        assert rebuilt.current_streak == progression.current_streak == 2
        after = await engine.get_authority_breakdown("u-1")
        assert after.experience_score == breakdown.experience_score == 2
        assert after.authority_score == breakdown.authority_score == 5
        assert after.member_authority == breakdown.member_authority

    @pytest.mark.asyncio
    async def test_rebuild_repairs_drift(self, engine, clock, session_factory):
        await self._history(engine, clock)

        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(UserProgression)
                    .where(UserProgression.user_id == "u-1")
                    .values(experience_points=9999, current_level=14)
                )
                await session.execute(
                    update(SubScore)
                    .where(SubScore.user_id == "u-1", SubScore.dimension == "experience")
                    .values(value=77)
                )

        result = await engine.rebuild_user("u-1")

        assert result.experience_points == 145
        assert result.current_level == 2
        assert result.sub_scores_changed is True
        assert (await engine.get_authority_breakdown("u-1")).experience_score == 2

        history = await engine.get_authority_history("u-1", limit=1)
        assert history[0].change_reason == "recomputed"
        assert history[0].sub_score_deltas == {"experience": -75}

    @pytest.mark.asyncio
    async def test_rebuild_unknown_user(self, engine):
        result = await engine.rebuild_user("nobody")
        assert result.experience_points == 0
        assert result.current_level == 1
        assert result.sub_scores_changed is False
