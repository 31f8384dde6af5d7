"""Integration tests for XP and authority leaderboards."""

import pytest

from member_authority.exceptions import ValidationError

pytestmark = pytest.mark.integration


async def _complete(engine, user_id: str, tasks: int) -> None:
    for n in range(tasks):
        await engine.record_activity(user_id, "task_completed", f"{user_id}-T-{n}")


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_experience_ranking(self, engine):
        await _complete(engine, "ana", 3)
        await _complete(engine, "ben", 1)
        await _complete(engine, "cyd", 3)

        board = await engine.get_leaderboard("experience")
        assert board.category == "experience"
        assert [(e.rank, e.user_id, e.value) for e in board.entries] == [
            (1, "ana", 150),
            (2, "cyd", 150),
            (3, "ben", 50),
        ]
        assert board.entries[0].current_level == 2

    @pytest.mark.asyncio
    async def test_authority_ranking(self, engine):
        await _complete(engine, "ana", 3)
        await _complete(engine, "ben", 1)

        board = await engine.get_leaderboard("authority")
        assert [(e.user_id, e.value) for e in board.entries] == [("ana", 15), ("ben", 5)]
        assert board.entries[0].current_level is None

    @pytest.mark.asyncio
    async def test_limit(self, engine):
        await _complete(engine, "ana", 1)
        await _complete(engine, "ben", 1)

        board = await engine.get_leaderboard(limit=1)
        assert len(board.entries) == 1

    @pytest.mark.asyncio
    async def test_empty(self, engine):
        board = await engine.get_leaderboard()
        assert board.entries == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_bounds(self, engine, limit):
        with pytest.raises(ValidationError):
            await engine.get_leaderboard(limit=limit)

    @pytest.mark.asyncio
    async def test_unknown_category(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_leaderboard("karma")
