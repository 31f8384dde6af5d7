"""Integration tests for the performance decay pass."""

from datetime import timedelta

import pytest

from member_authority.infrastructure.database.models import SubScore

pytestmark = pytest.mark.integration


def _score(user_id: str, dimension: str, value: int, updated_days_ago: int, clock) -> SubScore:
    return SubScore(
        user_id=user_id,
        dimension=dimension,
        value=value,
        last_updated_at=clock() - timedelta(days=updated_days_ago),
    )


class TestDecayPass:
    @pytest.mark.asyncio
    async def test_inactive_trust_decays(self, engine, seed, clock):
        await seed(_score("dana", "trust", 80, 40, clock))

        assert await engine.run_decay_pass() == 1

        breakdown = await engine.get_authority_breakdown("dana")
        assert breakdown.trust_score == 76
        assert breakdown.member_authority == 190

        history = await engine.get_authority_history("dana")
        assert history[0].change_reason == "performance_decay"
        assert history[0].sub_score_deltas == {"trust": -4}

    @pytest.mark.asyncio
    async def test_idempotent_within_interval(self, engine, seed, clock):
        await seed(_score("dana", "trust", 80, 40, clock))

        assert await engine.run_decay_pass() == 1
        assert await engine.run_decay_pass() == 0

        clock.advance(hours=23)
        assert await engine.run_decay_pass() == 0
        assert (await engine.get_authority_breakdown("dana")).trust_score == 76

    @pytest.mark.asyncio
    async def test_keeps_decaying_while_inactive(self, engine, seed, clock):
        await seed(_score("dana", "trust", 80, 40, clock))

        await engine.run_decay_pass()
        clock.advance(hours=24)
        assert await engine.run_decay_pass() == 1
        assert (await engine.get_authority_breakdown("dana")).trust_score == 72

    @pytest.mark.asyncio
    async def test_recently_updated_not_decayed(self, engine, seed, clock):
        await seed(_score("dana", "authority", 80, 5, clock))
        assert await engine.run_decay_pass() == 0
        assert (await engine.get_authority_breakdown("dana")).authority_score == 80

    @pytest.mark.asyncio
    async def test_floor_respected(self, engine, seed, clock):
        await seed(
            _score("dana", "trust", 20, 90, clock),
            _score("erin", "trust", 21, 90, clock),
        )
        assert await engine.run_decay_pass() == 1
        assert (await engine.get_authority_breakdown("dana")).trust_score == 20
        assert (await engine.get_authority_breakdown("erin")).trust_score == 20

    @pytest.mark.asyncio
    async def test_only_configured_dimensions(self, engine, seed, clock):
        await seed(
            _score("dana", "expertise", 80, 40, clock),
            _score("dana", "experience", 80, 40, clock),
        )
        assert await engine.run_decay_pass() == 0

    @pytest.mark.asyncio
    async def test_both_dimensions_in_one_entry(self, engine, seed, clock):
        await seed(
            _score("dana", "trust", 60, 40, clock),
            _score("dana", "authority", 40, 40, clock),
        )
        assert await engine.run_decay_pass() == 1

        breakdown = await engine.get_authority_breakdown("dana")
        assert breakdown.trust_score == 57
        assert breakdown.authority_score == 38

        history = await engine.get_authority_history("dana")
        assert len(history) == 1
        assert history[0].sub_score_deltas == {"trust": -3, "authority": -2}

    @pytest.mark.asyncio
    async def test_custom_rate(self, make_engine, seed, clock):
        engine = make_engine(decay_rate=0.5, decay_floor=10)
        await seed(_score("dana", "trust", 80, 40, clock))
        await engine.run_decay_pass()
        assert (await engine.get_authority_breakdown("dana")).trust_score == 40
