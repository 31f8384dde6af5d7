"""Global pytest fixtures for the Member Authority engine.

This module provides shared fixtures for testing including:
- Engine settings pointing at a throwaway SQLite database
- A controllable clock
- A real session factory with the schema created
- A ready-to-use MemberAuthorityEngine
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from member_authority.config import EngineSettings
from member_authority.engine import MemberAuthorityEngine
from member_authority.infrastructure.database.session import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)

START = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ===========================================
# SETTINGS / CLOCK
# ===========================================


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    """Settings backed by a per-test SQLite file."""
    return EngineSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'member_authority.db'}",
        max_retries=10,
        retry_base_delay_seconds=0.01,
        retry_max_delay_seconds=0.1,
        log_json=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def session_factory(
    settings: EngineSettings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create the schema in a fresh database and yield a session factory."""
    db_engine = create_engine_from_settings(settings)
    await init_db(db_engine)
    yield create_session_factory(db_engine)
    await close_db(db_engine)


@pytest.fixture
def engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    clock: FakeClock,
) -> MemberAuthorityEngine:
    return MemberAuthorityEngine(session_factory, settings, clock=clock)


@pytest.fixture
def make_engine(session_factory, settings, clock):
    """Build an engine over the same database with overridden settings."""

    def _make(**overrides: Any) -> MemberAuthorityEngine:
        return MemberAuthorityEngine(
            session_factory, settings.model_copy(update=overrides), clock=clock
        )

    return _make


@pytest.fixture
def seed(session_factory):
    """Insert ORM rows directly, bypassing the engine."""

    async def _seed(*rows: Any) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add_all(rows)

    return _seed
