"""Database engine and session management with async support."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from member_authority.config import EngineSettings
from member_authority.infrastructure.database.models import Base
from member_authority.shared.utils.logging import get_logger

logger = get_logger(__name__)


def normalize_database_url(url: str) -> str:
    """Convert sync driver URLs to their async equivalents."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_from_settings(settings: EngineSettings) -> AsyncEngine:
    """Create the async database engine."""
    url = normalize_database_url(settings.database_url)
    kwargs: dict[str, Any] = {"echo": settings.database_echo}

    if url.startswith("sqlite"):
        # Writers queue on the database file lock instead of failing fast.
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    engine = create_async_engine(url, **kwargs)
    logger.info(
        "database_engine_created",
        dialect=engine.dialect.name,
        pool_size=kwargs.get("pool_size"),
        max_overflow=kwargs.get("max_overflow"),
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory."""
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("session_factory_created")
    return factory


async def init_db(engine: AsyncEngine) -> None:
    """Create all engine tables if they do not exist."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_ready", tables=sorted(Base.metadata.tables))
    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        raise


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("database_connections_closed")


@asynccontextmanager
async def get_db_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Usage:
        async with get_db_session(factory) as session:
            result = await session.execute(query)
    """
    session = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
