"""Process bootstrap for the engine.

`EngineRuntime` wires logging, the database, the engine and the
maintenance scheduler from settings and owns their lifecycle:

    async with EngineRuntime() as runtime:
        await runtime.engine.record_activity("user-1", "task_completed", "T-1")
"""

from __future__ import annotations

from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from member_authority.config import EngineSettings, get_engine_settings
from member_authority.engine import MemberAuthorityEngine
from member_authority.infrastructure.database.session import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from member_authority.infrastructure.scheduler import PeriodicScheduler
from member_authority.shared.utils.datetime_utils import Clock, utcnow
from member_authority.shared.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_scheduler(engine: MemberAuthorityEngine, settings: EngineSettings) -> PeriodicScheduler:
    """Register the engine's maintenance passes on a new scheduler."""
    scheduler = PeriodicScheduler()
    scheduler.register("decay_pass", settings.decay_interval_seconds, engine.run_decay_pass)
    scheduler.register(
        "finalize_due_reviews", settings.finalization_interval_seconds, engine.finalize_due_reviews
    )
    scheduler.register(
        "expire_grace_periods", settings.grace_expiry_interval_seconds, engine.expire_grace_periods
    )
    return scheduler


class EngineRuntime:
    """Owns the database engine, the MA engine and its scheduler."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        clock: Clock = utcnow,
        run_scheduler: bool = True,
        configure_logs: bool = True,
    ) -> None:
        self.settings = settings or get_engine_settings()
        self.clock = clock
        self.run_scheduler = run_scheduler
        self.configure_logs = configure_logs
        self.db_engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self._engine: MemberAuthorityEngine | None = None
        self.scheduler: PeriodicScheduler | None = None

    @property
    def engine(self) -> MemberAuthorityEngine:
        if self._engine is None:
            raise RuntimeError("EngineRuntime has not been started")
        return self._engine

    @property
    def started(self) -> bool:
        return self._engine is not None

    async def start(self) -> None:
        if self.started:
            return
        if self.configure_logs:
            configure_logging(level=self.settings.log_level, json_format=self.settings.log_json)

        self.db_engine = create_engine_from_settings(self.settings)
        await init_db(self.db_engine)
        self.session_factory = create_session_factory(self.db_engine)
        self._engine = MemberAuthorityEngine(self.session_factory, self.settings, clock=self.clock)

        self.scheduler = build_scheduler(self._engine, self.settings)
        if self.run_scheduler:
            await self.scheduler.start()
        logger.info("engine_runtime_started", scheduler=self.run_scheduler)

    async def stop(self) -> None:
        if not self.started:
            return
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.db_engine is not None:
            await close_db(self.db_engine)
        self._engine = None
        self.scheduler = None
        self.session_factory = None
        self.db_engine = None
        logger.info("engine_runtime_stopped")

    async def __aenter__(self) -> EngineRuntime:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
