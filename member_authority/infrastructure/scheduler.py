"""In-process periodic task scheduler.

Runs the engine's maintenance passes (decay, review finalization,
grace-period expiry) on configurable intervals inside the host's event
loop. The scheduler is constructed and owned by the runtime; nothing
about it is global.
"""

import asyncio
from typing import Any, Callable, Coroutine

from member_authority.shared.utils.logging import get_logger

logger = get_logger(__name__)

TaskFunc = Callable[[], Coroutine[Any, Any, Any]]


class PeriodicScheduler:
    """Lightweight periodic task scheduler using asyncio."""

    def __init__(self) -> None:
        self._tasks: list[tuple[str, float, TaskFunc]] = []
        self._running = False
        self._handles: list[asyncio.Task[None]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def task_names(self) -> list[str]:
        return [name for name, _, _ in self._tasks]

    def register(self, name: str, interval_seconds: float, func: TaskFunc) -> None:
        """Register a periodic task.

        Args:
            name: Human-readable task name (for logging).
            interval_seconds: Seconds between invocations.
            func: Async callable to run periodically.
        """
        if self._running:
            raise RuntimeError("Cannot register tasks on a running scheduler")
        self._tasks.append((name, interval_seconds, func))

    async def start(self) -> None:
        """Start all registered periodic tasks."""
        if self._running:
            return
        self._running = True
        for name, interval, func in self._tasks:
            handle = asyncio.create_task(self._run_periodic(name, interval, func), name=name)
            self._handles.append(handle)
        logger.info("scheduler_started", task_count=len(self._tasks))

    async def stop(self) -> None:
        """Stop all periodic tasks and wait for them to unwind."""
        if not self._running:
            return
        self._running = False
        for handle in self._handles:
            handle.cancel()
        await asyncio.gather(*self._handles, return_exceptions=True)
        self._handles.clear()
        logger.info("scheduler_stopped")

    async def _run_periodic(self, name: str, interval: float, func: TaskFunc) -> None:
        """Run a single task on a loop with the given interval."""
        while self._running:
            try:
                await func()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("periodic_task_error", task=name, error=str(e))
            await asyncio.sleep(interval)
