"""Per-user serialization and conflict retry.

Every mutation of a user's derived state runs under that user's lock.
Operations touching several users take their locks in sorted order so
two such operations can never wait on each other. Across processes, the
row version counter turns a lost update into a `ConcurrencyConflict`,
which the retry helper absorbs with exponential backoff.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import Iterator, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from member_authority.exceptions import ConcurrencyConflict
from member_authority.shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class UserLockRegistry:
    """In-process registry of one `asyncio.Lock` per user id.

    Entries are dropped once nobody holds or waits on them, so the
    registry only grows with the number of users currently being mutated.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def _hold(self, user_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _LockEntry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(user_id, None)

    @asynccontextmanager
    async def acquire(self, *user_ids: str) -> AsyncIterator[None]:
        """Hold the locks of all given users, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for user_id in sorted(set(user_ids)):
                await stack.enter_async_context(self._hold(user_id))
            yield


@contextmanager
def conflicts_as_retryable(user_id: str | None = None) -> Iterator[None]:
    """Map storage-level lost-update errors onto `ConcurrencyConflict`."""
    try:
        yield
    except StaleDataError as e:
        raise ConcurrencyConflict(
            "Derived state was modified concurrently", user_id=user_id, original_error=e
        ) from e
    except OperationalError as e:
        if "database is locked" not in str(e.orig):
            raise
        raise ConcurrencyConflict(
            "Database is locked by another writer", user_id=user_id, original_error=e
        ) from e


@dataclass
class RetryConfig:
    """Configuration for conflict retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff (e.g., 2 for doubling)
        jitter: Whether to add random jitter to delay
        retryable_exceptions: Exception types that should trigger retry
    """

    max_retries: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (ConcurrencyConflict,)
    )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number (0-indexed)."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay,
        )
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay


async def run_with_retry(config: RetryConfig, func: Callable[[], Awaitable[T]]) -> T:
    """Run ``func``, retrying retryable failures with exponential backoff.

    Raises:
        The last retryable error once ``max_retries`` is exhausted, or any
        non-retryable error immediately.
    """
    name = getattr(func, "__name__", "operation")
    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except config.retryable_exceptions as e:
            if attempt >= config.max_retries:
                logger.error(
                    "retry_exhausted",
                    function=name,
                    max_retries=config.max_retries,
                    error_type=type(e).__name__,
                )
                raise
            delay = config.calculate_delay(attempt)
            logger.warning(
                "retry_attempt",
                function=name,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay=round(delay, 3),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("Unexpected state: no result and no exception")

