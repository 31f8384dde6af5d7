"""Insert-or-ignore and counter upserts that work on PostgreSQL and SQLite."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, model: Any) -> Any:
    """Return an INSERT construct supporting ON CONFLICT for the bound dialect."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect '{dialect}'")


async def insert_or_ignore(
    session: AsyncSession,
    model: Any,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """Insert a row unless it collides on ``conflict_columns``.

    Returns:
        True if a row was written, False if it already existed
    """
    stmt = (
        dialect_insert(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def increment(
    session: AsyncSession,
    model: Any,
    keys: dict[str, Any],
    column: str,
    delta: int,
) -> None:
    """Add ``delta`` to ``column`` of the row at ``keys``, creating it at ``delta``."""
    insert = dialect_insert(session, model)
    stmt = insert.values(**keys, **{column: delta}).on_conflict_do_update(
        index_elements=list(keys),
        set_={column: getattr(model, column) + insert.excluded[column]},
    )
    await session.execute(stmt)
