"""
Idempotent insert primitive.

INSERT ... ON CONFLICT DO NOTHING keyed by a unique constraint. Used wherever
"row already exists" means success: lazily created opening snapshots, frozen
closing snapshots and balance lock rows.
"""

from typing import Any, Dict, Sequence, Type

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def insert_ignoring_conflict(
    session: AsyncSession,
    model: Type[Any],
    values: Dict[str, Any],
    index_elements: Sequence[str],
) -> bool:
    """
    Insert a row unless one with the same unique key exists.

    Args:
        session: Session inside the caller's transaction
        model: Mapped class to insert into
        values: Column values for the new row
        index_elements: Columns of the unique constraint that defines a conflict

    Returns:
        True if this call inserted the row, False if it already existed
    """
    dialect_name = session.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect_name)
    if insert is None:
        raise NotImplementedError(f"Idempotent insert is not supported on {dialect_name}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=list(index_elements))
    result = await session.execute(stmt)
    return result.rowcount > 0
