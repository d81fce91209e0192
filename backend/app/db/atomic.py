"""
Atomic unit of work.

One session, one transaction, plus the ledger locks taken inside it. Locks are
released only after the transaction has been committed or rolled back and the
session closed, so no other writer can observe a half-finished unit.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Set

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.exceptions import TransientStoreError
from backend.app.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available, query_canceled (lock_timeout)
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


class AtomicUnit:
    """Handle passed to ledger operations that must share one transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.held_lock_keys: Set[str] = set()
        self._releases: List[Callable[[], None]] = []

    def register_lock(self, key: str, release: Callable[[], None]) -> None:
        self.held_lock_keys.add(key)
        self._releases.append(release)

    def release_locks(self) -> None:
        # LIFO, mirrors acquisition order
        while self._releases:
            self._releases.pop()()
        self.held_lock_keys.clear()


def is_transient(exc: DBAPIError) -> bool:
    """True for store errors that are safe to retry as a whole unit."""
    if exc.connection_invalidated or isinstance(exc, OperationalError):
        return True
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in TRANSIENT_SQLSTATES


@asynccontextmanager
async def atomic_unit(session_factory: Optional[async_sessionmaker] = None) -> AsyncIterator[AtomicUnit]:
    """
    Open a session and run the body inside a single transaction.

    Commits when the body returns, rolls back on any exception. Transient
    store failures are re-raised as TransientStoreError so that the transport
    boundary can retry the whole unit.

    Usage:
        async with atomic_unit(session_factory) as unit:
            await mutator.apply(unit, Account.cash(), day, amount, Direction.INCOME, provenance)
    """
    factory = session_factory or AsyncSessionLocal
    unit: Optional[AtomicUnit] = None
    try:
        async with factory() as session:
            unit = AtomicUnit(session)
            try:
                async with session.begin():
                    yield unit
            except DBAPIError as e:
                if is_transient(e):
                    logger.warning("Atomic unit rolled back on transient store error: %s", e.orig)
                    raise TransientStoreError(details={"reason": type(e.orig).__name__}) from e
                raise
    finally:
        if unit is not None:
            unit.release_locks()
