"""
Balance locks.

Serializes read-modify-append sequences per (account, date) and fences each
day against being frozen mid-write. Account locks have two layers:
- a process-local keyed asyncio.Lock, which bounds the wait with a timeout
  and serializes writers sharing one connection pool
- a balance_locks row locked with SELECT ... FOR UPDATE, which serializes
  writers across processes on PostgreSQL

Each day also has a balance_locks row (account_key "day"). Mutations hold it
FOR SHARE; freezing the day's closing holds it FOR UPDATE, so a closing never
misses an entry that was still uncommitted when the freeze started.

Everything is held until the atomic unit has committed or rolled back.
"""

import asyncio
import logging
from datetime import date
from typing import Dict, Iterable, Optional

from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.core.exceptions import TransientStoreError
from backend.app.db.atomic import AtomicUnit
from backend.app.db.upsert import insert_ignoring_conflict
from backend.app.domain.ledger.account import Account
from backend.app.models.balance_lock import BalanceLock

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLockRegistry:
    """
    asyncio.Lock per key, dropped as soon as nobody holds or waits for it.

    Slots never outlive their users, so a lock is never reused from a
    different event loop.
    """

    def __init__(self):
        self._slots: Dict[str, _Slot] = {}

    async def acquire(self, key: str, timeout: float) -> None:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            await asyncio.wait_for(slot.lock.acquire(), timeout)
        except asyncio.TimeoutError:
            self._leave(key, slot)
            raise TransientStoreError(
                message=f"Timed out waiting for balance lock {key}",
                details={"lock": key, "timeout_seconds": timeout},
            )
        except BaseException:
            self._leave(key, slot)
            raise

    def release(self, key: str) -> None:
        slot = self._slots[key]
        slot.lock.release()
        self._leave(key, slot)

    def _leave(self, key: str, slot: _Slot) -> None:
        slot.users -= 1
        if slot.users == 0 and self._slots.get(key) is slot:
            del self._slots[key]

    def __len__(self):
        return len(self._slots)


registry = KeyedLockRegistry()

# balance_locks.account_key of the per-day row
DAY_LOCK_ACCOUNT = "day"


def lock_key(account: Account, day: date) -> str:
    return f"{account.key}@{day.isoformat()}"


def day_lock_key(day: date) -> str:
    return f"{DAY_LOCK_ACCOUNT}@{day.isoformat()}"


def shared_day_lock_key(day: date) -> str:
    return f"{day_lock_key(day)}:shared"


class BalanceLockManager:

    def __init__(self, timeout: Optional[float] = None, keyed_locks: Optional[KeyedLockRegistry] = None):
        self.timeout = timeout if timeout is not None else settings.balance_lock_timeout_seconds
        self.keyed_locks = keyed_locks or registry

    async def _lock_row(self, unit: AtomicUnit, account_key: str, day: date, shared: bool = False) -> None:
        await insert_ignoring_conflict(
            unit.session,
            BalanceLock,
            {"account_key": account_key, "lock_date": day},
            ["account_key", "lock_date"],
        )
        await unit.session.execute(
            select(BalanceLock.id)
            .where(BalanceLock.account_key == account_key, BalanceLock.lock_date == day)
            .with_for_update(read=shared)
        )

    async def acquire(self, unit: AtomicUnit, account: Account, day: date) -> None:
        """
        Take the (account, day) lock for the rest of the unit. Re-entrant.

        Raises:
            TransientStoreError: If the lock could not be taken in time
        """
        key = lock_key(account, day)
        if key in unit.held_lock_keys:
            return

        # 1. Process-local lock, released by the unit after the session closes
        await self.keyed_locks.acquire(key, self.timeout)
        unit.register_lock(key, lambda: self.keyed_locks.release(key))

        # 2. Row lock inside the unit's transaction
        await self._lock_row(unit, account.key, day)
        logger.debug("Balance lock acquired: %s", key)

    async def acquire_many(self, unit: AtomicUnit, accounts: Iterable[Account], day: date) -> None:
        """Lock several accounts in key order so concurrent multi-leg units cannot deadlock."""
        for account in sorted(set(accounts), key=lambda a: a.key):
            await self.acquire(unit, account, day)

    async def share_day(self, unit: AtomicUnit, day: date) -> None:
        """
        Hold the day open for the rest of the unit (SELECT ... FOR SHARE).

        Mutations of one day do not block each other here; freezing the day
        waits until every unit sharing it has finished.
        """
        key = shared_day_lock_key(day)
        if key in unit.held_lock_keys or day_lock_key(day) in unit.held_lock_keys:
            return
        await self._lock_row(unit, DAY_LOCK_ACCOUNT, day, shared=True)
        # Row locks end with the transaction; nothing to release in-process
        unit.register_lock(key, lambda: None)

    async def freeze_day(self, unit: AtomicUnit, day: date) -> None:
        """
        Exclusive hold on the day before its closing is computed.

        Waits for in-flight mutations of the day to commit or roll back, and
        serializes concurrent freezes of the same day. Re-entrant.

        Raises:
            TransientStoreError: If the lock could not be taken in time
        """
        key = day_lock_key(day)
        if key in unit.held_lock_keys:
            return
        await self.keyed_locks.acquire(key, self.timeout)
        unit.register_lock(key, lambda: self.keyed_locks.release(key))
        await self._lock_row(unit, DAY_LOCK_ACCOUNT, day)
        logger.debug("Day lock acquired: %s", key)
