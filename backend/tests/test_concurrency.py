"""
Concurrency Tests.

Validates that concurrent mutations on one (account, date) never lose an
update and never overdraw.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from backend.app.core.exceptions import InsufficientBalanceError, TransientStoreError
from backend.app.db.atomic import atomic_unit
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.locking import (
    BalanceLockManager, KeyedLockRegistry, day_lock_key, lock_key, shared_day_lock_key
)
from backend.app.domain.ledger.provenance import Provenance
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import Direction
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.snapshots import ClosingSnapshot, OpeningSnapshot
from backend.app.services.identity import SYSTEM_ACTOR
from backend.tests.helpers import CASH, apply_change, resolve_balance, seed_opening

DAY = date(2024, 1, 1)
N = 25


@pytest.mark.asyncio
async def test_concurrent_income_has_no_lost_updates(session_factory, mutator, resolver):
    """N concurrent +10 mutations -> balance 10*N and N journal entries."""
    await seed_opening(session_factory, DAY, cash=0)

    results = await asyncio.gather(*[
        apply_change(session_factory, mutator, CASH, DAY, 10, Direction.INCOME) for _ in range(N)
    ])

    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal(10 * N)
    async with session_factory() as session:
        entries = (await session.execute(select(JournalEntry).order_by(JournalEntry.id))).scalars().all()

    assert len(entries) == N
    # Each entry starts where the previous one ended
    for previous, current in zip(entries, entries[1:]):
        assert current.before_balance == previous.after_balance
    assert sorted(r.after_balance for r in results) == [Decimal(10 * i) for i in range(1, N + 1)]


@pytest.mark.asyncio
async def test_concurrent_expenses_never_overdraw(session_factory, mutator, resolver):
    """100 in the drawer, 20 concurrent -10 expenses: exactly 10 succeed."""
    await seed_opening(session_factory, DAY, cash=100)

    outcomes = await asyncio.gather(*[
        apply_change(session_factory, mutator, CASH, DAY, 10, Direction.EXPENSE) for _ in range(20)
    ], return_exceptions=True)

    rejected = [o for o in outcomes if isinstance(o, InsufficientBalanceError)]
    assert len(rejected) == 10
    assert len(outcomes) - len(rejected) == 10
    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("0.00")

    async with session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(JournalEntry))).scalar()
    assert count == 10


@pytest.mark.asyncio
async def test_racing_first_writes_create_one_opening(session_factory, mutator, resolver):
    """Every writer of a fresh day tries to seed the opening; exactly one row results."""
    await asyncio.gather(*[
        apply_change(session_factory, mutator, CASH, DAY, 5, Direction.INCOME) for _ in range(5)
    ])

    async with session_factory() as session:
        openings = (await session.execute(select(func.count()).select_from(OpeningSnapshot))).scalar()
        opening = await SnapshotService.get_opening(session, DAY)

    assert openings == 1
    assert opening.cash_balance == Decimal("0.00")
    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("25.00")


@pytest.mark.asyncio
async def test_lock_timeout_surfaces_as_transient_error(session_factory):
    """A writer stuck behind a held lock gives up with TransientStoreError."""
    registry = KeyedLockRegistry()
    locks = BalanceLockManager(timeout=0.05, keyed_locks=registry)

    async with atomic_unit(session_factory) as holder:
        await locks.acquire(holder, CASH, DAY)

        with pytest.raises(TransientStoreError) as exc_info:
            async with atomic_unit(session_factory) as waiter:
                await locks.acquire(waiter, CASH, DAY)

        assert exc_info.value.details["lock"] == lock_key(CASH, DAY)

    # Nothing left behind once both units are done
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lock_is_reentrant_within_a_unit(session_factory):
    registry = KeyedLockRegistry()
    locks = BalanceLockManager(timeout=0.05, keyed_locks=registry)

    async with atomic_unit(session_factory) as unit:
        await locks.acquire(unit, CASH, DAY)
        await locks.acquire(unit, CASH, DAY)
        assert unit.held_lock_keys == {lock_key(CASH, DAY)}

    assert len(registry) == 0


class RecordingRegistry(KeyedLockRegistry):
    def __init__(self):
        super().__init__()
        self.order = []

    async def acquire(self, key, timeout):
        self.order.append(key)
        await super().acquire(key, timeout)


@pytest.mark.asyncio
async def test_acquire_many_takes_locks_in_key_order(session_factory, bank_account, card):
    registry = RecordingRegistry()
    locks = BalanceLockManager(timeout=1, keyed_locks=registry)
    card_account = Account.card(card.id)
    bank = Account.bank(bank_account.id)

    async with atomic_unit(session_factory) as unit:
        await locks.acquire_many(unit, [card_account, CASH, bank, CASH], DAY)

    assert registry.order == sorted([lock_key(card_account, DAY), lock_key(CASH, DAY), lock_key(bank, DAY)])


@pytest.mark.asyncio
async def test_freezing_a_day_waits_for_the_day_lock(session_factory):
    """While another unit holds the day, its closing cannot be frozen."""
    await seed_opening(session_factory, DAY, cash=100)
    registry = KeyedLockRegistry()
    locks = BalanceLockManager(timeout=0.05, keyed_locks=registry)

    async with atomic_unit(session_factory) as holder:
        await locks.freeze_day(holder, DAY)

        with pytest.raises(TransientStoreError) as exc_info:
            async with atomic_unit(session_factory) as freezer:
                await SnapshotService.freeze_closing(freezer, DAY, locks)

        assert exc_info.value.details["lock"] == day_lock_key(DAY)

    async with session_factory() as session:
        assert (await session.execute(select(func.count()).select_from(ClosingSnapshot))).scalar() == 0
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_mutation_checks_closing_while_sharing_the_day(session_factory, mutator, mocker):
    await seed_opening(session_factory, DAY, cash=100)
    original = SnapshotService.get_closing
    checks = []

    async with atomic_unit(session_factory) as unit:
        async def recording(db, day):
            checks.append((day, shared_day_lock_key(day) in unit.held_lock_keys))
            return await original(db, day)

        mocker.patch.object(SnapshotService, "get_closing", side_effect=recording)
        await mutator.apply(
            unit, CASH, DAY, 10, Direction.INCOME,
            Provenance(description="till", source="manual", actor=SYSTEM_ACTOR),
        )

    assert (DAY, True) in checks
    assert (DAY, False) not in checks


@pytest.mark.asyncio
async def test_closing_is_computed_under_the_exclusive_day_lock(session_factory, mutator, mocker):
    await seed_opening(session_factory, DAY, cash=100)
    await apply_change(session_factory, mutator, CASH, DAY, 40, Direction.INCOME)
    original = SnapshotService.compute_closing
    held = []

    async with atomic_unit(session_factory) as unit:
        async def recording(db, day):
            held.append(day_lock_key(day) in unit.held_lock_keys)
            return await original(db, day)

        mocker.patch.object(SnapshotService, "compute_closing", side_effect=recording)
        row, created = await SnapshotService.freeze_closing(unit, DAY)

    assert created
    assert held == [True]
    assert row.cash_balance == Decimal("140.00")
