"""
Reconciliation Tests.

For every account and day: opening + sum(change_amount) == closing.
"""

import pytest
from datetime import date
from decimal import Decimal

from backend.app.db.atomic import atomic_unit
from backend.app.db.upsert import insert_ignoring_conflict
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import BalanceSet
from backend.app.domain.ledger.scheduler import SnapshotRolloverScheduler
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import Direction
from backend.app.models.snapshots import ClosingSnapshot
from backend.app.services.rollover_monitor import RolloverMonitor
from backend.tests.helpers import CASH, apply_change, seed_opening

DAY = date(2024, 1, 1)


async def reconcile(session_factory, day):
    async with session_factory() as session:
        return await SnapshotService.reconcile_day(session, day)


@pytest.mark.asyncio
async def test_frozen_day_conserves_every_account(session_factory, mutator, bank_account, card):
    bank = Account.bank(bank_account.id)
    terminal = Account.card(card.id)
    await seed_opening(session_factory, DAY, cash=1000, banks={bank_account.id: 400})
    await apply_change(session_factory, mutator, CASH, DAY, 200, Direction.EXPENSE)
    await apply_change(session_factory, mutator, bank, DAY, 150, Direction.INCOME)
    await apply_change(session_factory, mutator, terminal, DAY, 75, Direction.INCOME)
    await apply_change(session_factory, mutator, terminal, DAY, 25, Direction.EXPENSE)
    async with atomic_unit(session_factory) as unit:
        await SnapshotService.freeze_closing(unit, DAY)

    report = await reconcile(session_factory, DAY)

    assert report.closing_frozen
    assert report.balanced
    lines = {line.account: line for line in report.lines}
    assert set(lines) == {"cash", bank.key, terminal.key}
    assert (lines["cash"].opening, lines["cash"].change_total, lines["cash"].closing) == (
        Decimal("1000.00"), Decimal("-200.00"), Decimal("800.00")
    )
    assert lines[bank.key].closing == Decimal("550.00")
    assert lines[terminal.key].opening == Decimal("0.00")
    assert lines[terminal.key].closing == Decimal("50.00")


@pytest.mark.asyncio
async def test_open_day_reconciles_against_computed_closing(session_factory, mutator):
    await seed_opening(session_factory, DAY, cash=300)
    await apply_change(session_factory, mutator, CASH, DAY, 100, Direction.INCOME)

    report = await reconcile(session_factory, DAY)

    assert report.closing_frozen is False
    assert report.balanced
    assert report.lines[0].expected == Decimal("400.00")


@pytest.mark.asyncio
async def test_tampered_closing_is_reported(session_factory, mutator):
    await seed_opening(session_factory, DAY, cash=1000)
    await apply_change(session_factory, mutator, CASH, DAY, 200, Direction.EXPENSE)
    async with atomic_unit(session_factory) as unit:
        await insert_ignoring_conflict(
            unit.session, ClosingSnapshot, {"snapshot_date": DAY, **BalanceSet(700).to_columns()}, ["snapshot_date"]
        )

    report = await reconcile(session_factory, DAY)

    assert report.balanced is False
    assert [line.account for line in report.mismatches] == ["cash"]
    assert report.mismatches[0].expected == Decimal("800.00")
    assert report.mismatches[0].closing == Decimal("700.00")


@pytest.mark.asyncio
async def test_closings_chain_into_next_openings(session_factory, mutator, calendar, clock, mock_redis):
    """Over several days every frozen closing becomes the next opening."""
    scheduler = SnapshotRolloverScheduler(calendar, session_factory=session_factory, monitor=RolloverMonitor(mock_redis))
    await seed_opening(session_factory, DAY, cash=500)

    for offset, (amount, direction) in enumerate([(50, Direction.INCOME), (120, Direction.EXPENSE), (30, Direction.INCOME)]):
        day = date(2024, 1, 1 + offset)
        clock.set_day(day)
        await apply_change(session_factory, mutator, CASH, day, amount, direction)
        clock.set_day(date(2024, 1, 2 + offset))
        await scheduler.run_daily_rollover(date(2024, 1, 2 + offset))

    async with session_factory() as session:
        for offset in range(3):
            day = date(2024, 1, 1 + offset)
            closing = await SnapshotService.get_closing(session, day)
            next_opening = await SnapshotService.get_opening(session, date(2024, 1, 2 + offset))
            assert next_opening.cash_balance == closing.cash_balance
            assert (await SnapshotService.reconcile_day(session, day)).balanced

    async with session_factory() as session:
        assert (await SnapshotService.get_closing(session, date(2024, 1, 3))).cash_balance == Decimal("460.00")
