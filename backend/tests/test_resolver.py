"""
Balance Resolver Tests.

Each tier of the fallback chain: same-day journal entry, opening snapshot,
previous day's closing snapshot, zero.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from backend.app.db.atomic import atomic_unit
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import Direction
from backend.tests.helpers import CASH, apply_change, resolve_balance, seed_opening

DAY = date(2024, 1, 1)


@pytest.mark.asyncio
async def test_opening_snapshot_is_baseline_without_entries(session_factory, resolver):
    """Scenario 1: opening cash 1000, no entries -> 1000."""
    await seed_opening(session_factory, DAY, cash=1000)

    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("1000.00")


@pytest.mark.asyncio
async def test_account_absent_from_opening_resolves_to_zero(session_factory, resolver, bank_account, card):
    await seed_opening(session_factory, DAY, cash=500, banks={bank_account.id: 250})

    assert await resolve_balance(session_factory, resolver, Account.bank(bank_account.id), DAY) == Decimal("250.00")
    assert await resolve_balance(session_factory, resolver, Account.card(card.id), DAY) == Decimal("0.00")


@pytest.mark.asyncio
async def test_latest_entry_wins_over_opening(session_factory, resolver, mutator):
    await seed_opening(session_factory, DAY, cash=1000)
    await apply_change(session_factory, mutator, CASH, DAY, 300, Direction.EXPENSE)
    await apply_change(session_factory, mutator, CASH, DAY, 50, Direction.INCOME)

    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("750.00")


@pytest.mark.asyncio
async def test_previous_closing_used_when_day_not_opened(session_factory, resolver, bank_account):
    await seed_opening(session_factory, DAY, cash=400, banks={bank_account.id: 90})
    async with atomic_unit(session_factory) as unit:
        await SnapshotService.freeze_closing(unit, DAY)

    next_day = date(2024, 1, 2)
    assert await resolve_balance(session_factory, resolver, CASH, next_day) == Decimal("400.00")
    assert await resolve_balance(session_factory, resolver, Account.bank(bank_account.id), next_day) == Decimal("90.00")


@pytest.mark.asyncio
async def test_no_history_resolves_to_zero(session_factory, resolver):
    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("0.00")


@pytest.mark.asyncio
async def test_entries_on_other_accounts_and_days_are_ignored(session_factory, resolver, mutator, bank_account):
    await seed_opening(session_factory, DAY, cash=100, banks={bank_account.id: 100})
    await apply_change(session_factory, mutator, Account.bank(bank_account.id), DAY, 40, Direction.EXPENSE)

    assert await resolve_balance(session_factory, resolver, CASH, DAY) == Decimal("100.00")
    # The day before has no history at all
    assert await resolve_balance(session_factory, resolver, CASH, date(2023, 12, 31)) == Decimal("0.00")


@pytest.mark.asyncio
async def test_timestamp_resolves_in_business_timezone(session_factory, resolver):
    """20:30 UTC on Jan 1 is already Jan 2 in Asia/Karachi (UTC+5)."""
    await seed_opening(session_factory, date(2024, 1, 2), cash=70)

    late_utc = datetime(2024, 1, 1, 20, 30, tzinfo=timezone.utc)
    async with session_factory() as session:
        assert await resolver.resolve(session, CASH, late_utc) == Decimal("70.00")


@pytest.mark.asyncio
async def test_resolve_all_lists_every_account(session_factory, resolver, bank_account, card):
    await seed_opening(session_factory, DAY, cash=10, cards={card.id: 5})

    async with session_factory() as session:
        balances = await resolver.resolve_all(session, DAY)

    assert balances.cash == Decimal("10.00")
    assert balances.banks == {bank_account.id: Decimal("0.00")}
    assert balances.cards == {card.id: Decimal("5.00")}
