"""
Balance Resolver.

Derives the currently effective balance of an account on a date. Pure read:
callable inside the mutator's atomic unit or from any read-only session.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.calendar import BusinessCalendar
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import ZERO, BalanceSet, money
from backend.app.domain.ledger.journal import TransactionJournal
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card


class BalanceResolver:
    """
    Priority order:
    1. Latest same-day journal entry (its after_balance)
    2. The day's opening snapshot baseline (0 if the account is absent)
    3. The previous day's closing snapshot
    4. 0
    """

    def __init__(self, calendar: BusinessCalendar):
        self.calendar = calendar

    def _business_date(self, when: Optional[Union[date, datetime]]) -> date:
        if when is None:
            return self.calendar.today()
        if isinstance(when, datetime):
            return self.calendar.to_business_date(when)
        return when

    async def resolve(
        self,
        db: AsyncSession,
        account: Account,
        when: Optional[Union[date, datetime]] = None
    ) -> Decimal:
        day = self._business_date(when)

        # 1. Intra-day running balance
        entry = await TransactionJournal.latest_for_account_on_date(db, account, day)
        if entry is not None:
            return money(entry.after_balance)

        # 2. Day baseline
        opening = await SnapshotService.get_opening(db, day)
        if opening is not None:
            return BalanceSet.from_snapshot(opening).get(account)

        # 3. Yesterday's frozen close
        closing = await SnapshotService.get_closing(db, BusinessCalendar.previous_day(day))
        if closing is not None:
            return BalanceSet.from_snapshot(closing).get(account)

        return ZERO

    async def resolve_all(
        self,
        db: AsyncSession,
        when: Optional[Union[date, datetime]] = None
    ) -> BalanceSet:
        """Resolved balance of cash and every known bank account and card."""
        day = self._business_date(when)

        bank_ids = (await db.execute(select(BankAccount.id).order_by(BankAccount.id))).scalars().all()
        card_ids = (await db.execute(select(Card.id).order_by(Card.id))).scalars().all()

        balances = BalanceSet()
        accounts = [Account.cash()] + [Account.bank(i) for i in bank_ids] + [Account.card(i) for i in card_ids]
        for account in accounts:
            balances.set(account, await self.resolve(db, account, day))
        return balances
