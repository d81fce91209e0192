"""
Transaction Journal.

Append-only log of every balance-affecting event. There is no update or
delete API: corrections are always new entries (e.g. a refund entry).
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import ZERO, money
from backend.app.models.enums import AccountKind, Direction
from backend.app.models.journal_entry import JournalEntry


@dataclass
class JournalFilters:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_kind: Optional[AccountKind] = None
    bank_account_id: Optional[int] = None
    card_id: Optional[int] = None
    direction: Optional[Direction] = None
    source: Optional[str] = None
    source_id: Optional[str] = None


def _day_totals() -> Dict[str, Decimal]:
    return {"income": ZERO, "expense": ZERO, "net": ZERO}


class TransactionJournal:

    @staticmethod
    async def append(db: AsyncSession, **values: Any) -> JournalEntry:
        """
        Insert a journal entry.

        Args:
            db: Session of the caller's atomic unit
            **values: JournalEntry column values

        Returns:
            The flushed entry (id assigned)

        Raises:
            ValueError: If the balance arithmetic is inconsistent
        """
        before = money(values["before_balance"])
        change = money(values["change_amount"])
        after = money(values["after_balance"])

        if money(values["amount"]) < ZERO:
            raise ValueError("Journal amount must be non-negative")
        if before + change != after:
            raise ValueError(f"Journal arithmetic mismatch: {before} + {change} != {after}")
        if after < ZERO:
            raise ValueError("Journal after_balance must be non-negative")

        entry = JournalEntry(**values)
        db.add(entry)
        await db.flush()

        return entry

    @staticmethod
    async def latest_for_account_on_date(
        db: AsyncSession,
        account: Account,
        day: date
    ) -> Optional[JournalEntry]:
        """Most recent entry for the account on the day: latest created_at, then highest id."""
        result = await db.execute(
            select(JournalEntry)
            .where(JournalEntry.entry_date == day, *account.journal_clauses())
            .order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def all_for_date_range(
        db: AsyncSession,
        start: date,
        end: date,
        account: Optional[Account] = None,
        batch_size: Optional[int] = None,
    ) -> AsyncIterator[JournalEntry]:
        """
        Stream entries for [start, end] ordered by created_at, then id.

        Keyset-paginated, so each call restarts from the beginning and memory
        stays bounded by batch_size.
        """
        batch_size = batch_size or settings.journal_export_batch_size
        cursor = None

        while True:
            query = select(JournalEntry).where(
                JournalEntry.entry_date >= start,
                JournalEntry.entry_date <= end,
            )
            if account is not None:
                query = query.where(*account.journal_clauses())
            if cursor is not None:
                last_created, last_id = cursor
                query = query.where(
                    or_(
                        JournalEntry.created_at > last_created,
                        and_(JournalEntry.created_at == last_created, JournalEntry.id > last_id),
                    )
                )
            query = query.order_by(JournalEntry.created_at.asc(), JournalEntry.id.asc()).limit(batch_size)

            result = await db.execute(query)
            batch = list(result.scalars().all())
            for entry in batch:
                yield entry

            if len(batch) < batch_size:
                return
            cursor = (batch[-1].created_at, batch[-1].id)

    @staticmethod
    async def get(db: AsyncSession, entry_id: int) -> Optional[JournalEntry]:
        return await db.get(JournalEntry, entry_id)

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        filters: JournalFilters,
        limit: int = 100,
        offset: int = 0
    ) -> List[JournalEntry]:
        """Filtered entries, newest first."""
        query = select(JournalEntry)

        if filters.start_date:
            query = query.where(JournalEntry.entry_date >= filters.start_date)
        if filters.end_date:
            query = query.where(JournalEntry.entry_date <= filters.end_date)
        if filters.account_kind:
            query = query.where(JournalEntry.account_kind == filters.account_kind)
        if filters.bank_account_id is not None:
            query = query.where(JournalEntry.bank_account_id == filters.bank_account_id)
        if filters.card_id is not None:
            query = query.where(JournalEntry.card_id == filters.card_id)
        if filters.direction:
            query = query.where(JournalEntry.direction == filters.direction)
        if filters.source:
            query = query.where(JournalEntry.source == filters.source)
        if filters.source_id:
            query = query.where(JournalEntry.source_id == filters.source_id)

        query = query.order_by(
            JournalEntry.entry_date.desc(), JournalEntry.created_at.desc(), JournalEntry.id.desc()
        ).offset(offset).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def daily_summary(
        db: AsyncSession,
        start: date,
        end: date,
        exclude_refunds: bool = False
    ) -> List[Dict[str, Any]]:
        """
        Income/expense/net per day, for cash and per bank account and card.

        Refund entries (source ending in "_refund") can be excluded so the
        summary shows gross trading only.
        """
        days: "OrderedDict[date, Dict[str, Any]]" = OrderedDict()

        async for entry in TransactionJournal.all_for_date_range(db, start, end):
            if exclude_refunds and entry.source.endswith("_refund"):
                continue

            day = days.setdefault(entry.entry_date, {
                "date": entry.entry_date,
                "cash": _day_totals(),
                "banks": {},
                "cards": {},
                "totals": _day_totals(),
                "entry_count": 0,
            })

            if entry.account_kind == AccountKind.BANK:
                bucket = day["banks"].setdefault(entry.bank_account_id, _day_totals())
            elif entry.account_kind == AccountKind.CARD:
                bucket = day["cards"].setdefault(entry.card_id, _day_totals())
            else:
                bucket = day["cash"]

            amount = money(entry.amount)
            side = "income" if entry.direction == Direction.INCOME else "expense"
            for totals in (bucket, day["totals"]):
                totals[side] += amount
                totals["net"] += money(entry.change_amount)
            day["entry_count"] += 1

        return [days[d] for d in sorted(days)]
