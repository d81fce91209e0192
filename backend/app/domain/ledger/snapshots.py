"""
Snapshot Service.

Opening snapshots (per-day baseline) and closing snapshots (frozen per-day
final balances). Every write is an idempotent insert keyed by the unique
snapshot_date: an existing row always wins and is never overwritten.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import SnapshotAlreadyExistsError
from backend.app.db.atomic import AtomicUnit
from backend.app.db.upsert import insert_ignoring_conflict
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import ZERO, BalanceSet, money
from backend.app.domain.ledger.locking import BalanceLockManager
from backend.app.domain.ledger.provenance import Actor
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.snapshots import ClosingSnapshot, OpeningSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationLine:
    account: str
    opening: Decimal
    change_total: Decimal
    expected: Decimal
    closing: Decimal

    @property
    def matches(self) -> bool:
        return self.expected == self.closing


@dataclass
class ReconciliationReport:
    """Per-account check that opening + sum(change) equals closing for one day."""
    day: date
    closing_frozen: bool
    lines: List[ReconciliationLine] = field(default_factory=list)

    @property
    def mismatches(self) -> List[ReconciliationLine]:
        return [line for line in self.lines if not line.matches]

    @property
    def balanced(self) -> bool:
        return not self.mismatches


class SnapshotService:

    # Opening snapshots

    @staticmethod
    async def get_opening(db: AsyncSession, day: date) -> Optional[OpeningSnapshot]:
        result = await db.execute(select(OpeningSnapshot).where(OpeningSnapshot.snapshot_date == day))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_openings(
        db: AsyncSession,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[OpeningSnapshot]:
        query = select(OpeningSnapshot)
        if start:
            query = query.where(OpeningSnapshot.snapshot_date >= start)
        if end:
            query = query.where(OpeningSnapshot.snapshot_date <= end)
        result = await db.execute(query.order_by(OpeningSnapshot.snapshot_date.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def ensure_opening(
        db: AsyncSession,
        day: date,
        balances: BalanceSet,
        notes: Optional[str],
        actor: Actor
    ) -> Tuple[OpeningSnapshot, bool]:
        """
        Create the day's opening snapshot unless one exists.

        Returns:
            (row, created) where row is whichever snapshot now holds the date
        """
        created = await insert_ignoring_conflict(
            db,
            OpeningSnapshot,
            {
                "snapshot_date": day,
                **balances.to_columns(),
                "notes": notes,
                "created_by_id": actor.id,
                "created_by_name": actor.display_name,
                "created_by_kind": actor.kind,
            },
            ["snapshot_date"],
        )
        row = await SnapshotService.get_opening(db, day)
        return row, created

    @staticmethod
    async def create_opening(
        db: AsyncSession,
        day: date,
        balances: BalanceSet,
        notes: Optional[str],
        actor: Actor
    ) -> OpeningSnapshot:
        """
        Manual opening snapshot.

        Raises:
            SnapshotAlreadyExistsError: If the date already has an opening snapshot
        """
        if await SnapshotService.get_opening(db, day) is not None:
            raise SnapshotAlreadyExistsError(day)

        row, created = await SnapshotService.ensure_opening(db, day, balances, notes, actor)
        if not created:
            # Lost the race to a concurrent writer
            raise SnapshotAlreadyExistsError(day)

        logger.info("Opening snapshot created for %s by %s", day, actor.display_name)
        return row

    # Closing snapshots

    @staticmethod
    async def get_closing(db: AsyncSession, day: date) -> Optional[ClosingSnapshot]:
        result = await db.execute(select(ClosingSnapshot).where(ClosingSnapshot.snapshot_date == day))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_closings(
        db: AsyncSession,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[ClosingSnapshot]:
        query = select(ClosingSnapshot)
        if start:
            query = query.where(ClosingSnapshot.snapshot_date >= start)
        if end:
            query = query.where(ClosingSnapshot.snapshot_date <= end)
        result = await db.execute(query.order_by(ClosingSnapshot.snapshot_date.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def baseline_for(db: AsyncSession, day: date) -> BalanceSet:
        """
        Start-of-day balances: the day's opening snapshot, else the previous
        day's closing snapshot carried forward, else zeros.
        """
        opening = await SnapshotService.get_opening(db, day)
        if opening is not None:
            return BalanceSet.from_snapshot(opening)
        return await SnapshotService.carried_forward(db, day)

    @staticmethod
    async def carried_forward(db: AsyncSession, day: date) -> BalanceSet:
        """The previous day's closing balances, or zeros if it was never frozen."""
        previous = await SnapshotService.get_closing(db, BusinessCalendar.previous_day(day))
        if previous is not None:
            return BalanceSet.from_snapshot(previous)
        return BalanceSet.zero()

    @staticmethod
    async def _latest_entries_for_day(db: AsyncSession, day: date) -> Dict[Account, JournalEntry]:
        result = await db.execute(
            select(JournalEntry)
            .where(JournalEntry.entry_date == day)
            .order_by(JournalEntry.created_at.asc(), JournalEntry.id.asc())
        )
        latest: Dict[Account, JournalEntry] = {}
        for entry in result.scalars():
            latest[Account.from_entry(entry)] = entry
        return latest

    @staticmethod
    async def compute_closing(db: AsyncSession, day: date) -> BalanceSet:
        """
        Final balances for a day.

        Baseline (see baseline_for) overlaid with the after_balance of the
        latest journal entry per account. Zero bank/card balances are dropped.
        """
        balances = await SnapshotService.baseline_for(db, day)
        for account, entry in (await SnapshotService._latest_entries_for_day(db, day)).items():
            balances.set(account, entry.after_balance)
        return balances.without_zero()

    @staticmethod
    async def freeze_closing(
        unit: AtomicUnit,
        day: date,
        locks: Optional[BalanceLockManager] = None
    ) -> Tuple[ClosingSnapshot, bool]:
        """
        Freeze the day's closing snapshot if it is not frozen yet.

        Idempotent by absence: an existing row (possibly manually reconciled)
        is returned untouched. The closing is computed under the exclusive day
        lock, after every in-flight mutation of the day has finished.

        Returns:
            (row, created)

        Raises:
            TransientStoreError: If the day lock could not be taken in time
        """
        db = unit.session
        existing = await SnapshotService.get_closing(db, day)
        if existing is not None:
            return existing, False

        await (locks or BalanceLockManager()).freeze_day(unit, day)
        # A concurrent freeze may have committed while this unit waited
        existing = await SnapshotService.get_closing(db, day)
        if existing is not None:
            return existing, False

        balances = await SnapshotService.compute_closing(db, day)
        created = await insert_ignoring_conflict(
            db,
            ClosingSnapshot,
            {"snapshot_date": day, **balances.to_columns()},
            ["snapshot_date"],
        )
        row = await SnapshotService.get_closing(db, day)
        if created:
            logger.info("Closing snapshot frozen for %s: cash=%s banks=%s cards=%s",
                        day, balances.cash, len(balances.banks), len(balances.cards))
        return row, created

    @staticmethod
    async def freeze_through(
        unit: AtomicUnit,
        day: date,
        locks: Optional[BalanceLockManager] = None
    ) -> List[date]:
        """
        Freeze every missing closing snapshot strictly before `day`.

        Starts after the latest frozen closing, or at the first day with any
        ledger activity. Keeps the closing chain continuous across idle days so
        that carrying balances forward never skips a gap. Days are locked in
        ascending order.

        Returns:
            Dates whose closing snapshot was created by this call
        """
        db = unit.session
        last_closed = (await db.execute(
            select(func.max(ClosingSnapshot.snapshot_date)).where(ClosingSnapshot.snapshot_date < day)
        )).scalar()

        if last_closed is not None:
            start = BusinessCalendar.next_day(last_closed)
        else:
            first_entry = (await db.execute(
                select(func.min(JournalEntry.entry_date)).where(JournalEntry.entry_date < day)
            )).scalar()
            first_opening = (await db.execute(
                select(func.min(OpeningSnapshot.snapshot_date)).where(OpeningSnapshot.snapshot_date < day)
            )).scalar()
            candidates = [d for d in (first_entry, first_opening) if d is not None]
            if not candidates:
                return []
            start = min(candidates)

        frozen = []
        for current in BusinessCalendar.days_between(start, BusinessCalendar.previous_day(day)):
            _, created = await SnapshotService.freeze_closing(unit, current, locks)
            if created:
                frozen.append(current)
        return frozen

    # Audit

    @staticmethod
    async def reconcile_day(db: AsyncSession, day: date) -> ReconciliationReport:
        """
        Check conservation for one day.

        For every account seen in the baseline, the journal or the closing:
        baseline + sum(change_amount) must equal the closing balance. Uses the
        frozen closing when present, otherwise the computed one.
        """
        baseline = await SnapshotService.baseline_for(db, day)

        closing_row = await SnapshotService.get_closing(db, day)
        if closing_row is not None:
            closing = BalanceSet.from_snapshot(closing_row)
        else:
            closing = await SnapshotService.compute_closing(db, day)

        changes: Dict[Account, Decimal] = {}
        result = await db.execute(select(JournalEntry).where(JournalEntry.entry_date == day))
        for entry in result.scalars():
            account = Account.from_entry(entry)
            changes[account] = changes.get(account, ZERO) + money(entry.change_amount)

        accounts: List[Account] = []
        for account in baseline.accounts() + list(changes) + closing.accounts():
            if account not in accounts:
                accounts.append(account)

        report = ReconciliationReport(day=day, closing_frozen=closing_row is not None)
        for account in accounts:
            opening = baseline.get(account)
            change_total = changes.get(account, ZERO)
            report.lines.append(ReconciliationLine(
                account=account.key,
                opening=opening,
                change_total=change_total,
                expected=opening + change_total,
                closing=closing.get(account),
            ))

        if not report.balanced:
            logger.warning("Reconciliation mismatch on %s: %s", day, [line.account for line in report.mismatches])
        return report
