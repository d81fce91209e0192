"""
Balance Mutator (Domain Logic).

The only path allowed to change a balance. Read-modify-append runs inside
the caller's atomic unit under the (account, date) lock, enforces the
non-negative invariant and materializes the day's opening snapshot lazily.
"""

import logging
from dataclasses import dataclass
from datetime import date, timezone
from decimal import Decimal
from typing import Any, Optional

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import (
    InsufficientBalanceError, InvalidBusinessDateError, InvalidPaymentError, PeriodClosedError
)
from backend.app.db.atomic import AtomicUnit
from backend.app.domain.ledger.account import Account, ensure_account_exists
from backend.app.domain.ledger.balances import ZERO, money
from backend.app.domain.ledger.journal import TransactionJournal
from backend.app.domain.ledger.locking import BalanceLockManager
from backend.app.domain.ledger.provenance import Actor, Provenance
from backend.app.domain.ledger.resolver import BalanceResolver
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import Direction

logger = logging.getLogger(__name__)

ADD_OPENING_BALANCE_SOURCE = "add_opening_balance"


@dataclass(frozen=True)
class MutationResult:
    before_balance: Decimal
    after_balance: Decimal
    change_amount: Decimal
    journal_entry_id: int


class BalanceMutator:

    def __init__(
        self,
        calendar: BusinessCalendar,
        resolver: Optional[BalanceResolver] = None,
        locks: Optional[BalanceLockManager] = None
    ):
        self.calendar = calendar
        self.resolver = resolver or BalanceResolver(calendar)
        self.locks = locks or BalanceLockManager()

    async def apply(
        self,
        unit: AtomicUnit,
        account: Account,
        day: Optional[date],
        amount: Any,
        direction: Direction,
        provenance: Provenance
    ) -> MutationResult:
        """
        Apply one balance change.

        Flow:
        1. Validate amount, date and account
        2. Take the (account, day) lock
        3. Keep the closing chain continuous before the day is first opened
        4. Hold the day open (shared day lock), then reject if its closing is frozen
        5. Resolve before, compute after, enforce after >= 0
        6. Lazily create the day's opening snapshot (never modify an existing one)
        7. Append the journal entry

        Args:
            unit: Atomic unit shared with the caller's own writes
            account: Cash, Bank(id) or Card(id)
            day: Business date of the mutation (default: today)
            amount: Positive amount
            direction: INCOME adds, EXPENSE subtracts
            provenance: Description, source tag, source id and actor

        Returns:
            MutationResult with before/after balances and the journal entry id

        Raises:
            InvalidPaymentError: If amount is not positive
            InvalidBusinessDateError: If day is after today
            AccountNotFoundError: If the bank account or card does not exist
            PeriodClosedError: If the day has already been closed
            InsufficientBalanceError: If the balance would go negative
            TransientStoreError: Lock timeout or store failure
        """
        db = unit.session
        today = self.calendar.today()
        day = day or today
        amount = money(amount)

        # 1. Validate
        if amount <= ZERO:
            raise InvalidPaymentError(
                f"Mutation amount must be positive, got {amount:.2f}",
                details={"amount": str(amount), "account": account.key},
            )
        if day > today:
            raise InvalidBusinessDateError(
                f"Cannot record a balance change for {day.isoformat()}, a date after today ({today.isoformat()})",
                day,
                today,
            )
        await ensure_account_exists(db, account)

        # 2. Serialize on (account, day)
        await self.locks.acquire(unit, account, day)

        # 3. First write of the day: freeze any unfrozen earlier days first.
        # Earlier days are locked before this one, so day locks are always
        # taken in ascending date order.
        opening = await SnapshotService.get_opening(db, day)
        if opening is None:
            await SnapshotService.freeze_through(unit, day, self.locks)

        # 4. Closed periods are immutable; the shared day lock keeps the day
        # from being frozen until this unit ends
        await self.locks.share_day(unit, day)
        if await SnapshotService.get_closing(db, day) is not None:
            raise PeriodClosedError(day)

        # 5. Read-modify with the non-negative check
        before = await self.resolver.resolve(db, account, day)
        change = amount if direction == Direction.INCOME else -amount
        after = before + change

        if after < ZERO:
            logger.warning(
                "Insufficient %s balance on %s: available=%s requested=%s source=%s",
                account.label, day, before, amount, provenance.source
            )
            raise InsufficientBalanceError(account.label, account.key, before, amount)

        # 6. Lazy opening snapshot seeded with the true start-of-day state
        if opening is None:
            baseline = await SnapshotService.carried_forward(db, day)
            baseline.set(account, before)
            _, created = await SnapshotService.ensure_opening(
                db,
                day,
                baseline,
                notes=f"Auto-created on first transaction of the day ({provenance.source})",
                actor=provenance.actor,
            )
            if created:
                logger.info("Opening snapshot for %s created lazily by %s", day, provenance.source)

        # 7. Journal
        entry = await TransactionJournal.append(
            db,
            entry_date=day,
            **account.column_values(),
            direction=direction,
            amount=amount,
            before_balance=before,
            after_balance=after,
            change_amount=change,
            description=provenance.description,
            source=provenance.source,
            source_id=provenance.source_id,
            actor_id=provenance.actor.id,
            actor_name=provenance.actor.display_name,
            actor_kind=provenance.actor.kind,
            created_at=self.calendar.now().astimezone(timezone.utc),
        )

        logger.info(
            "Balance %s %s on %s: %s -> %s (%s #%s)",
            account.key, direction.value.lower(), day, before, after, provenance.source, entry.id
        )

        return MutationResult(
            before_balance=before,
            after_balance=after,
            change_amount=change,
            journal_entry_id=entry.id,
        )

    async def add_to_opening_baseline(
        self,
        unit: AtomicUnit,
        day: Optional[date],
        amount: Any,
        account: Account,
        actor: Actor,
        description: Optional[str] = None
    ) -> MutationResult:
        """
        Manual "add opening balance" correction.

        Recorded as an income mutation with source add_opening_balance; the
        opening snapshot row itself is never edited.
        """
        day = day or self.calendar.today()
        return await self.apply(
            unit,
            account,
            day,
            amount,
            Direction.INCOME,
            Provenance(
                description=description or f"Opening balance added to {account.label}",
                source=ADD_OPENING_BALANCE_SOURCE,
                actor=actor,
            ),
        )
