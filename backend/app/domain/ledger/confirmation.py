"""
Daily balance confirmation.

Before the first transaction of a business day staff confirm the balances
carried forward from the previous day. The check is advisory: writes are not
blocked on it, but clients prompt until today's row exists.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.calendar import BusinessCalendar
from backend.app.db.atomic import AtomicUnit
from backend.app.db.upsert import insert_ignoring_conflict
from backend.app.domain.accounts.registry import BankAccountService, CardService
from backend.app.domain.ledger.balances import BalanceSet
from backend.app.domain.ledger.provenance import Actor
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.daily_confirmation import DailyConfirmation
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationStatus:
    day: date
    previous_day: date
    previous_closing_frozen: bool
    balances: BalanceSet
    bank_accounts: List[BankAccount]
    cards: List[Card]
    confirmation: Optional[DailyConfirmation] = None

    @property
    def confirmed(self) -> bool:
        return self.confirmation is not None and bool(self.confirmation.confirmed)

    @property
    def needs_confirmation(self) -> bool:
        return not self.confirmed


class DailyConfirmationService:

    def __init__(self, calendar: BusinessCalendar):
        self.calendar = calendar

    @staticmethod
    async def get_confirmation(db: AsyncSession, day: date) -> Optional[DailyConfirmation]:
        result = await db.execute(select(DailyConfirmation).where(DailyConfirmation.confirmation_date == day))
        return result.scalar_one_or_none()

    async def status(self, db: AsyncSession) -> ConfirmationStatus:
        """
        Today's confirmation state and the balances to confirm.

        The balances are yesterday's frozen closing carried forward. Before the
        rollover has frozen yesterday they are a live preview of its closing.
        """
        today = self.calendar.today()
        previous = BusinessCalendar.previous_day(today)

        frozen = await SnapshotService.get_closing(db, previous) is not None
        if frozen:
            balances = await SnapshotService.carried_forward(db, today)
        else:
            balances = await SnapshotService.compute_closing(db, previous)

        return ConfirmationStatus(
            day=today,
            previous_day=previous,
            previous_closing_frozen=frozen,
            balances=balances,
            bank_accounts=await BankAccountService().list_active(db),
            cards=await CardService().list_active(db),
            confirmation=await self.get_confirmation(db, today),
        )

    async def confirm(self, unit: AtomicUnit, actor: Actor) -> ConfirmationStatus:
        """
        Confirm today's carried-forward balances. Idempotent: the first
        confirmer is kept and repeated calls return the existing row.
        """
        db = unit.session
        today = self.calendar.today()

        inserted = await insert_ignoring_conflict(
            db,
            DailyConfirmation,
            {
                "confirmation_date": today,
                "confirmed": True,
                "confirmed_by_id": actor.id,
                "confirmed_by_name": actor.display_name,
                "confirmed_by_kind": actor.kind,
            },
            index_elements=["confirmation_date"],
        )
        if inserted:
            await log_event(
                db,
                action=AuditAction.DAILY_BALANCES_CONFIRMED,
                actor_id=actor.id,
                actor_username=actor.display_name,
                target_type="daily_confirmation",
                target_id=today.isoformat(),
            )
            logger.info("Balances for %s confirmed by %s", today, actor.display_name)

        return await self.status(db)
