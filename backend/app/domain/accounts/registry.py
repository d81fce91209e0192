"""
Bank account and card registry.

CRUD for the accounts the ledger tracks balances for. At most one active
default per kind: marking an account as default clears the flag on the others.
Accounts with ledger history can only be deactivated, never deleted.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AccountInUseError, ResourceNotFoundError
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.provenance import Actor
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.documents import Expense
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.snapshots import ClosingSnapshot, OpeningSnapshot
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Shared registry logic; subclasses bind the model and its ledger columns."""

    model: Type[Any]
    label: str
    reference_column: str
    snapshot_field: str

    def ledger_account(self, row) -> Account:
        raise NotImplementedError

    async def list(self, db: AsyncSession) -> List[Any]:
        """Default first, then newest first."""
        result = await db.execute(
            select(self.model).order_by(self.model.is_default.desc(), self.model.created_at.desc(), self.model.id.desc())
        )
        return list(result.scalars().all())

    async def list_active(self, db: AsyncSession) -> List[Any]:
        result = await db.execute(
            select(self.model).where(self.model.is_active.is_(True)).order_by(self.model.id.asc())
        )
        return list(result.scalars().all())

    async def get(self, db: AsyncSession, row_id: int):
        """
        Raises:
            ResourceNotFoundError: If no row has this id
        """
        row = await db.get(self.model, row_id)
        if row is None:
            raise ResourceNotFoundError(self.label, row_id)
        return row

    async def get_default(self, db: AsyncSession):
        """The active default, or None."""
        result = await db.execute(
            select(self.model)
            .where(self.model.is_default.is_(True), self.model.is_active.is_(True))
            .order_by(self.model.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _clear_default(self, db: AsyncSession, keep_id: Optional[int] = None) -> None:
        stmt = update(self.model).where(self.model.is_default.is_(True))
        if keep_id is not None:
            stmt = stmt.where(self.model.id != keep_id)
        await db.execute(stmt.values(is_default=False))

    async def create(self, db: AsyncSession, values: Dict[str, Any], actor: Actor):
        if values.get("is_default"):
            await self._clear_default(db)
        row = self.model(**values)
        db.add(row)
        await db.flush()

        await log_event(
            db,
            action=AuditAction.ACCOUNT_CREATED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=self.ledger_account(row).kind.value.lower(),
            target_id=row.id,
            metadata={"is_default": bool(row.is_default)},
        )
        await db.refresh(row)
        logger.info("%s #%s created by %s", self.label, row.id, actor.display_name)
        return row

    async def update(self, db: AsyncSession, row_id: int, changes: Dict[str, Any], actor: Actor):
        """
        Apply a partial update.

        Raises:
            ResourceNotFoundError: If no row has this id
        """
        row = await self.get(db, row_id)
        if changes.get("is_default"):
            await self._clear_default(db, keep_id=row.id)
        for field, value in changes.items():
            setattr(row, field, value)
        await db.flush()

        await log_event(
            db,
            action=AuditAction.ACCOUNT_UPDATED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=self.ledger_account(row).kind.value.lower(),
            target_id=row.id,
            metadata={"fields": sorted(changes)},
        )
        await db.refresh(row)
        return row

    async def has_history(self, db: AsyncSession, row_id: int) -> bool:
        """True if a journal entry, an expense or any snapshot references the account."""
        journal_column = getattr(JournalEntry, self.reference_column)
        expense_column = getattr(Expense, self.reference_column)
        result = await db.execute(
            select(or_(exists().where(journal_column == row_id), exists().where(expense_column == row_id)))
        )
        if result.scalar():
            return True

        for snapshot_model in (OpeningSnapshot, ClosingSnapshot):
            rows = await db.execute(select(getattr(snapshot_model, self.snapshot_field)))
            for balances in rows.scalars():
                if any(int(item[self.reference_column]) == row_id for item in balances or []):
                    return True
        return False

    async def delete(self, db: AsyncSession, row_id: int, actor: Actor) -> None:
        """
        Raises:
            ResourceNotFoundError: If no row has this id
            AccountInUseError: The journal, an expense or a snapshot references the account
        """
        row = await self.get(db, row_id)
        account = self.ledger_account(row)
        if await self.has_history(db, row_id):
            raise AccountInUseError(account.key)

        await db.delete(row)
        await log_event(
            db,
            action=AuditAction.ACCOUNT_DELETED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=account.kind.value.lower(),
            target_id=row_id,
        )
        logger.info("%s #%s deleted by %s", self.label, row_id, actor.display_name)


class BankAccountService(AccountRegistry):
    model = BankAccount
    label = "Bank account"
    reference_column = "bank_account_id"
    snapshot_field = "bank_balances"

    def ledger_account(self, row) -> Account:
        return Account.bank(row.id)


class CardService(AccountRegistry):
    model = Card
    label = "Card"
    reference_column = "card_id"
    snapshot_field = "card_balances"

    def ledger_account(self, row) -> Account:
        return Account.card(row.id)
