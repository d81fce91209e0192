"""
Expense Service (Domain Logic).

An expense is a single leg paid from cash, a bank account or a card.
Deleting an expense refunds it (dated today) before the row goes away.
"""

import logging
from typing import Optional

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import InvalidPaymentError, ResourceNotFoundError
from backend.app.db.atomic import AtomicUnit
from backend.app.domain.ledger.provenance import Actor, Provenance
from backend.app.domain.ledger.settlement import SettlementAdapter
from backend.app.models.documents import Expense
from backend.app.models.enums import Direction, PaymentType
from backend.app.schemas.documents import ExpenseCreate
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


class ExpenseService:

    def __init__(self, calendar: BusinessCalendar, settlement: Optional[SettlementAdapter] = None):
        self.calendar = calendar
        self.settlement = settlement or SettlementAdapter(calendar)

    @staticmethod
    def _legs(expense: Expense):
        return SettlementAdapter.legs_from_payments([{
            "type": expense.payment_type.value,
            "amount": expense.amount,
            "bank_account_id": expense.bank_account_id,
            "card_id": expense.card_id,
        }])

    async def create(self, unit: AtomicUnit, payload: ExpenseCreate, actor: Actor) -> Expense:
        """
        Record the expense and debit its account in the same unit.

        Raises:
            InvalidPaymentError: Credit payment type or missing account id
            InvalidBusinessDateError: Expense dated other than today
            InsufficientBalanceError: The account cannot cover the amount
        """
        if payload.payment_type == PaymentType.CREDIT:
            raise InvalidPaymentError("Expenses must be paid from cash, a bank account or a card")

        db = unit.session
        day = self.settlement.document_date(payload.expense_date, "expense")

        expense = Expense(
            category=payload.category,
            description=payload.description,
            expense_date=day,
            amount=payload.amount,
            payment_type=payload.payment_type,
            bank_account_id=payload.bank_account_id if payload.payment_type == PaymentType.BANK_TRANSFER else None,
            card_id=payload.card_id if payload.payment_type == PaymentType.CARD else None,
            created_by_id=actor.id,
        )
        legs = self._legs(expense)
        db.add(expense)
        await db.flush()

        await self.settlement.settle(
            unit,
            legs,
            Direction.EXPENSE,
            day,
            lambda leg: Provenance(
                description=f"Expense #{expense.id}: {expense.category}",
                source="expense",
                source_id=str(expense.id),
                actor=actor,
            ),
            created_document=expense,
        )

        await log_event(
            db,
            action=AuditAction.EXPENSE_CREATED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type="expense",
            target_id=expense.id,
            metadata={"amount": str(expense.amount), "payment_type": expense.payment_type.value},
        )

        await db.refresh(expense)
        logger.info("Expense #%s created: %s %s", expense.id, expense.category, expense.amount)
        return expense

    async def delete(self, unit: AtomicUnit, expense_id: int, actor: Actor) -> None:
        """
        Refund the expense into its account (dated today) and delete it.

        Raises:
            ResourceNotFoundError: Unknown expense
        """
        db = unit.session
        expense = await db.get(Expense, expense_id)
        if expense is None:
            raise ResourceNotFoundError("Expense", expense_id)

        await self.settlement.refund(
            unit,
            self._legs(expense),
            Direction.EXPENSE,
            source="expense_refund",
            source_id=expense.id,
            actor=actor,
            description=f"Refund for deleted expense #{expense.id}: {expense.category}",
        )

        await log_event(
            db,
            action=AuditAction.EXPENSE_DELETED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type="expense",
            target_id=expense.id,
            metadata={"amount": str(expense.amount), "expense_date": expense.expense_date.isoformat()},
        )

        await db.delete(expense)
        await db.flush()
        logger.info("Expense #%s deleted by %s", expense_id, actor.display_name)
