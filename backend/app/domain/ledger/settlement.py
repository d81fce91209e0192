"""
Settlement Adapter.

Contract used by sales, purchases and expenses to drive the Balance Mutator:
- creation settles each non-credit payment leg in the document's own unit
- cancellation/deletion issues compensating mutations dated today
- partial payments are validated against the document's remaining balance
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import (
    AccountNotFoundError, InsufficientBalanceError, InvalidBusinessDateError, InvalidPaymentError, PeriodClosedError
)
from backend.app.db.atomic import AtomicUnit
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import ZERO, money
from backend.app.domain.ledger.mutator import BalanceMutator, MutationResult
from backend.app.domain.ledger.provenance import Actor, Provenance
from backend.app.models.enums import Direction, PaymentType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentLeg:
    type: PaymentType
    amount: Decimal
    account: Optional[Account]
    paid_at: Optional[str] = None

    @property
    def settles(self) -> bool:
        """Credit legs are receivables/payables and never touch the ledger."""
        return self.account is not None

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "amount": str(self.amount),
            "bank_account_id": self.account.bank_account_id if self.account else None,
            "card_id": self.account.card_id if self.account else None,
            "paid_at": self.paid_at,
        }


def _field(payment: Any, name: str) -> Any:
    if isinstance(payment, Mapping):
        return payment.get(name)
    return getattr(payment, name, None)


class SettlementAdapter:

    def __init__(self, calendar: BusinessCalendar, mutator: Optional[BalanceMutator] = None):
        self.calendar = calendar
        self.mutator = mutator or BalanceMutator(calendar)

    def document_date(self, requested: Optional[date], kind: str) -> date:
        """
        Business date for a new document: today, whether given or defaulted.

        Documents settle into the live day only. Corrections to earlier days
        are made with a new document dated today.

        Raises:
            InvalidBusinessDateError: If requested is any other date
        """
        today = self.calendar.today()
        if requested is not None and requested != today:
            raise InvalidBusinessDateError(
                f"{kind.capitalize()} date must be today ({today.isoformat()}), got {requested.isoformat()}",
                requested,
                today,
            )
        return today

    @staticmethod
    def legs_from_payments(payments: Iterable[Any]) -> List[PaymentLeg]:
        """
        Parse stored (dict) or incoming (schema) payments into legs.

        Raises:
            InvalidPaymentError: Unknown type, non-positive amount or missing account id
        """
        legs = []
        for index, payment in enumerate(payments or []):
            try:
                payment_type = PaymentType(_field(payment, "type"))
            except ValueError:
                raise InvalidPaymentError(
                    f"Unknown payment type '{_field(payment, 'type')}'", details={"leg": index}
                )

            try:
                amount = money(_field(payment, "amount"))
            except (InvalidOperation, TypeError, ValueError):
                raise InvalidPaymentError("Payment amount is not a number", details={"leg": index})
            if amount <= ZERO:
                raise InvalidPaymentError("Payment amount must be positive", details={"leg": index})

            account = Account.from_payment(
                payment_type,
                bank_account_id=_field(payment, "bank_account_id"),
                card_id=_field(payment, "card_id"),
            )
            legs.append(PaymentLeg(payment_type, amount, account, _field(payment, "paid_at")))
        return legs

    async def settle(
        self,
        unit: AtomicUnit,
        legs: List[PaymentLeg],
        direction: Direction,
        day: date,
        provenance_for: Callable[[PaymentLeg], Provenance],
        created_document: Any = None
    ) -> List[MutationResult]:
        """
        Apply every settled leg inside the caller's unit.

        When `created_document` is given (document creation), a business-rule
        failure deletes that flushed document row before re-raising, so the
        document never outlives its ledger effect. Store errors propagate
        and the unit's rollback discards the document with everything else.

        Raises:
            InsufficientBalanceError, AccountNotFoundError, PeriodClosedError,
            TransientStoreError
        """
        settled = [leg for leg in legs if leg.settles]
        results: List[MutationResult] = []
        try:
            # Lock order is independent of leg order
            await self.mutator.locks.acquire_many(unit, [leg.account for leg in settled], day)
            for leg in settled:
                results.append(await self.mutator.apply(
                    unit, leg.account, day, leg.amount, direction, provenance_for(leg)
                ))
        except (InsufficientBalanceError, AccountNotFoundError, PeriodClosedError) as e:
            if created_document is not None:
                logger.warning("Settlement failed for %r, compensating: %s", created_document, e.message)
                await unit.session.delete(created_document)
                await unit.session.flush()
            raise
        return results

    async def refund(
        self,
        unit: AtomicUnit,
        legs: List[PaymentLeg],
        original_direction: Direction,
        source: str,
        source_id: Any,
        actor: Actor,
        description: str
    ) -> List[MutationResult]:
        """
        Reverse settled legs, dated today so past closings are never altered.

        A sale refund is an expense and can itself fail with
        InsufficientBalanceError; the caller's unit then rolls back.
        """
        today = self.calendar.today()
        provenance = Provenance(
            description=description,
            source=source,
            source_id=str(source_id) if source_id is not None else None,
            actor=actor,
        )
        return await self.settle(unit, legs, original_direction.reversed, today, lambda leg: provenance)

    @staticmethod
    def validate_additional_payment(document: Any, amount: Any) -> Decimal:
        """
        Check a partial payment against the document's running balance.

        Returns:
            The quantized amount

        Raises:
            InvalidPaymentError: Non-positive amount or overpayment
        """
        amount = money(amount)
        if amount <= ZERO:
            raise InvalidPaymentError("Payment amount must be positive")

        remaining = money(document.remaining_balance)
        if amount > remaining:
            raise InvalidPaymentError(
                f"Payment amount ({amount:.2f}) exceeds remaining balance ({remaining:.2f})",
                details={"amount": str(amount), "remaining_balance": str(remaining)},
            )

        already_paid = sum((leg.amount for leg in SettlementAdapter.legs_from_payments(document.payments)), ZERO)
        total = money(document.total)
        if already_paid + amount > total:
            raise InvalidPaymentError(
                f"Total paid ({already_paid + amount:.2f}) would exceed document total ({total:.2f})",
                details={"paid": str(already_paid), "amount": str(amount), "total": str(total)},
            )
        return amount
