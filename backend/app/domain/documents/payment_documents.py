"""
Sale and Purchase Services (Domain Logic).

Both documents carry payment legs and a running remaining_balance. They
differ only in which way money flows: sale legs are income, purchase legs are
expenses. Every method runs inside the caller's atomic unit.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import DocumentStateError, InvalidPaymentError, ResourceNotFoundError
from backend.app.db.atomic import AtomicUnit
from backend.app.domain.ledger.balances import ZERO, money
from backend.app.domain.ledger.provenance import Actor, Provenance
from backend.app.domain.ledger.settlement import PaymentLeg, SettlementAdapter
from backend.app.models.documents import Purchase, Sale
from backend.app.models.enums import Direction, DocumentStatus
from backend.app.schemas.documents import PaymentIn, PurchaseCreate, SaleCreate
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


def _status_for(remaining: Decimal) -> DocumentStatus:
    return DocumentStatus.COMPLETED if remaining <= ZERO else DocumentStatus.PENDING


class PaymentDocumentService:
    """Shared create / cancel / add_payment flow; subclasses set the class attributes."""

    model: Any = None
    kind: str = ""
    direction: Direction = Direction.INCOME
    date_field: str = ""
    create_source: str = ""
    payment_source: str = ""
    refund_source: str = ""
    created_action: str = ""
    cancelled_action: str = ""

    def __init__(self, calendar: BusinessCalendar, settlement: Optional[SettlementAdapter] = None):
        self.calendar = calendar
        self.settlement = settlement or SettlementAdapter(calendar)

    def _provenance(self, document: Any, source: str, actor: Actor, leg: PaymentLeg) -> Provenance:
        return Provenance(
            description=f"{self.kind.capitalize()} #{document.id} {leg.type.value} payment",
            source=source,
            source_id=str(document.id),
            actor=actor,
        )

    def _stamp(self, legs: List[PaymentLeg], paid_at: datetime) -> List[dict]:
        stamped = []
        for leg in legs:
            data = leg.to_json()
            data["paid_at"] = paid_at.isoformat()
            stamped.append(data)
        return stamped

    def _document_fields(self, payload: Any) -> dict:
        raise NotImplementedError

    async def _load(self, unit: AtomicUnit, document_id: int) -> Any:
        result = await unit.session.execute(
            select(self.model).where(self.model.id == document_id).with_for_update()
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise ResourceNotFoundError(self.kind.capitalize(), document_id)
        return document

    async def create(self, unit: AtomicUnit, payload: Any, actor: Actor) -> Any:
        """
        Create the document and settle its payment legs in the same unit.

        Flow:
        1. Parse legs; reject overpayment
        2. Persist the document (flush, so it has an id)
        3. Settle each non-credit leg (compensates the document on failure)
        4. Audit

        Raises:
            InvalidPaymentError: Bad leg or legs exceed the total
            InvalidBusinessDateError: Document dated other than today
            InsufficientBalanceError: A leg would overdraw its account
        """
        db = unit.session
        total = money(payload.total)
        day = self.settlement.document_date(getattr(payload, self.date_field), self.kind)

        # 1. Legs
        legs = SettlementAdapter.legs_from_payments(payload.payments)
        paid = sum((leg.amount for leg in legs), ZERO)
        if paid > total:
            raise InvalidPaymentError(
                f"Payments ({paid:.2f}) exceed {self.kind} total ({total:.2f})",
                details={"paid": str(paid), "total": str(total)},
            )
        remaining = total - paid

        # 2. Document
        document = self.model(
            **self._document_fields(payload),
            **{self.date_field: day},
            total=total,
            payments=self._stamp(legs, self.calendar.now()),
            remaining_balance=remaining,
            status=_status_for(remaining),
            created_by_id=actor.id,
        )
        db.add(document)
        await db.flush()

        # 3. Ledger
        await self.settlement.settle(
            unit,
            legs,
            self.direction,
            day,
            lambda leg: self._provenance(document, self.create_source, actor, leg),
            created_document=document,
        )

        # 4. Audit
        await log_event(
            db,
            action=self.created_action,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=self.kind,
            target_id=document.id,
            metadata={"total": str(total), "paid": str(paid), "date": day.isoformat()},
        )

        await db.refresh(document)
        logger.info("%s #%s created: total=%s paid=%s", self.kind.capitalize(), document.id, total, paid)
        return document

    async def cancel(self, unit: AtomicUnit, document_id: int, actor: Actor) -> Any:
        """
        Cancel the document and refund every settled leg, dated today.

        Raises:
            ResourceNotFoundError, DocumentStateError (already cancelled),
            InsufficientBalanceError (the refund would overdraw an account)
        """
        document = await self._load(unit, document_id)
        if document.status == DocumentStatus.CANCELLED:
            raise DocumentStateError(
                f"{self.kind.capitalize()} #{document_id} is already cancelled",
                details={"id": document_id, "status": document.status.value},
            )

        legs = SettlementAdapter.legs_from_payments(document.payments)
        await self.settlement.refund(
            unit,
            legs,
            self.direction,
            source=self.refund_source,
            source_id=document.id,
            actor=actor,
            description=f"Refund for cancelled {self.kind} #{document.id}",
        )

        document.status = DocumentStatus.CANCELLED
        await unit.session.flush()

        await log_event(
            unit.session,
            action=self.cancelled_action,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=self.kind,
            target_id=document.id,
            metadata={"refunded": str(sum((leg.amount for leg in legs if leg.settles), ZERO))},
        )

        await unit.session.refresh(document)
        logger.info("%s #%s cancelled by %s", self.kind.capitalize(), document.id, actor.display_name)
        return document

    async def add_payment(self, unit: AtomicUnit, document_id: int, payment: PaymentIn, actor: Actor) -> Any:
        """
        Record a partial payment on a pending document, settled today.

        The document's remaining_balance is the source of truth for how much
        can still be paid.

        Raises:
            ResourceNotFoundError, DocumentStateError, InvalidPaymentError,
            InsufficientBalanceError
        """
        document = await self._load(unit, document_id)
        if document.status != DocumentStatus.PENDING:
            raise DocumentStateError(
                f"{self.kind.capitalize()} #{document_id} is {document.status.value.lower()} and cannot take payments",
                details={"id": document_id, "status": document.status.value},
            )

        legs = SettlementAdapter.legs_from_payments([payment])
        amount = SettlementAdapter.validate_additional_payment(document, legs[0].amount)

        await self.settlement.settle(
            unit,
            legs,
            self.direction,
            self.calendar.today(),
            lambda leg: self._provenance(document, self.payment_source, actor, leg),
        )

        remaining = money(document.remaining_balance) - amount
        # New list so the JSON column is flagged dirty
        document.payments = list(document.payments) + self._stamp(legs, self.calendar.now())
        document.remaining_balance = remaining
        document.status = _status_for(remaining)
        await unit.session.flush()

        await log_event(
            unit.session,
            action=AuditAction.DOCUMENT_PAYMENT_ADDED,
            actor_id=actor.id,
            actor_username=actor.display_name,
            target_type=self.kind,
            target_id=document.id,
            metadata={"amount": str(amount), "type": payment.type.value, "remaining": str(remaining)},
        )
        await unit.session.refresh(document)
        return document


class SaleService(PaymentDocumentService):
    model = Sale
    kind = "sale"
    direction = Direction.INCOME
    date_field = "sale_date"
    create_source = "sale"
    payment_source = "sale_payment"
    refund_source = "sale_refund"
    created_action = AuditAction.SALE_CREATED
    cancelled_action = AuditAction.SALE_CANCELLED

    def _document_fields(self, payload: SaleCreate) -> dict:
        return {
            "bill_number": payload.bill_number or f"BILL-{uuid.uuid4().hex[:10].upper()}",
            "customer_name": payload.customer_name,
            "customer_phone": payload.customer_phone,
        }


class PurchaseService(PaymentDocumentService):
    model = Purchase
    kind = "purchase"
    direction = Direction.EXPENSE
    date_field = "purchase_date"
    create_source = "purchase_payment"
    payment_source = "purchase_payment"
    refund_source = "purchase_refund"
    created_action = AuditAction.PURCHASE_CREATED
    cancelled_action = AuditAction.PURCHASE_CANCELLED

    def _document_fields(self, payload: PurchaseCreate) -> dict:
        return {
            "supplier_name": payload.supplier_name,
            "supplier_phone": payload.supplier_phone,
        }
