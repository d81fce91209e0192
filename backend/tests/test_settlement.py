"""
Settlement Tests.

Sales, purchases and expenses drive the Balance Mutator through the
settlement adapter: legs settle in the document's own unit, cancellations and
deletions refund today, partial payments respect the remaining balance.
"""

import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from backend.app.core.exceptions import (
    DocumentStateError, InsufficientBalanceError, InvalidBusinessDateError, InvalidPaymentError, ResourceNotFoundError
)
from backend.app.db.atomic import atomic_unit
from backend.app.domain.documents.expenses import ExpenseService
from backend.app.domain.documents.payment_documents import PurchaseService, SaleService
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.documents import Expense, Purchase, Sale
from backend.app.models.enums import Direction, DocumentStatus, PaymentType
from backend.app.models.journal_entry import JournalEntry
from backend.app.schemas.documents import ExpenseCreate, PaymentIn, PurchaseCreate, SaleCreate
from backend.tests.helpers import CASH, resolve_balance, seed_opening

JAN_1 = date(2024, 1, 1)
JAN_2 = date(2024, 1, 2)
JAN_5 = date(2024, 1, 5)


@pytest.fixture
def sales(calendar):
    return SaleService(calendar)


@pytest.fixture
def purchases(calendar):
    return PurchaseService(calendar)


@pytest.fixture
def expenses(calendar):
    return ExpenseService(calendar)


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def entries_for(session_factory, source):
    async with session_factory() as session:
        result = await session.execute(
            select(JournalEntry).where(JournalEntry.source == source).order_by(JournalEntry.id)
        )
        return result.scalars().all()


@pytest.mark.asyncio
async def test_sale_settles_each_leg_except_credit(session_factory, sales, resolver, staff_actor, bank_account, card):
    payload = SaleCreate(
        customer_name="Walk-in",
        total=Decimal("200.00"),
        payments=[
            PaymentIn(type=PaymentType.CASH, amount=Decimal("100")),
            PaymentIn(type=PaymentType.BANK_TRANSFER, amount=Decimal("50"), bank_account_id=bank_account.id),
            PaymentIn(type=PaymentType.CARD, amount=Decimal("30"), card_id=card.id),
            PaymentIn(type=PaymentType.CREDIT, amount=Decimal("20")),
        ],
    )

    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    assert sale.sale_date == JAN_1
    assert sale.remaining_balance == Decimal("20.00")
    assert sale.status == DocumentStatus.PENDING
    assert sale.bill_number.startswith("BILL-")
    assert len(sale.payments) == 4

    assert await resolve_balance(session_factory, resolver, CASH, JAN_1) == Decimal("100.00")
    assert await resolve_balance(session_factory, resolver, Account.bank(bank_account.id), JAN_1) == Decimal("50.00")
    assert await resolve_balance(session_factory, resolver, Account.card(card.id), JAN_1) == Decimal("30.00")

    entries = await entries_for(session_factory, "sale")
    assert len(entries) == 3
    assert all(e.direction == Direction.INCOME and e.source_id == str(sale.id) for e in entries)


@pytest.mark.asyncio
async def test_fully_paid_sale_is_completed(session_factory, sales, staff_actor):
    payload = SaleCreate(total=Decimal("80"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("80"))])

    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    assert sale.status == DocumentStatus.COMPLETED
    assert sale.remaining_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_overpayment_is_rejected(session_factory, sales, staff_actor):
    payload = SaleCreate(total=Decimal("100"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("150"))])

    with pytest.raises(InvalidPaymentError):
        async with atomic_unit(session_factory) as unit:
            await sales.create(unit, payload, staff_actor)

    assert await count(session_factory, Sale) == 0
    assert await count(session_factory, JournalEntry) == 0


@pytest.mark.asyncio
async def test_bank_leg_without_account_is_rejected(session_factory, sales, staff_actor):
    payload = SaleCreate(total=Decimal("100"), payments=[PaymentIn(type=PaymentType.BANK_TRANSFER, amount=Decimal("10"))])

    with pytest.raises(InvalidPaymentError):
        async with atomic_unit(session_factory) as unit:
            await sales.create(unit, payload, staff_actor)


@pytest.mark.asyncio
async def test_failed_leg_rolls_back_whole_purchase(session_factory, purchases, resolver, staff_actor, bank_account):
    """The bank leg settles first, then cash overdraws: nothing survives."""
    await seed_opening(session_factory, JAN_1, cash=200, banks={bank_account.id: 500})
    payload = PurchaseCreate(
        supplier_name="Wholesale Co",
        total=Decimal("400"),
        payments=[
            PaymentIn(type=PaymentType.BANK_TRANSFER, amount=Decimal("100"), bank_account_id=bank_account.id),
            PaymentIn(type=PaymentType.CASH, amount=Decimal("300")),
        ],
    )

    with pytest.raises(InsufficientBalanceError) as exc_info:
        async with atomic_unit(session_factory) as unit:
            await purchases.create(unit, payload, staff_actor)

    assert exc_info.value.available == Decimal("200.00")
    assert await count(session_factory, Purchase) == 0
    assert await count(session_factory, JournalEntry) == 0
    assert await resolve_balance(session_factory, resolver, Account.bank(bank_account.id), JAN_1) == Decimal("500.00")


@pytest.mark.asyncio
async def test_purchase_legs_are_expenses(session_factory, purchases, resolver, staff_actor):
    await seed_opening(session_factory, JAN_1, cash=500)
    payload = PurchaseCreate(
        supplier_name="Wholesale Co",
        total=Decimal("300"),
        payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("120"))],
    )

    async with atomic_unit(session_factory) as unit:
        purchase = await purchases.create(unit, payload, staff_actor)

    assert purchase.remaining_balance == Decimal("180.00")
    assert await resolve_balance(session_factory, resolver, CASH, JAN_1) == Decimal("380.00")
    entries = await entries_for(session_factory, "purchase_payment")
    assert [e.direction for e in entries] == [Direction.EXPENSE]


@pytest.mark.asyncio
async def test_partial_payments_complete_the_sale(session_factory, sales, resolver, staff_actor):
    payload = SaleCreate(total=Decimal("300"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("100"))])
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    async with atomic_unit(session_factory) as unit:
        sale = await sales.add_payment(unit, sale.id, PaymentIn(type=PaymentType.CASH, amount=Decimal("120")), staff_actor)
    assert sale.status == DocumentStatus.PENDING
    assert sale.remaining_balance == Decimal("80.00")

    async with atomic_unit(session_factory) as unit:
        sale = await sales.add_payment(unit, sale.id, PaymentIn(type=PaymentType.CASH, amount=Decimal("80")), staff_actor)
    assert sale.status == DocumentStatus.COMPLETED
    assert sale.remaining_balance == Decimal("0.00")
    assert len(sale.payments) == 3

    assert await resolve_balance(session_factory, resolver, CASH, JAN_1) == Decimal("300.00")
    assert len(await entries_for(session_factory, "sale_payment")) == 2


@pytest.mark.asyncio
async def test_payment_beyond_remaining_balance_is_rejected(session_factory, sales, staff_actor):
    payload = SaleCreate(total=Decimal("300"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("100"))])
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    with pytest.raises(InvalidPaymentError) as exc_info:
        async with atomic_unit(session_factory) as unit:
            await sales.add_payment(unit, sale.id, PaymentIn(type=PaymentType.CASH, amount=Decimal("250")), staff_actor)

    assert exc_info.value.details["remaining_balance"] == "200.00"
    assert len(await entries_for(session_factory, "sale_payment")) == 0


@pytest.mark.asyncio
async def test_completed_sale_takes_no_payments(session_factory, sales, staff_actor):
    payload = SaleCreate(total=Decimal("50"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("50"))])
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    with pytest.raises(DocumentStateError):
        async with atomic_unit(session_factory) as unit:
            await sales.add_payment(unit, sale.id, PaymentIn(type=PaymentType.CASH, amount=Decimal("1")), staff_actor)


@pytest.mark.asyncio
async def test_payment_on_unknown_sale_is_not_found(session_factory, sales, staff_actor):
    with pytest.raises(ResourceNotFoundError):
        async with atomic_unit(session_factory) as unit:
            await sales.add_payment(unit, 999, PaymentIn(type=PaymentType.CASH, amount=Decimal("1")), staff_actor)


@pytest.mark.asyncio
async def test_cancel_refunds_today_and_keeps_past_closing(session_factory, sales, resolver, staff_actor, clock, card):
    payload = SaleCreate(
        total=Decimal("150"),
        payments=[
            PaymentIn(type=PaymentType.CASH, amount=Decimal("100")),
            PaymentIn(type=PaymentType.CARD, amount=Decimal("50"), card_id=card.id),
        ],
    )
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    clock.set_day(JAN_2)
    async with atomic_unit(session_factory) as unit:
        cancelled = await sales.cancel(unit, sale.id, staff_actor)

    assert cancelled.status == DocumentStatus.CANCELLED
    refunds = await entries_for(session_factory, "sale_refund")
    assert [(e.entry_date, e.direction, e.amount) for e in refunds] == [
        (JAN_2, Direction.EXPENSE, Decimal("100.00")),
        (JAN_2, Direction.EXPENSE, Decimal("50.00")),
    ]
    assert await resolve_balance(session_factory, resolver, CASH, JAN_2) == Decimal("0.00")
    assert await resolve_balance(session_factory, resolver, Account.card(card.id), JAN_2) == Decimal("0.00")

    async with session_factory() as session:
        closing = await SnapshotService.get_closing(session, JAN_1)
    assert closing.cash_balance == Decimal("100.00")

    with pytest.raises(DocumentStateError):
        async with atomic_unit(session_factory) as unit:
            await sales.cancel(unit, sale.id, staff_actor)
    with pytest.raises(DocumentStateError):
        async with atomic_unit(session_factory) as unit:
            await sales.add_payment(unit, sale.id, PaymentIn(type=PaymentType.CASH, amount=Decimal("1")), staff_actor)


@pytest.mark.asyncio
async def test_cancel_that_would_overdraw_leaves_sale_intact(session_factory, sales, expenses, staff_actor):
    """Refunding a sale is an expense, so it can fail once the cash is spent."""
    payload = SaleCreate(total=Decimal("100"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("100"))])
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)
    async with atomic_unit(session_factory) as unit:
        await expenses.create(unit, ExpenseCreate(category="Supplies", amount=Decimal("80")), staff_actor)

    with pytest.raises(InsufficientBalanceError):
        async with atomic_unit(session_factory) as unit:
            await sales.cancel(unit, sale.id, staff_actor)

    async with session_factory() as session:
        stored = await session.get(Sale, sale.id)
    assert stored.status == DocumentStatus.COMPLETED
    assert len(await entries_for(session_factory, "sale_refund")) == 0


@pytest.mark.asyncio
async def test_expense_on_bank_account(session_factory, expenses, resolver, staff_actor, bank_account):
    await seed_opening(session_factory, JAN_1, banks={bank_account.id: 300})
    payload = ExpenseCreate(
        category="Rent",
        amount=Decimal("250"),
        payment_type=PaymentType.BANK_TRANSFER,
        bank_account_id=bank_account.id,
        card_id=12,
    )

    async with atomic_unit(session_factory) as unit:
        expense = await expenses.create(unit, payload, staff_actor)

    assert expense.card_id is None
    assert await resolve_balance(session_factory, resolver, Account.bank(bank_account.id), JAN_1) == Decimal("50.00")


@pytest.mark.asyncio
async def test_expense_cannot_be_on_credit(session_factory, expenses, staff_actor):
    payload = ExpenseCreate(category="Rent", amount=Decimal("10"), payment_type=PaymentType.CREDIT)

    with pytest.raises(InvalidPaymentError):
        async with atomic_unit(session_factory) as unit:
            await expenses.create(unit, payload, staff_actor)


@pytest.mark.asyncio
async def test_expense_exceeding_balance_is_not_recorded(session_factory, expenses, staff_actor):
    await seed_opening(session_factory, JAN_1, cash=50)

    with pytest.raises(InsufficientBalanceError):
        async with atomic_unit(session_factory) as unit:
            await expenses.create(unit, ExpenseCreate(category="Rent", amount=Decimal("60")), staff_actor)

    assert await count(session_factory, Expense) == 0


@pytest.mark.asyncio
async def test_deleting_old_expense_refunds_today(session_factory, expenses, resolver, staff_actor, clock):
    """Scenario 6: a refund on Jan 5 for a Jan 1 expense leaves the Jan 1 closing alone."""
    await seed_opening(session_factory, JAN_1, cash=1000)
    async with atomic_unit(session_factory) as unit:
        first = await expenses.create(unit, ExpenseCreate(category="Supplies", amount=Decimal("200")), staff_actor)
    async with atomic_unit(session_factory) as unit:
        await expenses.create(unit, ExpenseCreate(category="Supplies", amount=Decimal("200")), staff_actor)

    clock.set_day(JAN_5)
    async with atomic_unit(session_factory) as unit:
        await expenses.delete(unit, first.id, staff_actor)

    refunds = await entries_for(session_factory, "expense_refund")
    assert len(refunds) == 1
    assert refunds[0].entry_date == JAN_5
    assert refunds[0].direction == Direction.INCOME
    assert refunds[0].change_amount == Decimal("200.00")
    assert refunds[0].source_id == str(first.id)

    async with session_factory() as session:
        closing = await SnapshotService.get_closing(session, JAN_1)
        assert await session.get(Expense, first.id) is None
    assert closing.cash_balance == Decimal("600.00")
    assert await resolve_balance(session_factory, resolver, CASH, JAN_5) == Decimal("800.00")


@pytest.mark.asyncio
async def test_deleting_unknown_expense_is_not_found(session_factory, expenses, staff_actor):
    with pytest.raises(ResourceNotFoundError):
        async with atomic_unit(session_factory) as unit:
            await expenses.delete(unit, 404, staff_actor)


@pytest.mark.asyncio
async def test_future_dated_sale_is_rejected_and_today_stays_open(session_factory, sales, resolver, staff_actor):
    await seed_opening(session_factory, JAN_1, cash=1000)
    payload = SaleCreate(
        sale_date=JAN_5, total=Decimal("10"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("10"))]
    )

    with pytest.raises(InvalidBusinessDateError) as exc_info:
        async with atomic_unit(session_factory) as unit:
            await sales.create(unit, payload, staff_actor)

    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"date": "2024-01-05", "today": "2024-01-01"}
    assert await count(session_factory, Sale) == 0
    async with session_factory() as session:
        assert await SnapshotService.get_closing(session, JAN_1) is None

    # Same-day trading carries on, with the date given explicitly
    payload = SaleCreate(
        sale_date=JAN_1, total=Decimal("5"), payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("5"))]
    )
    async with atomic_unit(session_factory) as unit:
        sale = await sales.create(unit, payload, staff_actor)

    assert sale.sale_date == JAN_1
    assert await resolve_balance(session_factory, resolver, CASH, JAN_1) == Decimal("1005.00")


@pytest.mark.asyncio
async def test_back_dated_documents_are_rejected(session_factory, purchases, expenses, staff_actor, clock):
    await seed_opening(session_factory, JAN_1, cash=1000)
    clock.set_day(JAN_2)

    with pytest.raises(InvalidBusinessDateError):
        async with atomic_unit(session_factory) as unit:
            await purchases.create(unit, PurchaseCreate(
                supplier_name="Mill",
                purchase_date=JAN_1,
                total=Decimal("50"),
                payments=[PaymentIn(type=PaymentType.CASH, amount=Decimal("50"))],
            ), staff_actor)

    with pytest.raises(InvalidBusinessDateError):
        async with atomic_unit(session_factory) as unit:
            await expenses.create(
                unit, ExpenseCreate(category="Rent", amount=Decimal("10"), expense_date=JAN_1), staff_actor
            )

    assert await count(session_factory, Purchase) == 0
    assert await count(session_factory, Expense) == 0
    assert await count(session_factory, JournalEntry) == 0
