"""
Sales, Purchases and Expenses API Endpoints.

Each write runs the document change and its ledger settlement in one atomic
unit, retried as a whole on transient store errors.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.calendar import BusinessCalendar, get_calendar
from backend.app.core.dependencies import get_current_user
from backend.app.core.reliability import run_with_transient_retry
from backend.app.db.atomic import atomic_unit
from backend.app.db.session import get_session_factory
from backend.app.domain.documents.expenses import ExpenseService
from backend.app.domain.documents.payment_documents import PurchaseService, SaleService
from backend.app.schemas.documents import (
    ExpenseCreate, ExpenseResponse, PaymentIn, PurchaseCreate, PurchaseResponse, SaleCreate, SaleResponse
)
from backend.app.services.identity import resolve_actor

sales_router = APIRouter(prefix="/sales", tags=["Sales"])
purchases_router = APIRouter(prefix="/purchases", tags=["Purchases"])
expenses_router = APIRouter(prefix="/expenses", tags=["Expenses"])


async def _run(session_factory, current_user: dict, action):
    """Resolve the caller and run `action(unit, actor)` as one retried unit."""
    async def unit_of_work():
        async with atomic_unit(session_factory) as unit:
            actor = await resolve_actor(unit.session, current_user["user_id"])
            return await action(unit, actor)

    return await run_with_transient_retry(unit_of_work)


# Sales

@sales_router.post("", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreate,
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Create a sale and settle its cash/bank/card legs. 422 if a leg would
    overdraw its account; nothing is persisted in that case.
    """
    return await _run(session_factory, current_user,
                      lambda unit, actor: SaleService(calendar).create(unit, payload, actor))


@sales_router.post("/{sale_id}/cancel", response_model=SaleResponse)
async def cancel_sale(
    sale_id: int = Path(..., description="Sale ID"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Cancel a sale; settled legs are refunded with entries dated today.
    """
    return await _run(session_factory, current_user,
                      lambda unit, actor: SaleService(calendar).cancel(unit, sale_id, actor))


@sales_router.post("/{sale_id}/payments", response_model=SaleResponse)
async def add_sale_payment(
    payment: PaymentIn,
    sale_id: int = Path(..., description="Sale ID"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Record a partial payment against a pending sale.
    """
    return await _run(session_factory, current_user,
                      lambda unit, actor: SaleService(calendar).add_payment(unit, sale_id, payment, actor))


# Purchases

@purchases_router.post("", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase(
    payload: PurchaseCreate,
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    return await _run(session_factory, current_user,
                      lambda unit, actor: PurchaseService(calendar).create(unit, payload, actor))


@purchases_router.post("/{purchase_id}/cancel", response_model=PurchaseResponse)
async def cancel_purchase(
    purchase_id: int = Path(..., description="Purchase ID"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    return await _run(session_factory, current_user,
                      lambda unit, actor: PurchaseService(calendar).cancel(unit, purchase_id, actor))


@purchases_router.post("/{purchase_id}/payments", response_model=PurchaseResponse)
async def add_purchase_payment(
    payment: PaymentIn,
    purchase_id: int = Path(..., description="Purchase ID"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    return await _run(session_factory, current_user,
                      lambda unit, actor: PurchaseService(calendar).add_payment(unit, purchase_id, payment, actor))


# Expenses

@expenses_router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Record an expense paid from cash, a bank account or a card.
    """
    return await _run(session_factory, current_user,
                      lambda unit, actor: ExpenseService(calendar).create(unit, payload, actor))


@expenses_router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: int = Path(..., description="Expense ID"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Delete an expense; its amount is refunded to the account with an entry dated today.
    """
    await _run(session_factory, current_user,
               lambda unit, actor: ExpenseService(calendar).delete(unit, expense_id, actor))
