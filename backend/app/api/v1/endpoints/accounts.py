"""
Bank Account, Card and Daily Confirmation API Endpoints.

Any authenticated user can read accounts and confirm the day's carried-forward
balances; creating, changing and deleting accounts is admin only.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.calendar import BusinessCalendar, get_calendar
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_admin
from backend.app.core.reliability import run_with_transient_retry
from backend.app.db.atomic import atomic_unit
from backend.app.db.session import get_db, get_session_factory
from backend.app.domain.accounts.registry import BankAccountService, CardService
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.confirmation import ConfirmationStatus, DailyConfirmationService
from backend.app.schemas.accounts import (
    BankAccountCreate, BankAccountResponse, BankAccountUpdate, CardCreate, CardResponse, CardUpdate,
    ConfirmedBankBalance, ConfirmedCardBalance, DailyConfirmationResponse
)
from backend.app.services.identity import resolve_actor

bank_accounts_router = APIRouter(prefix="/bank-accounts", tags=["Bank Accounts"])
cards_router = APIRouter(prefix="/cards", tags=["Cards"])
confirmation_router = APIRouter(prefix="/daily-confirmation", tags=["Daily Confirmation"])

bank_accounts = BankAccountService()
cards = CardService()


async def _write(session_factory, current_user: dict, action):
    """Resolve the caller and run `action(db, actor)` in one retried unit."""
    async def unit_of_work():
        async with atomic_unit(session_factory) as unit:
            actor = await resolve_actor(unit.session, current_user["user_id"])
            return await action(unit.session, actor)

    return await run_with_transient_retry(unit_of_work)


# Bank accounts

@bank_accounts_router.get("", response_model=List[BankAccountResponse])
async def list_bank_accounts(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    All bank accounts, default first then newest.
    """
    return [BankAccountResponse.model_validate(row) for row in await bank_accounts.list(db)]


@bank_accounts_router.get("/default", response_model=Optional[BankAccountResponse])
async def get_default_bank_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    The active default bank account, or null.
    """
    row = await bank_accounts.get_default(db)
    return BankAccountResponse.model_validate(row) if row is not None else None


@bank_accounts_router.get("/{bank_account_id}", response_model=BankAccountResponse)
async def get_bank_account(
    bank_account_id: int = Path(..., description="Bank account ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return BankAccountResponse.model_validate(await bank_accounts.get(db, bank_account_id))


@bank_accounts_router.post("", response_model=BankAccountResponse, status_code=status.HTTP_201_CREATED)
async def create_bank_account(
    payload: BankAccountCreate,
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Register a bank account. Marking it as default clears the previous default.
    """
    async def action(db, actor):
        row = await bank_accounts.create(db, payload.model_dump(), actor)
        return BankAccountResponse.model_validate(row)

    return await _write(session_factory, admin, action)


@bank_accounts_router.patch("/{bank_account_id}", response_model=BankAccountResponse)
async def update_bank_account(
    payload: BankAccountUpdate,
    bank_account_id: int = Path(..., description="Bank account ID"),
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Update a bank account; send is_active=false to retire one with ledger history.
    """
    async def action(db, actor):
        row = await bank_accounts.update(db, bank_account_id, payload.model_dump(exclude_unset=True), actor)
        return BankAccountResponse.model_validate(row)

    return await _write(session_factory, admin, action)


@bank_accounts_router.delete("/{bank_account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bank_account(
    bank_account_id: int = Path(..., description="Bank account ID"),
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Delete a bank account the ledger never used. 409 once it has history.
    """
    await _write(session_factory, admin, lambda db, actor: bank_accounts.delete(db, bank_account_id, actor))


# Cards

@cards_router.get("", response_model=List[CardResponse])
async def list_cards(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return [CardResponse.model_validate(row) for row in await cards.list(db)]


@cards_router.get("/default", response_model=Optional[CardResponse])
async def get_default_card(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    row = await cards.get_default(db)
    return CardResponse.model_validate(row) if row is not None else None


@cards_router.get("/{card_id}", response_model=CardResponse)
async def get_card(
    card_id: int = Path(..., description="Card ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return CardResponse.model_validate(await cards.get(db, card_id))


@cards_router.post("", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
async def create_card(
    payload: CardCreate,
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    async def action(db, actor):
        return CardResponse.model_validate(await cards.create(db, payload.model_dump(), actor))

    return await _write(session_factory, admin, action)


@cards_router.patch("/{card_id}", response_model=CardResponse)
async def update_card(
    payload: CardUpdate,
    card_id: int = Path(..., description="Card ID"),
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    async def action(db, actor):
        row = await cards.update(db, card_id, payload.model_dump(exclude_unset=True), actor)
        return CardResponse.model_validate(row)

    return await _write(session_factory, admin, action)


@cards_router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_card(
    card_id: int = Path(..., description="Card ID"),
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    await _write(session_factory, admin, lambda db, actor: cards.delete(db, card_id, actor))


# Daily confirmation

def _confirmation_response(state: ConfirmationStatus) -> DailyConfirmationResponse:
    confirmation = state.confirmation
    return DailyConfirmationResponse(
        date=state.day,
        needs_confirmation=state.needs_confirmation,
        confirmed=state.confirmed,
        previous_date=state.previous_day,
        previous_closing_frozen=state.previous_closing_frozen,
        previous_cash_balance=state.balances.cash,
        bank_balances=[
            ConfirmedBankBalance(
                bank_account_id=row.id,
                bank_name=row.bank_name,
                account_number=row.account_number,
                balance=state.balances.get(Account.bank(row.id)),
            )
            for row in state.bank_accounts
        ],
        card_balances=[
            ConfirmedCardBalance(card_id=row.id, name=row.name, balance=state.balances.get(Account.card(row.id)))
            for row in state.cards
        ],
        confirmed_by_name=confirmation.confirmed_by_name if confirmation else None,
        confirmed_by_kind=confirmation.confirmed_by_kind if confirmation else None,
        confirmed_at=confirmation.confirmed_at if confirmation else None,
    )


@confirmation_router.get("/check", response_model=DailyConfirmationResponse)
async def check_daily_confirmation(
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    db: AsyncSession = Depends(get_db)
):
    """
    Whether today's balances still need confirming, with the balances carried
    forward from yesterday.
    """
    return _confirmation_response(await DailyConfirmationService(calendar).status(db))


@confirmation_router.post("/confirm", response_model=DailyConfirmationResponse)
async def confirm_daily_balances(
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Confirm today's carried-forward balances. Repeat calls keep the first confirmer.
    """
    async def unit_of_work():
        async with atomic_unit(session_factory) as unit:
            actor = await resolve_actor(unit.session, current_user["user_id"])
            state = await DailyConfirmationService(calendar).confirm(unit, actor)
            return _confirmation_response(state)

    return await run_with_transient_retry(unit_of_work)
