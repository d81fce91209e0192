"""
Ledger API Endpoints.

Balance reads, journal queries/export, opening balance corrections and
opening/closing snapshot management.
"""

import json
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.calendar import BusinessCalendar, get_calendar
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.core.guards import require_admin
from backend.app.core.reliability import run_with_transient_retry
from backend.app.db.atomic import atomic_unit
from backend.app.db.session import get_db, get_session_factory
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import BalanceSet
from backend.app.domain.ledger.journal import JournalFilters, TransactionJournal
from backend.app.domain.ledger.mutator import BalanceMutator
from backend.app.domain.ledger.resolver import BalanceResolver
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import AccountKind, Direction
from backend.app.schemas.ledger import (
    AddOpeningBalanceRequest, BalanceOverviewResponse, ClosingSnapshotResponse, DailySummaryResponse,
    JournalEntryResponse, MutationResponse, OpeningSnapshotCreate, OpeningSnapshotResponse,
    ReconciliationResponse, ResolvedBalanceResponse
)
from backend.app.services.audit import AuditAction, log_event
from backend.app.services.identity import resolve_actor

router = APIRouter(prefix="/ledger", tags=["Ledger"])


def _account_or_400(account: str, account_id: Optional[int]) -> Account:
    try:
        return Account.parse(account, account_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# Balances

@router.get("/balances", response_model=ResolvedBalanceResponse)
async def get_balance(
    account: str = Query("cash", pattern="^(cash|bank|card)$"),
    account_id: Optional[int] = Query(None),
    on: Optional[date] = Query(None, alias="date"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    db: AsyncSession = Depends(get_db)
):
    """
    Currently effective balance of one account on a date (default: today).
    """
    target = _account_or_400(account, account_id)
    day = on or calendar.today()
    balance = await BalanceResolver(calendar).resolve(db, target, day)
    return ResolvedBalanceResponse(date=day, account=target.key, balance=balance)


@router.get("/balances/overview", response_model=BalanceOverviewResponse)
async def get_balance_overview(
    on: Optional[date] = Query(None, alias="date"),
    current_user: dict = Depends(get_current_user),
    calendar: BusinessCalendar = Depends(get_calendar),
    db: AsyncSession = Depends(get_db)
):
    """
    Resolved balances for cash and every bank account and card.
    """
    day = on or calendar.today()
    balances = await BalanceResolver(calendar).resolve_all(db, day)
    return BalanceOverviewResponse(date=day, **balances.to_columns())


@router.post("/opening-balance/add", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_opening_balance(
    request: AddOpeningBalanceRequest,
    admin: dict = Depends(require_admin),
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Add money to an account's opening balance (recorded as an income entry).
    """
    account = _account_or_400(request.account, request.account_id)

    async def unit_of_work():
        async with atomic_unit(session_factory) as unit:
            actor = await resolve_actor(unit.session, admin["user_id"])
            result = await BalanceMutator(calendar).add_to_opening_baseline(
                unit, request.day, request.amount, account, actor, request.description
            )
            await log_event(
                unit.session,
                action=AuditAction.OPENING_BALANCE_ADDED,
                actor_id=actor.id,
                actor_username=actor.display_name,
                target_type="journal_entry",
                target_id=result.journal_entry_id,
                metadata={"account": account.key, "amount": str(request.amount)},
            )
            return result

    result = await run_with_transient_retry(unit_of_work)
    return MutationResponse(
        before_balance=result.before_balance,
        after_balance=result.after_balance,
        change_amount=result.change_amount,
        journal_entry_id=result.journal_entry_id,
    )


# Journal

@router.get("/journal", response_model=List[JournalEntryResponse])
async def list_journal(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    account: Optional[str] = Query(None, pattern="^(cash|bank|card)$"),
    bank_account_id: Optional[int] = Query(None),
    card_id: Optional[int] = Query(None),
    direction: Optional[Direction] = Query(None),
    source: Optional[str] = Query(None),
    source_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Journal entries, newest first.
    """
    filters = JournalFilters(
        start_date=start,
        end_date=end,
        account_kind=AccountKind(account.upper()) if account else None,
        bank_account_id=bank_account_id,
        card_id=card_id,
        direction=direction,
        source=source,
        source_id=source_id,
    )
    return await TransactionJournal.list_entries(db, filters, limit=limit, offset=offset)


@router.get("/journal/export")
async def export_journal(
    start: date = Query(...),
    end: date = Query(...),
    account: Optional[str] = Query(None, pattern="^(cash|bank|card)$"),
    account_id: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Stream entries for a date range as NDJSON, oldest first.
    """
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
    target = _account_or_400(account, account_id) if account else None

    async def lines():
        # Own session: the stream outlives the request dependencies
        async with session_factory() as db:
            async for entry in TransactionJournal.all_for_date_range(db, start, end, account=target):
                yield json.dumps(JournalEntryResponse.model_validate(entry).model_dump(mode="json")) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@router.get("/journal/daily-summary", response_model=List[DailySummaryResponse])
async def journal_daily_summary(
    start: date = Query(...),
    end: date = Query(...),
    exclude_refunds: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Income / expense / net per day for cash, each bank account and each card.
    """
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
    return await TransactionJournal.daily_summary(db, start, end, exclude_refunds=exclude_refunds)


@router.get("/journal/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: int = Path(..., description="Journal entry ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await TransactionJournal.get(db, entry_id)
    if entry is None:
        raise ResourceNotFoundError("Journal entry", entry_id)
    return entry


# Snapshots

@router.get("/snapshots/opening", response_model=List[OpeningSnapshotResponse])
async def list_opening_snapshots(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await SnapshotService.list_openings(db, start, end)


@router.post("/snapshots/opening", response_model=OpeningSnapshotResponse, status_code=status.HTTP_201_CREATED)
async def create_opening_snapshot(
    request: OpeningSnapshotCreate,
    admin: dict = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Create a day's opening snapshot by hand. 409 if the date already has one.
    """
    balances = BalanceSet(
        request.cash_balance,
        {item.bank_account_id: item.balance for item in request.bank_balances},
        {item.card_id: item.balance for item in request.card_balances},
    )

    async def unit_of_work():
        async with atomic_unit(session_factory) as unit:
            actor = await resolve_actor(unit.session, admin["user_id"])
            row = await SnapshotService.create_opening(unit.session, request.date, balances, request.notes, actor)
            await log_event(
                unit.session,
                action=AuditAction.OPENING_SNAPSHOT_CREATED,
                actor_id=actor.id,
                actor_username=actor.display_name,
                target_type="opening_snapshot",
                target_id=row.id,
                metadata={"date": request.date.isoformat(), "cash": str(balances.cash)},
            )
            return row

    return await run_with_transient_retry(unit_of_work)


@router.get("/snapshots/opening/{snapshot_date}", response_model=OpeningSnapshotResponse)
async def get_opening_snapshot(
    snapshot_date: date,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    row = await SnapshotService.get_opening(db, snapshot_date)
    if row is None:
        raise ResourceNotFoundError("Opening snapshot", snapshot_date.isoformat())
    return row


@router.get("/snapshots/closing", response_model=List[ClosingSnapshotResponse])
async def list_closing_snapshots(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await SnapshotService.list_closings(db, start, end)


@router.get("/snapshots/closing/{snapshot_date}", response_model=ClosingSnapshotResponse)
async def get_closing_snapshot(
    snapshot_date: date,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    row = await SnapshotService.get_closing(db, snapshot_date)
    if row is None:
        raise ResourceNotFoundError("Closing snapshot", snapshot_date.isoformat())
    return row


@router.get("/snapshots/reconcile/{snapshot_date}", response_model=ReconciliationResponse)
async def reconcile_snapshot(
    snapshot_date: date,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Check opening + sum(journal changes) == closing for every account on the date.
    """
    report = await SnapshotService.reconcile_day(db, snapshot_date)
    return ReconciliationResponse.model_validate(report)
