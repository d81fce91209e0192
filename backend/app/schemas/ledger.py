"""
Ledger Schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from backend.app.models.enums import AccountKind, Direction, UserKind


class BankBalance(BaseModel):
    bank_account_id: int
    balance: Decimal


class CardBalance(BaseModel):
    card_id: int
    balance: Decimal


class BalanceSetSchema(BaseModel):
    """Cash plus ordered bank and card balances."""
    cash_balance: Decimal = Field(default=Decimal("0"), ge=0)
    bank_balances: List[BankBalance] = Field(default_factory=list)
    card_balances: List[CardBalance] = Field(default_factory=list)


class ResolvedBalanceResponse(BaseModel):
    date: date
    account: str
    balance: Decimal


class BalanceOverviewResponse(BalanceSetSchema):
    date: date


class AddOpeningBalanceRequest(BaseModel):
    """Manual opening balance correction, recorded as an income mutation."""
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    account: str = Field(default="cash", pattern="^(cash|bank|card)$")
    account_id: Optional[int] = None
    day: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=500)


class MutationResponse(BaseModel):
    before_balance: Decimal
    after_balance: Decimal
    change_amount: Decimal
    journal_entry_id: int


class JournalEntryResponse(BaseModel):
    id: int
    entry_date: date
    account_kind: AccountKind
    bank_account_id: Optional[int]
    card_id: Optional[int]
    direction: Direction
    amount: Decimal
    before_balance: Decimal
    after_balance: Decimal
    change_amount: Decimal
    description: Optional[str]
    source: str
    source_id: Optional[str]
    actor_id: Optional[int]
    actor_name: Optional[str]
    actor_kind: UserKind
    created_at: datetime

    class Config:
        from_attributes = True


class DayTotals(BaseModel):
    income: Decimal
    expense: Decimal
    net: Decimal


class DailySummaryResponse(BaseModel):
    date: date
    cash: DayTotals
    banks: Dict[int, DayTotals]
    cards: Dict[int, DayTotals]
    totals: DayTotals
    entry_count: int


class OpeningSnapshotCreate(BalanceSetSchema):
    date: date
    notes: Optional[str] = Field(default=None, max_length=1000)


class OpeningSnapshotResponse(BaseModel):
    id: int
    snapshot_date: date
    cash_balance: Decimal
    bank_balances: List[BankBalance]
    card_balances: List[CardBalance]
    notes: Optional[str]
    created_by_id: Optional[int]
    created_by_name: Optional[str]
    created_by_kind: UserKind
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ClosingSnapshotResponse(BaseModel):
    id: int
    snapshot_date: date
    cash_balance: Decimal
    bank_balances: List[BankBalance]
    card_balances: List[CardBalance]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReconciliationLineResponse(BaseModel):
    account: str
    opening: Decimal
    change_total: Decimal
    expected: Decimal
    closing: Decimal
    matches: bool

    class Config:
        from_attributes = True


class ReconciliationResponse(BaseModel):
    day: date
    closing_frozen: bool
    balanced: bool
    lines: List[ReconciliationLineResponse]

    class Config:
        from_attributes = True


class RolloverRequest(BaseModel):
    reference_date: Optional[date] = None


class BackfillRequest(BaseModel):
    start: date
    end: date


class PhaseOutcomeResponse(BaseModel):
    snapshot_date: date
    status: str
    error: Optional[str]
    backfilled: List[date]

    class Config:
        from_attributes = True


class RolloverReportResponse(BaseModel):
    reference_date: date
    closing: PhaseOutcomeResponse
    opening: PhaseOutcomeResponse
    degraded: bool
    ok: bool
    started_at: Optional[str]
    finished_at: Optional[str]

    class Config:
        from_attributes = True
