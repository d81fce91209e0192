"""
Bank account, card and daily confirmation schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.enums import UserKind


class BankAccountCreate(BaseModel):
    account_name: str = Field(..., min_length=1, max_length=200)
    account_number: str = Field(..., min_length=1, max_length=100)
    bank_name: str = Field(..., min_length=1, max_length=200)
    ifsc_code: Optional[str] = Field(None, max_length=20)
    account_holder: Optional[str] = Field(None, max_length=200)
    branch_name: Optional[str] = Field(None, max_length=200)
    is_default: bool = False
    is_active: bool = True


class BankAccountUpdate(BaseModel):
    """Partial update; only fields present in the body change. Required columns reject null."""
    account_name: str = Field(None, min_length=1, max_length=200)
    account_number: str = Field(None, min_length=1, max_length=100)
    bank_name: str = Field(None, min_length=1, max_length=200)
    ifsc_code: Optional[str] = Field(None, max_length=20)
    account_holder: Optional[str] = Field(None, max_length=200)
    branch_name: Optional[str] = Field(None, max_length=200)
    is_default: bool = None
    is_active: bool = None


class BankAccountResponse(BaseModel):
    id: int
    account_name: str
    account_number: str
    bank_name: str
    ifsc_code: Optional[str]
    account_holder: Optional[str]
    branch_name: Optional[str]
    is_default: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    card_number: Optional[str] = Field(None, max_length=50)
    bank_name: Optional[str] = Field(None, max_length=200)
    is_default: bool = False
    is_active: bool = True


class CardUpdate(BaseModel):
    name: str = Field(None, min_length=1, max_length=200)
    card_number: Optional[str] = Field(None, max_length=50)
    bank_name: Optional[str] = Field(None, max_length=200)
    is_default: bool = None
    is_active: bool = None


class CardResponse(BaseModel):
    id: int
    name: str
    card_number: Optional[str]
    bank_name: Optional[str]
    is_default: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Daily confirmation

class ConfirmedBankBalance(BaseModel):
    bank_account_id: int
    bank_name: str
    account_number: str
    balance: Decimal


class ConfirmedCardBalance(BaseModel):
    card_id: int
    name: str
    balance: Decimal


class DailyConfirmationResponse(BaseModel):
    date: date
    needs_confirmation: bool
    confirmed: bool
    previous_date: date
    previous_closing_frozen: bool
    previous_cash_balance: Decimal
    bank_balances: List[ConfirmedBankBalance]
    card_balances: List[ConfirmedCardBalance]
    confirmed_by_name: Optional[str] = None
    confirmed_by_kind: Optional[UserKind] = None
    confirmed_at: Optional[datetime] = None
