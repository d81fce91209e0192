"""
Sale / Purchase / Expense Schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.enums import DocumentStatus, PaymentType


class PaymentIn(BaseModel):
    """One payment leg; bank_transfer needs bank_account_id, card needs card_id."""
    type: PaymentType
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    bank_account_id: Optional[int] = None
    card_id: Optional[int] = None


class PaymentOut(BaseModel):
    type: PaymentType
    amount: Decimal
    bank_account_id: Optional[int] = None
    card_id: Optional[int] = None
    paid_at: Optional[str] = None


class SaleCreate(BaseModel):
    bill_number: Optional[str] = Field(default=None, max_length=50)
    customer_name: Optional[str] = Field(default=None, max_length=200)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    sale_date: Optional[date] = None
    total: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payments: List[PaymentIn] = Field(default_factory=list)


class SaleResponse(BaseModel):
    id: int
    bill_number: str
    customer_name: Optional[str]
    customer_phone: Optional[str]
    sale_date: date
    total: Decimal
    payments: List[PaymentOut]
    remaining_balance: Decimal
    status: DocumentStatus
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class PurchaseCreate(BaseModel):
    supplier_name: str = Field(..., min_length=1, max_length=200)
    supplier_phone: Optional[str] = Field(default=None, max_length=50)
    purchase_date: Optional[date] = None
    total: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payments: List[PaymentIn] = Field(default_factory=list)


class PurchaseResponse(BaseModel):
    id: int
    supplier_name: str
    supplier_phone: Optional[str]
    purchase_date: date
    total: Decimal
    payments: List[PaymentOut]
    remaining_balance: Decimal
    status: DocumentStatus
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ExpenseCreate(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    expense_date: Optional[date] = None
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    payment_type: PaymentType = PaymentType.CASH
    bank_account_id: Optional[int] = None
    card_id: Optional[int] = None


class ExpenseResponse(BaseModel):
    id: int
    category: str
    description: Optional[str]
    expense_date: date
    amount: Decimal
    payment_type: PaymentType
    bank_account_id: Optional[int]
    card_id: Optional[int]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
