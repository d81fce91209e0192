"""
Business document database models (Sale, Purchase, Expense).

Each document owns its payment legs as JSON:
[{"type": "cash|bank_transfer|card|credit", "amount": "decimal-string",
  "bank_account_id": int|None, "card_id": int|None, "paid_at": iso-string}]
"""

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import DocumentStatus, PaymentType


class Sale(Base):
    """Sale to a customer; payment legs are income."""
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    bill_number = Column(String(50), nullable=False, unique=True, index=True)
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    sale_date = Column(Date, nullable=False, index=True)
    total = Column(Numeric(14, 2), nullable=False)
    payments = Column(JSON, nullable=False, default=list)
    remaining_balance = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False, index=True)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Sale(id={self.id}, bill='{self.bill_number}', total={self.total}, status='{self.status.value}')>"


class Purchase(Base):
    """Purchase from a supplier; payment legs are expenses."""
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    supplier_name = Column(String(200), nullable=False)
    supplier_phone = Column(String(50), nullable=True)

    purchase_date = Column(Date, nullable=False, index=True)
    total = Column(Numeric(14, 2), nullable=False)
    payments = Column(JSON, nullable=False, default=list)
    remaining_balance = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False, index=True)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Purchase(id={self.id}, supplier='{self.supplier_name}', total={self.total}, status='{self.status.value}')>"


class Expense(Base):
    """Single-leg operating expense paid from cash, a bank account or a card."""
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    expense_date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_type = Column(Enum(PaymentType), nullable=False)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id'), nullable=True)
    card_id = Column(Integer, ForeignKey('cards.id'), nullable=True)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Expense(id={self.id}, category='{self.category}', amount={self.amount})>"
