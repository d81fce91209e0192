"""
Bank account database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class BankAccount(Base):
    """A venue bank account whose balance is tracked by the ledger."""
    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_name = Column(String(200), nullable=False)
    account_number = Column(String(100), nullable=False)
    bank_name = Column(String(200), nullable=False)
    ifsc_code = Column(String(20), nullable=True)
    account_holder = Column(String(200), nullable=True)
    branch_name = Column(String(200), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<BankAccount(id={self.id}, bank='{self.bank_name}', number='{self.account_number}')>"
