"""
Opening and Closing Snapshot database models.

One row per calendar date each; the unique date column is the idempotency
key for lazy creation and for the rollover job.
"""

from sqlalchemy import Column, Date, DateTime, Enum, Integer, JSON, Numeric, String, Text
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserKind


class OpeningSnapshot(Base):
    """
    Baseline balances for a day.

    Never updated by same-day mutations; the running balance lives in the
    journal. bank_balances / card_balances are ordered lists of
    {"bank_account_id": int, "balance": "decimal-string"} and
    {"card_id": int, "balance": "decimal-string"}.
    """
    __tablename__ = "opening_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    snapshot_date = Column(Date, nullable=False, unique=True, index=True)

    cash_balance = Column(Numeric(14, 2), nullable=False, default=0)
    bank_balances = Column(JSON, nullable=False, default=list)
    card_balances = Column(JSON, nullable=False, default=list)

    notes = Column(Text, nullable=True)

    # Provenance
    created_by_id = Column(Integer, nullable=True)
    created_by_name = Column(String(200), nullable=True)
    created_by_kind = Column(Enum(UserKind), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<OpeningSnapshot(date={self.snapshot_date}, cash={self.cash_balance})>"


class ClosingSnapshot(Base):
    """
    Frozen final balances for a day.

    Once frozen it is never silently recomputed; manual reconciliation
    survives re-runs of the rollover job.
    """
    __tablename__ = "closing_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    snapshot_date = Column(Date, nullable=False, unique=True, index=True)

    cash_balance = Column(Numeric(14, 2), nullable=False, default=0)
    bank_balances = Column(JSON, nullable=False, default=list)
    card_balances = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ClosingSnapshot(date={self.snapshot_date}, cash={self.cash_balance})>"
