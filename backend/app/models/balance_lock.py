"""
Balance Lock database model.

Serializes mutations per (account, date) through a row that is created once
and then locked with SELECT ... FOR UPDATE. Rows keyed "day" fence a whole
date: shared by its mutations, exclusive while its closing is frozen.
"""

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base


class BalanceLock(Base):
    """
    Balance Lock model.

    One row per (account_key, lock_date). Rows are never deleted; holding
    the row lock for the duration of the atomic unit is what serializes
    concurrent read-modify-append sequences.
    """
    __tablename__ = "balance_locks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_key = Column(String(64), nullable=False)
    lock_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('account_key', 'lock_date', name='uq_balance_locks_account_date'),
    )

    def __repr__(self):
        return f"<BalanceLock(account='{self.account_key}', date={self.lock_date})>"
