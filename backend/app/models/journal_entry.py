"""
Journal Entry database model.

Append-only record of every balance-affecting event.
"""

from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text
)
from backend.app.db.session import Base
from backend.app.models.enums import AccountKind, Direction, UserKind


class JournalEntry(Base):
    """
    Journal Entry model.

    Immutable: after_balance = before_balance + change_amount and
    after_balance >= 0. NO updates or deletions; corrections are new entries
    (e.g. a refund entry).

    The account is a tagged reference: account_kind plus exactly one of
    bank_account_id / card_id (both NULL for cash).
    """
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Calendar day in the business timezone
    entry_date = Column(Date, nullable=False, index=True)

    # Account reference
    account_kind = Column(Enum(AccountKind), nullable=False)
    bank_account_id = Column(Integer, ForeignKey('bank_accounts.id'), nullable=True, index=True)
    card_id = Column(Integer, ForeignKey('cards.id'), nullable=True, index=True)

    # Financials
    direction = Column(Enum(Direction), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    before_balance = Column(Numeric(14, 2), nullable=False)
    after_balance = Column(Numeric(14, 2), nullable=False)
    change_amount = Column(Numeric(14, 2), nullable=False)

    # Provenance
    description = Column(Text, nullable=True)
    source = Column(String(50), nullable=False, index=True)
    source_id = Column(String(64), nullable=True, index=True)
    actor_id = Column(Integer, nullable=True)
    actor_name = Column(String(200), nullable=True)
    actor_kind = Column(Enum(UserKind), nullable=False)

    # Wall-clock time of the write, set from the business calendar
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_journal_amount_non_negative'),
        CheckConstraint('after_balance >= 0', name='ck_journal_after_non_negative'),
        CheckConstraint(
            "(account_kind = 'CASH' AND bank_account_id IS NULL AND card_id IS NULL)"
            " OR (account_kind = 'BANK' AND bank_account_id IS NOT NULL AND card_id IS NULL)"
            " OR (account_kind = 'CARD' AND card_id IS NOT NULL AND bank_account_id IS NULL)",
            name='ck_journal_account_reference'
        ),
        Index('ix_journal_account_day', 'entry_date', 'account_kind', 'bank_account_id', 'card_id', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<JournalEntry(id={self.id}, date={self.entry_date}, account='{self.account_kind.value}', "
            f"change={self.change_amount}, after={self.after_balance})>"
        )
