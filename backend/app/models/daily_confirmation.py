"""
Daily confirmation database model.

One row per business date, written when a user confirms the carried-forward
balances before starting the day's work.
"""

from sqlalchemy import Boolean, Column, Date, DateTime, Enum, Integer, String
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserKind


class DailyConfirmation(Base):
    __tablename__ = "daily_confirmations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    confirmation_date = Column(Date, nullable=False, unique=True, index=True)
    confirmed = Column(Boolean, default=True, nullable=False)

    # First confirmer wins; later confirmations of the same day are no-ops
    confirmed_by_id = Column(Integer, nullable=True)
    confirmed_by_name = Column(String(200), nullable=True)
    confirmed_by_kind = Column(Enum(UserKind), nullable=False)

    confirmed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DailyConfirmation(date={self.confirmation_date}, by='{self.confirmed_by_name}')>"
