"""
Card database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Card(Base):
    """A card terminal / card account whose settled balance is tracked by the ledger."""
    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    card_number = Column(String(50), nullable=True)
    bank_name = Column(String(200), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Card(id={self.id}, name='{self.name}')>"
