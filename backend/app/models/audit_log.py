"""
Audit Log Database Model.

Tracks ledger administration and business document actions.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for ledger administration.

    Events logged:
    - OPENING_SNAPSHOT_CREATED / OPENING_BALANCE_ADDED
    - ROLLOVER_TRIGGERED
    - SALE_CREATED / SALE_CANCELLED, PURCHASE_CREATED / PURCHASE_CANCELLED
    - EXPENSE_CREATED / EXPENSE_DELETED
    - DOCUMENT_PAYMENT_ADDED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Affected document, when there is one
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(64), nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, target={self.target_type}:{self.target_id})>"
