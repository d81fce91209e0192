"""
Audit logging service for ledger administration and business documents.

Audit rows are written inside the caller's unit of work (flush only) so an
action and its audit record commit or roll back together.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Ledger administration
    OPENING_SNAPSHOT_CREATED = "OPENING_SNAPSHOT_CREATED"
    OPENING_BALANCE_ADDED = "OPENING_BALANCE_ADDED"
    ROLLOVER_TRIGGERED = "ROLLOVER_TRIGGERED"
    DAILY_BALANCES_CONFIRMED = "DAILY_BALANCES_CONFIRMED"

    # Bank accounts and cards
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"

    # Business documents
    SALE_CREATED = "SALE_CREATED"
    SALE_CANCELLED = "SALE_CANCELLED"
    PURCHASE_CREATED = "PURCHASE_CREATED"
    PURCHASE_CANCELLED = "PURCHASE_CANCELLED"
    EXPENSE_CREATED = "EXPENSE_CREATED"
    EXPENSE_DELETED = "EXPENSE_DELETED"
    DOCUMENT_PAYMENT_ADDED = "DOCUMENT_PAYMENT_ADDED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Record an audit event.

    Args:
        db: Session of the caller's unit of work (flushed, not committed)
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for the system)
        actor_username: Display name of actor
        target_type: Kind of affected document, e.g. "sale"
        target_id: ID of the affected document
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, newest first.
    """
    query = select(AuditLog)

    if action:
        query = query.where(AuditLog.action == action)
    if target_type:
        query = query.where(AuditLog.target_type == target_type)

    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
