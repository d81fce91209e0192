"""
Security guards for kind-based access control.
"""

from fastapi import Depends, HTTPException, status
from backend.app.models.enums import UserKind
from backend.app.core.dependencies import get_current_user


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """
    Dependency for admin-only endpoints (manual snapshots, rollover, reconciliation).

    Usage:
        @router.post("/admin/ledger/rollover")
        async def trigger_rollover(admin: dict = Depends(require_admin)):
            ...

    Returns:
        User payload if admin, raises 403 otherwise
    """
    if current_user.get("kind") != UserKind.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user
