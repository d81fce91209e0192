"""
Identity collaborator.

Resolves a caller id to the display name and kind stamped on journal entries
and snapshots.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.ledger.provenance import Actor
from backend.app.models.enums import UserKind
from backend.app.models.user import User

SYSTEM_ACTOR = Actor(id=None, display_name="System Auto", kind=UserKind.SYSTEM)


async def resolve_actor(db: AsyncSession, user_id: int) -> Actor:
    """
    Raises:
        ResourceNotFoundError: If the user does not exist
    """
    user = await db.get(User, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    return Actor(id=user.id, display_name=user.display_name, kind=user.kind)
