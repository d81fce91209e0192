"""
Provenance stamped on every journal entry and snapshot.
"""

from dataclasses import dataclass
from typing import Optional

from backend.app.models.enums import UserKind


@dataclass(frozen=True)
class Actor:
    id: Optional[int]
    display_name: str
    kind: UserKind


@dataclass(frozen=True)
class Provenance:
    """
    Why a balance changed.

    source is a short tag such as "sale", "sale_payment" or "expense_refund";
    source_id is the originating document id, if any.
    """
    description: str
    source: str
    actor: Actor
    source_id: Optional[str] = None
