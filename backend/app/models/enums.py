"""
Ledger and identity enumerations.
"""

import enum


class UserKind(str, enum.Enum):
    """
    Kind of caller stamped on journal entries and snapshots.

    Kinds:
        USER: Regular staff member (cashier, manager)
        ADMIN: Administrator; may create snapshots and trigger rollover
        SYSTEM: The rollover job and other automated writers
    """
    USER = "USER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class AccountKind(str, enum.Enum):
    CASH = "CASH"
    BANK = "BANK"
    CARD = "CARD"


class Direction(str, enum.Enum):
    """Income adds to the account balance, expense subtracts from it."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    @property
    def reversed(self) -> "Direction":
        return Direction.EXPENSE if self is Direction.INCOME else Direction.INCOME


class PaymentType(str, enum.Enum):
    """Payment leg type; CREDIT legs are deferred receivables and never touch the ledger."""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CREDIT = "credit"


class DocumentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
