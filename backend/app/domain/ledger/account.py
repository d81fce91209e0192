"""
Account reference.

Tagged identifier for the three kinds of balance the ledger tracks: the cash
drawer, a specific bank account, or a specific card. Raw ids never travel
without their kind.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AccountNotFoundError, InvalidPaymentError
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.enums import AccountKind, PaymentType
from backend.app.models.journal_entry import JournalEntry


@dataclass(frozen=True)
class Account:
    kind: AccountKind
    ref_id: Optional[int] = None

    def __post_init__(self):
        if self.kind == AccountKind.CASH and self.ref_id is not None:
            raise ValueError("Cash account does not take an id")
        if self.kind != AccountKind.CASH and self.ref_id is None:
            raise ValueError(f"{self.kind.value} account requires an id")

    @classmethod
    def cash(cls) -> "Account":
        return cls(AccountKind.CASH)

    @classmethod
    def bank(cls, bank_account_id: int) -> "Account":
        return cls(AccountKind.BANK, int(bank_account_id))

    @classmethod
    def card(cls, card_id: int) -> "Account":
        return cls(AccountKind.CARD, int(card_id))

    @property
    def key(self) -> str:
        """Stable string key: "cash", "bank:<id>" or "card:<id>"."""
        if self.kind == AccountKind.CASH:
            return "cash"
        return f"{self.kind.value.lower()}:{self.ref_id}"

    @property
    def label(self) -> str:
        """Human label used in error messages."""
        if self.kind == AccountKind.CASH:
            return "cash"
        if self.kind == AccountKind.BANK:
            return f"bank account #{self.ref_id}"
        return f"card #{self.ref_id}"

    @property
    def bank_account_id(self) -> Optional[int]:
        return self.ref_id if self.kind == AccountKind.BANK else None

    @property
    def card_id(self) -> Optional[int]:
        return self.ref_id if self.kind == AccountKind.CARD else None

    def column_values(self) -> Dict[str, Any]:
        """Journal entry columns for this account."""
        return {
            "account_kind": self.kind,
            "bank_account_id": self.bank_account_id,
            "card_id": self.card_id,
        }

    def journal_clauses(self) -> List[Any]:
        """WHERE clauses selecting this account's journal entries."""
        clauses = [JournalEntry.account_kind == self.kind]
        if self.kind == AccountKind.BANK:
            clauses.append(JournalEntry.bank_account_id == self.ref_id)
        elif self.kind == AccountKind.CARD:
            clauses.append(JournalEntry.card_id == self.ref_id)
        return clauses

    @classmethod
    def from_entry(cls, entry: JournalEntry) -> "Account":
        if entry.account_kind == AccountKind.BANK:
            return cls.bank(entry.bank_account_id)
        if entry.account_kind == AccountKind.CARD:
            return cls.card(entry.card_id)
        return cls.cash()

    @classmethod
    def parse(cls, kind: str, ref_id: Optional[int] = None) -> "Account":
        """
        Build an account from API input ("cash", "bank", "card").

        Raises:
            ValueError: On an unknown kind or a missing/extra id
        """
        try:
            account_kind = AccountKind(kind.upper())
        except ValueError:
            raise ValueError(f"Unknown account kind '{kind}'")
        return cls(account_kind, ref_id if account_kind != AccountKind.CASH else None)

    @classmethod
    def from_payment(
        cls,
        payment_type: PaymentType,
        bank_account_id: Optional[int] = None,
        card_id: Optional[int] = None,
    ) -> Optional["Account"]:
        """
        Map a payment leg to the account it settles against.

        Credit legs are deferred receivables and map to None.

        Raises:
            InvalidPaymentError: If a bank/card leg has no account id
        """
        if payment_type == PaymentType.CASH:
            return cls.cash()
        if payment_type == PaymentType.BANK_TRANSFER:
            if bank_account_id is None:
                raise InvalidPaymentError("Bank transfer payment requires bank_account_id")
            return cls.bank(bank_account_id)
        if payment_type == PaymentType.CARD:
            if card_id is None:
                raise InvalidPaymentError("Card payment requires card_id")
            return cls.card(card_id)
        return None

    def __str__(self):
        return self.key


async def ensure_account_exists(db: AsyncSession, account: Account) -> None:
    """
    Raises:
        AccountNotFoundError: If the referenced bank account or card does not exist
    """
    if account.kind == AccountKind.BANK:
        found = await db.get(BankAccount, account.ref_id)
    elif account.kind == AccountKind.CARD:
        found = await db.get(Card, account.ref_id)
    else:
        return

    if found is None:
        raise AccountNotFoundError(account.key)
