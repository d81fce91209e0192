"""
Balance sets and money helpers.

A BalanceSet is the triple stored on opening/closing snapshots: one cash
balance plus ordered bank and card collections.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from backend.app.domain.ledger.account import Account
from backend.app.models.enums import AccountKind

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value: Any) -> Decimal:
    """Quantize to 2 decimal places; floats go through str to avoid binary noise."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class BalanceSet:
    def __init__(
        self,
        cash: Any = ZERO,
        banks: Optional[Dict[int, Any]] = None,
        cards: Optional[Dict[int, Any]] = None,
    ):
        self.cash = money(cash)
        # dicts keep insertion order, which is the stored collection order
        self.banks: Dict[int, Decimal] = {int(k): money(v) for k, v in (banks or {}).items()}
        self.cards: Dict[int, Decimal] = {int(k): money(v) for k, v in (cards or {}).items()}

    @classmethod
    def zero(cls) -> "BalanceSet":
        return cls()

    @classmethod
    def from_snapshot(cls, row) -> "BalanceSet":
        """Read an OpeningSnapshot / ClosingSnapshot row."""
        banks = {item["bank_account_id"]: item["balance"] for item in (row.bank_balances or [])}
        cards = {item["card_id"]: item["balance"] for item in (row.card_balances or [])}
        return cls(row.cash_balance, banks, cards)

    def get(self, account: Account) -> Decimal:
        """Balance for the account; 0 if absent from the collection."""
        if account.kind == AccountKind.CASH:
            return self.cash
        if account.kind == AccountKind.BANK:
            return self.banks.get(account.ref_id, ZERO)
        return self.cards.get(account.ref_id, ZERO)

    def set(self, account: Account, value: Any) -> None:
        if account.kind == AccountKind.CASH:
            self.cash = money(value)
        elif account.kind == AccountKind.BANK:
            self.banks[account.ref_id] = money(value)
        else:
            self.cards[account.ref_id] = money(value)

    def accounts(self) -> List[Account]:
        return (
            [Account.cash()]
            + [Account.bank(bank_id) for bank_id in self.banks]
            + [Account.card(card_id) for card_id in self.cards]
        )

    def without_zero(self) -> "BalanceSet":
        """Copy with zero bank/card balances dropped (cash is always kept)."""
        return BalanceSet(
            self.cash,
            {k: v for k, v in self.banks.items() if v != ZERO},
            {k: v for k, v in self.cards.items() if v != ZERO},
        )

    def copy(self) -> "BalanceSet":
        return BalanceSet(self.cash, dict(self.banks), dict(self.cards))

    def to_columns(self) -> Dict[str, Any]:
        """Snapshot column values; decimals serialized as strings inside JSON."""
        return {
            "cash_balance": self.cash,
            "bank_balances": [
                {"bank_account_id": bank_id, "balance": str(balance)} for bank_id, balance in self.banks.items()
            ],
            "card_balances": [
                {"card_id": card_id, "balance": str(balance)} for card_id, balance in self.cards.items()
            ],
        }

    def __eq__(self, other):
        if not isinstance(other, BalanceSet):
            return NotImplemented
        return self.cash == other.cash and self.banks == other.banks and self.cards == other.cards

    def __repr__(self):
        return f"<BalanceSet(cash={self.cash}, banks={self.banks}, cards={self.cards})>"
