from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple


@dataclass
class Account:
    """
    Durable player record.

    ``chips`` is the liquid balance and never goes below zero. ``bank`` is the
    auxiliary loan balance. The server has no loan game, so only an operator
    editing the accounts table moves it; a negative value marks the player as a
    debtor in chat.
    """

    name: str
    secret: str
    chips: int
    bank: int = 0
    origin: Optional[str] = None
    created_at: float = 0.0
    last_active: float = 0.0
    last_bonus: float = 0.0

    @property
    def is_debtor(self) -> bool:
        return self.bank < 0


@dataclass
class LedgerEntry:
    """One wager (or bonus) and its settlement state."""

    entry_id: str
    name: str
    kind: str
    stake: int
    payout: int
    status: str
    created_at: float = 0.0
    settled_at: Optional[float] = None


class AccountStore(Protocol):
    """
    Persistence abstraction for accounts and the wager ledger.

    Every mutating method is a single transaction: it either applies fully or
    leaves no trace. Implementations raise ``StoreUnavailable`` when the backing
    store cannot be reached.
    """

    def get_account(self, name: str) -> Optional[Account]:
        ...

    def find_account_by_origin(self, origin: str) -> Optional[Account]:
        ...

    def create_account(self, account: Account) -> bool:
        """Insert a new account; return False if the name is already taken."""

        ...

    def touch(self, name: str, now: float) -> None:
        ...

    def top_accounts(self, limit: int) -> List[Account]:
        """Accounts ordered by chips descending, then name."""

        ...

    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        ...

    def reserve(self, name: str, entry_id: str, kind: str, stake: int, now: float) -> int:
        """
        Debit ``stake`` if the balance covers it and open a ``reserved`` entry.

        Raises ``InsufficientFunds`` or ``UnknownAccount``. Returns the new balance.
        """

        ...

    def settle(self, entry_id: str, payout: int, now: float) -> Tuple[str, int]:
        """
        Close a ``reserved`` entry and credit ``payout``.

        Raises ``AlreadySettled`` if the entry is not open. Returns (name, balance).
        """

        ...

    def forfeit(self, entry_id: str, now: float) -> None:
        """Close a ``reserved`` entry without any credit."""

        ...

    def play(self, name: str, entry_id: str, kind: str, stake: int, payout: int, now: float) -> int:
        """Debit ``stake`` and credit ``payout`` in one write, recording a settled entry."""

        ...

    def claim_bonus(self, name: str, entry_id: str, amount: int, interval: float, now: float) -> Tuple[bool, int]:
        """Credit ``amount`` if ``interval`` has passed since the last bonus."""

        ...
