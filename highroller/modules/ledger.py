# highroller/modules/ledger.py
"""Wager ledger: the only code path that moves chips.

A multi-step game reserves its wager up front (debit + open ledger entry) and
later settles it exactly once. Single-shot games debit and credit in one write
while holding the account's in-process lock, so the balance they checked
before drawing is still the balance they spend.
"""
from __future__ import annotations
import asyncio
import secrets
import time
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Tuple

from highroller.inc.errors import AlreadySettled, InsufficientFunds, InvalidBet, UnknownAccount
from highroller.inc.logging import ledger_logger as log
from highroller.inc.store import AccountStore


async def _run_blocking(func, *args):
    return await asyncio.to_thread(func, *args)


def _new_id() -> str:
    return secrets.token_urlsafe(10)


# stake * 50 must still fit a SQLite INTEGER
MAX_BET = 10 ** 12


def validate_bet(value) -> int:
    """Accept whole numbers from 1 to MAX_BET (bools and floats such as 1.5 are refused)."""
    if isinstance(value, bool):
        raise InvalidBet()
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise InvalidBet()
    if value > MAX_BET:
        raise InvalidBet(f"bet may not exceed {MAX_BET}")
    return value


@dataclass
class ReservedWager:
    entry_id: str
    name: str
    kind: str
    amount: int
    balance_after: int
    settled: bool = False


class WagerLedger:
    def __init__(self, store: AccountStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock
        # a lock lives only while some request holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Serialize every balance change of one account inside this process."""
        async with self._lock_for(name):
            yield

    async def balance(self, name: str) -> int:
        account = await _run_blocking(self._store.get_account, name)
        if account is None:
            raise UnknownAccount()
        return account.chips

    async def reserve(self, name: str, amount, kind: str) -> ReservedWager:
        amount = validate_bet(amount)
        entry_id = _new_id()
        async with self.hold(name):
            try:
                balance = await _run_blocking(self._store.reserve, name, entry_id, kind, amount, self._clock())
            except InsufficientFunds:
                log.debug("[ledger] %s: %s wager of %s refused, insufficient funds", name, kind, amount)
                raise
        log.info("[ledger] %s: reserved %s for %s (entry %s, balance %s)", name, amount, kind, entry_id, balance)
        return ReservedWager(entry_id=entry_id, name=name, kind=kind, amount=amount, balance_after=balance)

    async def settle(self, wager: ReservedWager, payout: int) -> int:
        if wager.settled:
            raise AlreadySettled()
        payout = max(0, int(payout))
        async with self.hold(wager.name):
            try:
                _name, balance = await _run_blocking(self._store.settle, wager.entry_id, payout, self._clock())
            except AlreadySettled:
                wager.settled = True
                raise
        wager.settled = True
        log.info(
            "[ledger] %s: settled %s entry %s stake=%s payout=%s balance=%s",
            wager.name, wager.kind, wager.entry_id, wager.amount, payout, balance,
        )
        return balance

    async def forfeit(self, wager: ReservedWager) -> None:
        if wager.settled:
            return
        async with self.hold(wager.name):
            try:
                await _run_blocking(self._store.forfeit, wager.entry_id, self._clock())
            except AlreadySettled:
                pass
        wager.settled = True
        log.info("[ledger] %s: forfeited %s entry %s stake=%s", wager.name, wager.kind, wager.entry_id, wager.amount)

    @asynccontextmanager
    async def single_shot(self, name: str, amount, kind: str) -> AsyncIterator["SingleShot"]:
        """
        Hold the account, confirm the stake is covered, and let the caller draw
        an outcome before ``SingleShot.commit`` writes stake and payout together.
        """
        amount = validate_bet(amount)
        async with self.hold(name):
            account = await _run_blocking(self._store.get_account, name)
            if account is None:
                raise UnknownAccount()
            if account.chips < amount:
                log.debug("[ledger] %s: %s of %s refused, balance %s", name, kind, amount, account.chips)
                raise InsufficientFunds(balance=account.chips, required=amount)
            yield SingleShot(self, name, kind, amount, account.chips)

    async def _play(self, shot: "SingleShot", payout: int) -> int:
        entry_id = _new_id()
        balance = await _run_blocking(
            self._store.play, shot.name, entry_id, shot.kind, shot.amount, max(0, int(payout)), self._clock()
        )
        log.info(
            "[ledger] %s: %s entry %s stake=%s payout=%s balance=%s",
            shot.name, shot.kind, entry_id, shot.amount, payout, balance,
        )
        return balance

    async def claim_bonus(self, name: str, amount: int, interval: float) -> Tuple[bool, int]:
        if amount <= 0:
            return False, await self.balance(name)
        async with self.hold(name):
            granted, balance = await _run_blocking(
                self._store.claim_bonus, name, _new_id(), int(amount), float(interval), self._clock()
            )
        if granted:
            log.info("[ledger] %s: daily bonus %s (balance %s)", name, amount, balance)
        return granted, balance


class SingleShot:
    def __init__(self, ledger: WagerLedger, name: str, kind: str, amount: int, balance_before: int):
        self.name = name
        self.kind = kind
        self.amount = amount
        self.balance_before = balance_before
        self._ledger = ledger
        self.new_balance: Optional[int] = None

    async def commit(self, payout: int) -> int:
        if self.new_balance is not None:
            raise AlreadySettled()
        self.new_balance = await self._ledger._play(self, payout)
        return self.new_balance
