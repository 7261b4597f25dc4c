# highroller/inc/errors.py
"""Error taxonomy shared by the ledger, the games and the request boundary.

Every error carries a stable ``code`` (the class name) and a human readable
``reason``. The engine turns them into ``error`` replies for the connection
that sent the request.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class CasinoError(Exception):
    reason = "request failed"

    def __init__(self, reason: Optional[str] = None, **details: Any):
        super().__init__(reason or self.reason)
        self.reason = reason or self.reason
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_message(self) -> Dict[str, Any]:
        msg = {"type": "error", "code": self.code, "reason": self.reason}
        msg.update(self.details)
        return msg


class InvalidRequest(CasinoError):
    reason = "invalid request"


class InvalidBet(CasinoError):
    reason = "bet must be a positive whole number"


class InsufficientFunds(CasinoError):
    reason = "insufficient balance"


class NotAuthenticated(CasinoError):
    reason = "login required"


class AuthError(CasinoError):
    reason = "login failed"


class InvalidCredentials(AuthError):
    reason = "wrong password"


class AlreadyAuthenticated(AuthError):
    reason = "already logged in on this connection"


class OriginTaken(AuthError):
    reason = "an account was already registered from this address"


class NoActiveSession(CasinoError):
    reason = "no active game"


class GameInProgress(CasinoError):
    reason = "finish the current game first"


class NothingToCollect(CasinoError):
    reason = "nothing to collect yet"


class AlreadySettled(CasinoError):
    reason = "wager already settled"


class UnknownAccount(CasinoError):
    reason = "account not found"


class EmptyDeckError(CasinoError):
    reason = "deck exhausted"


class StoreUnavailable(CasinoError):
    reason = "server error"
