# highroller/modules/session.py
"""Per-connection state: the bound identity and at most one active game."""
from __future__ import annotations
import asyncio
import secrets
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar, Union

from highroller.inc.errors import GameInProgress, NoActiveSession, NotAuthenticated
from highroller.modules.blackjack import BlackjackHand
from highroller.modules.highlow import HighLowStreak

GameSession = Union[BlackjackHand, HighLowStreak]
Sender = Callable[[Dict[str, Any]], Awaitable[None]]

G = TypeVar("G", BlackjackHand, HighLowStreak)


class ConnectionSession:
    def __init__(self, send: Sender, origin: Optional[str] = None):
        self.id = secrets.token_urlsafe(8)
        self.origin = origin
        self.player: Optional[str] = None
        self.game: Optional[GameSession] = None
        self.lock = asyncio.Lock()
        self.closed = False
        self._send = send
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.id} player={self.player!r}>"

    async def send(self, payload: Dict[str, Any]) -> None:
        # replies and broadcasts come from different tasks
        async with self._send_lock:
            await self._send(payload)

    def require_player(self) -> str:
        if not self.player:
            raise NotAuthenticated()
        return self.player

    def begin(self, game: GameSession) -> None:
        if self.game is not None:
            raise GameInProgress()
        self.game = game

    def ensure_idle(self) -> None:
        if self.game is not None:
            raise GameInProgress(game=self.game.kind)

    def active(self, kind: Type[G]) -> G:
        game = self.game
        if not isinstance(game, kind):
            raise NoActiveSession()
        return game

    def release(self) -> Optional[GameSession]:
        game, self.game = self.game, None
        return game
