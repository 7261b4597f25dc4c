# highroller/modules/engine.py
"""Casino engine: turns client messages into game steps and settlements.

One ``ConnectionSession`` per transport connection. ``dispatch`` handles one
message to completion under the session lock, so requests on the same
connection run in arrival order; requests from different connections interleave
and meet only in the ledger.
"""
from __future__ import annotations
import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from highroller.inc.errors import (
    AlreadyAuthenticated,
    AlreadySettled,
    AuthError,
    CasinoError,
    EmptyDeckError,
    InvalidRequest,
    NothingToCollect,
    StoreUnavailable,
)
from highroller.inc.store import AccountStore
from highroller.modules import doubleup
from highroller.modules.accounts import authenticate
from highroller.modules.blackjack import BlackjackHand
from highroller.modules.cards import Card, create_shuffled_deck
from highroller.modules.chat import ChatLog
from highroller.modules.highlow import HighLowStreak, normalize_direction
from highroller.modules.leaderboard import leaderboard_message, top_players
from highroller.modules.ledger import WagerLedger, validate_bet
from highroller.modules.rules import HouseRules
from highroller.modules.session import ConnectionSession, GameSession, Sender
from highroller.modules.slots import slot_payout, spin_reels

log = logging.getLogger("highroller.modules.engine")

Reply = Union[None, Dict[str, Any], List[Dict[str, Any]]]
DeckFactory = Callable[[random.Random], List[Card]]

SERVER_ERROR = {"type": "error", "code": "ServerError", "reason": "server error"}


def announcement(text: str) -> Dict[str, Any]:
    return {"type": "announcement", "text": text}


class CasinoEngine:
    def __init__(
        self,
        store: AccountStore,
        rules: Optional[HouseRules] = None,
        chat: Optional[ChatLog] = None,
        rng: Optional[random.Random] = None,
        deck_factory: DeckFactory = create_shuffled_deck,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.rules = rules or HouseRules()
        self.chat = chat or ChatLog.open(None, self.rules.chat_retention)
        self.rng = rng or random.SystemRandom()
        self.deck_factory = deck_factory
        self.clock = clock
        self.ledger = WagerLedger(store, clock)
        self.sessions: Set[ConnectionSession] = set()
        self._leaderboard_dirty = False
        self._leaderboard_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Callable[[ConnectionSession, Dict[str, Any]], Awaitable[Reply]]] = {
            "login": self.login,
            "spin": self.spin,
            "doubleup": self.doubleup,
            "blackjack_start": self.blackjack_start,
            "blackjack_hit": self.blackjack_hit,
            "blackjack_stand": self.blackjack_stand,
            "highlow_start": self.highlow_start,
            "highlow_guess": self.highlow_guess,
            "highlow_collect": self.highlow_collect,
            "chat_send": self.chat_send,
        }

    # ---------- connection lifecycle ----------
    def connect(self, send: Sender, origin: Optional[str] = None) -> ConnectionSession:
        session = ConnectionSession(send, origin=origin)
        self.sessions.add(session)
        log.debug("[engine] connection %s opened from %s", session.id, origin)
        return session

    async def disconnect(self, session: ConnectionSession) -> None:
        async with session.lock:
            session.closed = True
            self.sessions.discard(session)
            game = session.release()
        if game is not None:
            await self._abandon(game)
        log.debug("[engine] connection %s closed", session.id)

    # ---------- request boundary ----------
    async def dispatch(self, session: ConnectionSession, message: Any) -> None:
        if not isinstance(message, dict):
            await session.send(InvalidRequest("message must be a JSON object").to_message())
            return
        kind = str(message.get("type") or "").strip()
        handler = self._handlers.get(kind)
        if handler is None:
            await session.send(InvalidRequest(f"unknown message type {kind!r}").to_message())
            return

        async with session.lock:
            try:
                reply = await handler(session, message)
            except AuthError as exc:
                reply = {"type": "login_error", "code": exc.code, "reason": exc.reason}
            except EmptyDeckError:
                log.error("[engine] deck exhausted for %s during %s", session.player, kind, exc_info=True)
                await self._forfeit_active(session)
                reply = dict(SERVER_ERROR)
            except StoreUnavailable:
                log.warning("[engine] store unavailable while handling %s for %s", kind, session.player)
                reply = dict(SERVER_ERROR)
            except CasinoError as exc:
                log.debug("[engine] %s refused for %s: %s", kind, session.player, exc.reason)
                reply = exc.to_message()
            except Exception:
                log.exception("[engine] unhandled error in %s", kind)
                reply = dict(SERVER_ERROR)

        if reply is None:
            return
        for msg in reply if isinstance(reply, list) else [reply]:
            await session.send(msg)

    async def _forfeit_active(self, session: ConnectionSession) -> None:
        game = session.release()
        if game is not None:
            await self._abandon(game)

    async def _abandon(self, game: GameSession) -> None:
        """Close the wager of a game its connection let go of.

        A game whose outcome is already decided still pays it; anything else is
        forfeited to the house.
        """
        wager = game.wager
        if game.resolved:
            try:
                balance = await self.ledger.settle(wager, game.payout)
            except AlreadySettled:
                return
            except CasinoError as exc:
                log.warning("[engine] settlement of %s for %s still open: %s", wager.entry_id, wager.name, exc.reason)
                return
            log.info("[engine] %s left after %s resolved, paid %s (balance %s)", wager.name, game.kind, game.payout, balance)
            self.request_leaderboard()
            return
        log.info("[engine] %s left during %s, wager %s forfeited", wager.name, game.kind, wager.amount)
        try:
            await self.ledger.forfeit(wager)
        except CasinoError as exc:
            log.warning("[engine] could not close forfeited entry %s: %s", wager.entry_id, exc.reason)

    # ---------- broadcast ----------
    async def broadcast(self, payload: Dict[str, Any]) -> None:
        for s in list(self.sessions):
            try:
                await s.send(payload)
            except Exception:
                log.debug("[engine] dropping connection %s after failed send", s.id)
                self.sessions.discard(s)

    def request_leaderboard(self) -> None:
        self._leaderboard_dirty = True
        if self._leaderboard_task is None or self._leaderboard_task.done():
            self._leaderboard_task = asyncio.get_running_loop().create_task(self._publish_leaderboard())

    async def _publish_leaderboard(self) -> None:
        # settlements landing during a publish set the flag again
        while self._leaderboard_dirty:
            self._leaderboard_dirty = False
            try:
                rows = await top_players(self.store, self.rules.leaderboard_size)
            except CasinoError as exc:
                log.warning("[engine] leaderboard refresh failed: %s", exc.reason)
                return
            await self.broadcast(leaderboard_message(rows))

    async def drain(self) -> None:
        """Wait for a pending leaderboard publish."""
        task = self._leaderboard_task
        if task is not None:
            await task

    async def leaderboard(self) -> List[Dict[str, Any]]:
        return await top_players(self.store, self.rules.leaderboard_size)

    # ---------- login ----------
    async def login(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        if session.player:
            raise AlreadyAuthenticated()
        secret = msg.get("secret", msg.get("password"))
        result = await authenticate(self.store, self.rules, msg.get("name"), secret, session.origin, self.clock)
        name = result.account.name
        if result.created:
            balance = result.account.chips
            await self.broadcast(announcement(f"✨ New player {name} has arrived!"))
        else:
            granted, balance = await self.ledger.claim_bonus(name, self.rules.daily_bonus, self.rules.bonus_interval)
            if granted:
                await self.broadcast(announcement(f"🎁 {name} collected the daily bonus of {self.rules.daily_bonus} chips!"))
        history = await asyncio.to_thread(self.chat.recent, self.rules.chat_history)
        session.player = name
        log.info("[engine] %s logged in on %s (balance %s)", name, session.id, balance)
        self.request_leaderboard()
        return [
            {"type": "login_ok", "name": name, "balance": balance},
            {"type": "chat_history", "messages": history},
        ]

    # ---------- single-shot games ----------
    async def spin(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        name = session.require_player()
        bet = validate_bet(msg.get("bet"))
        async with self.ledger.single_shot(name, bet, "slot") as shot:
            symbols = spin_reels(self.rng, self.rules)
            win = slot_payout(bet, symbols, self.rules)
            balance = await shot.commit(win)
        self.request_leaderboard()
        return {"type": "spin_result", "symbols": symbols, "win": win, "newBalance": balance}

    async def doubleup(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        name = session.require_player()
        bet = validate_bet(msg.get("bet"))
        async with self.ledger.single_shot(name, bet, "doubleup") as shot:
            player, dealer = doubleup.draw_digits(self.rng)
            outcome, win = doubleup.resolve(bet, player, dealer)
            balance = await shot.commit(win)
        self.request_leaderboard()
        return {
            "type": "doubleup_result",
            "playerDigit": player,
            "dealerDigit": dealer,
            "outcome": outcome,
            "win": win,
            "newBalance": balance,
        }

    # ---------- multi-step games ----------
    def _new_deck(self) -> List[Card]:
        return list(self.deck_factory(self.rng))

    async def _settle_game(self, session: ConnectionSession, game: GameSession, payout: int) -> int:
        # detach before the first await so a duplicate request finds no session
        if session.game is game:
            session.release()
        try:
            balance = await self.ledger.settle(game.wager, payout)
        except AlreadySettled:
            balance = await self.ledger.balance(game.wager.name)
        except CasinoError:
            if not session.closed and session.game is None:
                session.game = game
            else:
                log.warning("[engine] settlement of %s left open for %s", game.wager.entry_id, game.wager.name)
            raise
        self.request_leaderboard()
        return balance

    async def blackjack_start(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        name = session.require_player()
        session.ensure_idle()
        wager = await self.ledger.reserve(name, msg.get("bet"), BlackjackHand.kind)
        try:
            hand = BlackjackHand.deal(wager, self._new_deck())
        except EmptyDeckError:
            await self.ledger.forfeit(wager)
            raise
        session.begin(hand)
        self.request_leaderboard()
        return hand.update_message(wager.balance_after)

    async def blackjack_hit(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        hand = session.active(BlackjackHand)
        if not hand.resolved:
            hand.hit()
            if not hand.resolved:
                return hand.update_message()
        balance = await self._settle_game(session, hand, hand.payout)
        return hand.result_message(balance)

    async def blackjack_stand(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        hand = session.active(BlackjackHand)
        if not hand.resolved:
            hand.stand()
        balance = await self._settle_game(session, hand, hand.payout)
        return hand.result_message(balance)

    async def highlow_start(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        name = session.require_player()
        session.ensure_idle()
        wager = await self.ledger.reserve(name, msg.get("bet"), HighLowStreak.kind)
        try:
            streak = HighLowStreak.start(wager, self._new_deck(), self.rules.highlow_multiplier)
        except EmptyDeckError:
            await self.ledger.forfeit(wager)
            raise
        session.begin(streak)
        self.request_leaderboard()
        return streak.setup_message(wager.balance_after)

    async def highlow_guess(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        streak = session.active(HighLowStreak)
        direction = normalize_direction(msg.get("direction", msg.get("choice")))
        if streak.collecting:
            return await self._collect(session, streak)
        if not streak.lost and streak.guess(direction):
            return streak.guess_message(True)
        balance = await self._settle_game(session, streak, 0)
        reply = streak.guess_message(False)
        reply["newBalance"] = balance
        return reply

    async def highlow_collect(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        streak = session.game
        if not isinstance(streak, HighLowStreak):
            raise NothingToCollect()
        if streak.lost:
            await self._settle_game(session, streak, 0)
            raise NothingToCollect()
        return await self._collect(session, streak)

    async def _collect(self, session: ConnectionSession, streak: HighLowStreak) -> Reply:
        amount = streak.cash_out()
        balance = await self._settle_game(session, streak, amount)
        streak.close()
        return {"type": "hl_result", "collected": amount, "newBalance": balance}

    # ---------- chat ----------
    async def chat_send(self, session: ConnectionSession, msg: Dict[str, Any]) -> Reply:
        name = session.require_player()
        text = str(msg.get("text") or "").strip()
        if not text:
            raise InvalidRequest("empty message")
        text = text[: self.rules.chat_max_length]
        account = await asyncio.to_thread(self.store.get_account, name)
        await asyncio.to_thread(self.chat.append, name, text, self.clock())
        await self.broadcast({
            "type": "chat_broadcast",
            "author": name,
            "text": text,
            "isDebtor": bool(account is not None and account.is_debtor),
        })
        return None

    async def close(self) -> None:
        for session in list(self.sessions):
            await self.disconnect(session)
        await self.drain()
        self.chat.close()
