import asyncio
import unittest

from highroller.inc.errors import StoreUnavailable
from highroller.inc.store import Account
from highroller.modules.chat import ChatLog
from highroller.modules.engine import CasinoEngine
from highroller.modules.rules import HouseRules
from tests.support import DeckScript, Outbox, ScriptedRandom, TempDatabase, cards, stacked_deck

DAY = 86400


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FlakyStore:
    """Wraps a Database; chosen write operations fail while switched on."""

    def __init__(self, db):
        self._db = db
        self.failing = set()

    def __getattr__(self, name):
        attr = getattr(self._db, name)
        if name in self.failing:
            def fail(*args, **kwargs):
                raise StoreUnavailable()
            return fail
        return attr


class EngineTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = TempDatabase()
        self.store = FlakyStore(self.tmp.db)
        self.rules = HouseRules()
        self.rng = ScriptedRandom()
        self.decks = DeckScript()
        self.clock = Clock()
        self.engine = CasinoEngine(self.store, self.rules, rng=self.rng, deck_factory=self.decks, clock=self.clock)

    async def asyncTearDown(self):
        await self.engine.close()
        self.tmp.cleanup()

    def connect(self, origin="10.0.0.1"):
        out = Outbox()
        return self.engine.connect(out, origin), out

    async def send(self, session, out, **message):
        out.clear()
        await self.engine.dispatch(session, message)
        return out.messages

    async def login(self, name="alice", secret="pw", origin="10.0.0.1"):
        session, out = self.connect(origin)
        await self.send(session, out, type="login", name=name, secret=secret)
        await self.engine.drain()
        return session, out

    async def balance(self, name="alice"):
        return await self.engine.ledger.balance(name)


class EndToEndTests(EngineTestCase):
    async def test_login_spin_blackjack_scenario(self):
        session, out = self.connect()
        replies = await self.send(session, out, type="login", name="alice", secret="pw")
        login_ok = [m for m in replies if m["type"] == "login_ok"][0]
        self.assertEqual(login_ok, {"type": "login_ok", "name": "alice", "balance": 1000})

        self.rng.floats = [0.99]
        self.rng.choices = ["7️⃣", "💎", "🍒"]
        replies = await self.send(session, out, type="spin", bet=100)
        self.assertEqual(replies[-1], {
            "type": "spin_result", "symbols": ["7️⃣", "💎", "🍒"], "win": 0, "newBalance": 900,
        })

        self.decks.decks.append(cards("10♠ 8♥ 10♦ 6♣ K♠"))
        replies = await self.send(session, out, type="blackjack_start", bet=200)
        update = replies[-1]
        self.assertEqual(update["type"], "bj_update")
        self.assertEqual(update["balance"], 700)
        self.assertEqual(len(update["playerHand"]), 2)
        self.assertEqual(update["dealerUpcard"], {"suit": "♦", "rank": "10"})

        replies = await self.send(session, out, type="blackjack_stand")
        result = replies[-1]
        self.assertEqual(result["type"], "bj_result")
        self.assertEqual(result["outcome"], "WIN")
        self.assertEqual(result["payout"], 400)
        self.assertEqual(result["newBalance"], 1100)
        self.assertEqual(result["dealerTotal"], 26)

        await self.engine.drain()
        self.assertEqual(out.last("leaderboard_update")["leaderboard"], [{"name": "alice", "balance": 1100}])


class LoginTests(EngineTestCase):
    async def test_new_player_is_announced(self):
        watcher, watcher_out = await self.login("bob")
        await self.login("alice")
        texts = [m["text"] for m in watcher_out.of_type("announcement")]
        self.assertTrue(any("alice" in t for t in texts))

    async def test_wrong_secret(self):
        await self.login("alice", "pw")
        session, out = self.connect()
        replies = await self.send(session, out, type="login", name="alice", secret="nope")
        self.assertEqual(replies, [{"type": "login_error", "code": "InvalidCredentials", "reason": "wrong password"}])
        self.assertIsNone(session.player)
        replies = await self.send(session, out, type="spin", bet=10)
        self.assertEqual(replies[-1]["code"], "NotAuthenticated")

    async def test_connection_cannot_switch_identity(self):
        session, out = await self.login("alice")
        replies = await self.send(session, out, type="login", name="mallory", secret="x")
        self.assertEqual(replies[-1]["type"], "login_error")
        self.assertEqual(replies[-1]["code"], "AlreadyAuthenticated")
        self.assertEqual(session.player, "alice")
        self.assertIsNone(self.tmp.db.get_account("mallory"))

    async def test_blank_name_or_secret_refused(self):
        session, out = self.connect()
        replies = await self.send(session, out, type="login", name="  ", secret="pw")
        self.assertEqual(replies[-1]["code"], "InvalidCredentials")
        replies = await self.send(session, out, type="login", name="alice", secret="")
        self.assertEqual(replies[-1]["code"], "InvalidCredentials")

    async def test_daily_bonus_once_per_interval(self):
        session, _ = await self.login("alice")
        await self.engine.disconnect(session)
        session, out = await self.login("alice")
        self.assertEqual(out.last("login_ok")["balance"], 1000)
        await self.engine.disconnect(session)

        watcher, watcher_out = await self.login("bob")
        self.clock.now += DAY
        session, out = await self.login("alice")
        self.assertEqual(out.last("login_ok")["balance"], 1500)
        self.assertTrue(any("daily bonus" in m["text"] for m in watcher_out.of_type("announcement")))

    async def test_one_account_per_origin(self):
        self.rules.one_account_per_origin = True
        await self.login("alice", origin="10.0.0.9")
        session, out = self.connect("10.0.0.9")
        replies = await self.send(session, out, type="login", name="alt", secret="pw")
        self.assertEqual(replies[-1]["code"], "OriginTaken")
        replies = await self.send(session, out, type="login", name="alice", secret="pw")
        self.assertEqual(replies[0]["type"], "login_ok")

    async def test_login_sends_chat_history(self):
        session, out = await self.login("alice")
        await self.send(session, out, type="chat_send", text="first")
        await self.send(session, out, type="chat_send", text="second")
        _, bob_out = await self.login("bob")
        history = bob_out.last("chat_history")["messages"]
        self.assertEqual([m["text"] for m in history], ["first", "second"])


class SingleShotGameTests(EngineTestCase):
    async def test_spin_pays_pair(self):
        session, out = await self.login()
        self.rng.floats = [0.5]
        self.rng.choices = ["🍒", "🍒", "🍋"]
        replies = await self.send(session, out, type="spin", bet=50)
        self.assertEqual(replies[-1]["win"], 100)
        self.assertEqual(replies[-1]["newBalance"], 1050)

    async def test_spin_jackpot(self):
        session, out = await self.login()
        self.rng.floats = [0.0]
        replies = await self.send(session, out, type="spin", bet=10)
        self.assertEqual(replies[-1]["symbols"], ["7️⃣"] * 3)
        self.assertEqual(replies[-1]["newBalance"], 1490)

    async def test_invalid_and_uncovered_bets(self):
        session, out = await self.login()
        for bet in (0, -3, 2.5, "lots", None):
            replies = await self.send(session, out, type="spin", bet=bet)
            self.assertEqual(replies[-1]["code"], "InvalidBet")
        replies = await self.send(session, out, type="spin", bet=1001)
        self.assertEqual(replies[-1]["code"], "InsufficientFunds")
        self.assertEqual(await self.balance(), 1000)

    async def test_doubleup(self):
        session, out = await self.login()
        self.rng.ints = [9, 3]
        replies = await self.send(session, out, type="doubleup", bet=100)
        self.assertEqual(replies[-1], {
            "type": "doubleup_result", "playerDigit": 9, "dealerDigit": 3,
            "outcome": "WIN", "win": 200, "newBalance": 1100,
        })

    async def test_spin_allowed_during_blackjack(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 8♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        self.rng.floats = [0.99]
        self.rng.choices = ["7️⃣", "💎", "🍒"]
        replies = await self.send(session, out, type="spin", bet=100)
        self.assertEqual(replies[-1]["newBalance"], 800)
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["outcome"], "WIN")
        self.assertEqual(replies[-1]["newBalance"], 1000)


class BlackjackFlowTests(EngineTestCase):
    async def test_bust_on_hit_settles_loss(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 6♥ 9♦ 7♣ K♥"))
        await self.send(session, out, type="blackjack_start", bet=100)
        replies = await self.send(session, out, type="blackjack_hit")
        self.assertEqual(replies[-1]["type"], "bj_result")
        self.assertEqual(replies[-1]["outcome"], "LOSE")
        self.assertEqual(replies[-1]["newBalance"], 900)
        self.assertIsNone(session.game)

    async def test_hit_without_bust_reports_hand(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("2♠ 3♥ 9♦ 7♣ 4♥"))
        await self.send(session, out, type="blackjack_start", bet=100)
        replies = await self.send(session, out, type="blackjack_hit")
        self.assertEqual(replies[-1]["type"], "bj_update")
        self.assertEqual(replies[-1]["playerTotal"], 9)
        self.assertEqual(len(replies[-1]["playerHand"]), 3)

    async def test_double_stand_is_refused(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 7♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["outcome"], "PUSH")
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")
        self.assertEqual(await self.balance(), 1000)

    async def test_simultaneous_stands_settle_once(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 9♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        out.clear()
        await asyncio.gather(
            self.engine.dispatch(session, {"type": "blackjack_stand"}),
            self.engine.dispatch(session, {"type": "blackjack_stand"}),
        )
        self.assertEqual(len(out.of_type("bj_result")), 1)
        self.assertEqual([m["code"] for m in out.of_type("error")], ["NoActiveSession"])
        self.assertEqual(await self.balance(), 1100)

    async def test_second_table_game_is_refused(self):
        session, out = await self.login()
        await self.send(session, out, type="blackjack_start", bet=100)
        replies = await self.send(session, out, type="blackjack_start", bet=100)
        self.assertEqual(replies[-1]["code"], "GameInProgress")
        replies = await self.send(session, out, type="highlow_start", bet=100)
        self.assertEqual(replies[-1]["code"], "GameInProgress")
        self.assertEqual(await self.balance(), 900)

    async def test_oversized_bet_is_refused_before_the_deal(self):
        session, out = await self.login()
        for kind in ("blackjack_start", "highlow_start"):
            replies = await self.send(session, out, type=kind, bet=2 ** 63)
            self.assertEqual(replies[-1]["code"], "InvalidBet")
            self.assertIsNone(session.game)
        self.assertEqual(await self.balance(), 1000)

    async def test_start_without_funds(self):
        session, out = await self.login()
        replies = await self.send(session, out, type="blackjack_start", bet=5000)
        self.assertEqual(replies[-1]["code"], "InsufficientFunds")
        self.assertIsNone(session.game)

    async def test_exhausted_deck_forfeits_game(self):
        session, out = await self.login()
        self.decks.decks.append(cards("10♠ 6♥ 9♦"))
        replies = await self.send(session, out, type="blackjack_start", bet=200)
        self.assertEqual(replies[-1]["code"], "ServerError")
        self.assertIsNone(session.game)
        self.assertEqual(await self.balance(), 800)


class HighLowFlowTests(EngineTestCase):
    async def test_collect_then_collect_again(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("5♠ 9♥"))
        replies = await self.send(session, out, type="highlow_start", bet=100)
        self.assertEqual(replies[-1]["type"], "hl_setup")
        self.assertEqual(replies[-1]["balance"], 900)
        replies = await self.send(session, out, type="highlow_guess", direction="high")
        self.assertEqual(replies[-1]["won"], True)
        self.assertEqual(replies[-1]["pending"], 200)
        replies = await self.send(session, out, type="highlow_collect")
        self.assertEqual(replies[-1], {"type": "hl_result", "collected": 200, "newBalance": 1100})
        replies = await self.send(session, out, type="highlow_collect")
        self.assertEqual(replies[-1]["code"], "NothingToCollect")
        self.assertEqual(await self.balance(), 1100)

    async def test_tie_keeps_streak_alive(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("8♠ 8♥"))
        await self.send(session, out, type="highlow_start", bet=100)
        replies = await self.send(session, out, type="highlow_guess", direction="low")
        self.assertTrue(replies[-1]["won"])
        self.assertEqual(replies[-1]["streak"], 1)

    async def test_wrong_guess_ends_streak(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("5♠ 2♥"))
        await self.send(session, out, type="highlow_start", bet=100)
        replies = await self.send(session, out, type="highlow_guess", direction="high")
        self.assertEqual(replies[-1]["won"], False)
        self.assertEqual(replies[-1]["pending"], 0)
        self.assertEqual(replies[-1]["newBalance"], 900)
        replies = await self.send(session, out, type="highlow_guess", direction="high")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")
        replies = await self.send(session, out, type="highlow_collect")
        self.assertEqual(replies[-1]["code"], "NothingToCollect")

    async def test_collect_before_any_guess(self):
        session, out = await self.login()
        await self.send(session, out, type="highlow_start", bet=100)
        replies = await self.send(session, out, type="highlow_collect")
        self.assertEqual(replies[-1]["code"], "NothingToCollect")
        self.assertIsNotNone(session.game)

    async def test_guess_without_streak_reports_no_session_first(self):
        session, out = await self.login()
        replies = await self.send(session, out, type="highlow_guess", direction="sideways")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")
        replies = await self.send(session, out, type="highlow_guess")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")

    async def test_bad_direction(self):
        session, out = await self.login()
        await self.send(session, out, type="highlow_start", bet=100)
        replies = await self.send(session, out, type="highlow_guess", direction="up")
        self.assertEqual(replies[-1]["code"], "InvalidRequest")


class DisconnectTests(EngineTestCase):
    async def test_disconnect_forfeits_active_game(self):
        session, out = await self.login()
        await self.send(session, out, type="blackjack_start", bet=300)
        entry_id = session.game.wager.entry_id
        await self.engine.disconnect(session)
        self.assertNotIn(session, self.engine.sessions)
        self.assertEqual(self.tmp.db.get_entry(entry_id).status, "forfeited")
        self.assertEqual(await self.balance(), 700)

        session, out = await self.login()
        self.assertEqual(out.last("login_ok")["balance"], 700)
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")

    async def test_disconnect_after_lost_streak_keeps_the_stake(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("5♠ 2♥"))
        await self.send(session, out, type="highlow_start", bet=100)
        self.store.failing = {"settle"}
        replies = await self.send(session, out, type="highlow_guess", direction="high")
        self.assertEqual(replies[-1]["code"], "ServerError")
        entry_id = session.game.wager.entry_id
        self.store.failing = set()
        await self.engine.disconnect(session)
        entry = self.tmp.db.get_entry(entry_id)
        self.assertEqual((entry.status, entry.payout), ("settled", 0))
        self.assertEqual(await self.balance(), 900)

    async def test_broadcast_drops_dead_connections(self):
        dead, dead_out = await self.login("bob")
        dead_out.fail = True
        session, out = await self.login("alice")
        self.assertNotIn(dead, self.engine.sessions)


class ChatAndLeaderboardTests(EngineTestCase):
    async def test_chat_reaches_everyone(self):
        alice, alice_out = await self.login("alice")
        bob, bob_out = await self.login("bob")
        replies = await self.send(alice, alice_out, type="chat_send", text="  hi all ")
        expected = {"type": "chat_broadcast", "author": "alice", "text": "hi all", "isDebtor": False}
        self.assertEqual(replies, [expected])
        self.assertEqual(bob_out.last("chat_broadcast"), expected)

    async def test_debtor_flag_follows_bank_balance(self):
        self.tmp.db.create_account(Account(name="alice", secret="pw", chips=1000, bank=-50))
        session, out = await self.login("alice")
        replies = await self.send(session, out, type="chat_send", text="spare a chip?")
        self.assertTrue(replies[-1]["isDebtor"])

    async def test_chat_requires_login_and_text(self):
        session, out = self.connect()
        replies = await self.send(session, out, type="chat_send", text="hi")
        self.assertEqual(replies[-1]["code"], "NotAuthenticated")
        session, out = await self.login()
        replies = await self.send(session, out, type="chat_send", text="   ")
        self.assertEqual(replies[-1]["code"], "InvalidRequest")

    async def test_chat_retention(self):
        self.engine.chat = ChatLog.open(None, 3)
        session, out = await self.login()
        for i in range(5):
            self.clock.now += 1
            await self.send(session, out, type="chat_send", text=f"msg {i}")
        self.assertEqual(len(self.engine.chat), 3)
        history = self.engine.chat.recent(30)
        self.assertEqual([m["text"] for m in history], ["msg 2", "msg 3", "msg 4"])

    async def test_leaderboard_pushed_to_all_after_settlement(self):
        alice, alice_out = await self.login("alice")
        bob, bob_out = await self.login("bob")
        self.rng.floats = [0.5]
        self.rng.choices = ["🍒", "🍒", "🍒"]
        await self.send(alice, alice_out, type="spin", bet=100)
        await self.engine.drain()
        board = bob_out.last("leaderboard_update")["leaderboard"]
        self.assertEqual(board, [{"name": "alice", "balance": 1900}, {"name": "bob", "balance": 1000}])

    async def test_leaderboard_is_capped(self):
        for i in range(7):
            await self.login(f"p{i}")
        rows = await self.engine.leaderboard()
        self.assertEqual(len(rows), self.rules.leaderboard_size)


class RequestBoundaryTests(EngineTestCase):
    async def test_malformed_messages(self):
        session, out = self.connect()
        await self.engine.dispatch(session, ["login"])
        self.assertEqual(out.last()["code"], "InvalidRequest")
        replies = await self.send(session, out, type="dance")
        self.assertEqual(replies[-1]["code"], "InvalidRequest")

    async def test_store_outage_fails_request_cleanly(self):
        session, out = await self.login()
        self.store.failing = {"play", "reserve"}
        replies = await self.send(session, out, type="spin", bet=100)
        self.assertEqual(replies[-1], {"type": "error", "code": "ServerError", "reason": "server error"})
        replies = await self.send(session, out, type="blackjack_start", bet=100)
        self.assertEqual(replies[-1]["code"], "ServerError")
        self.assertIsNone(session.game)
        self.store.failing = set()
        self.assertEqual(await self.balance(), 1000)

    async def test_failed_settlement_can_be_retried(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 9♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        self.store.failing = {"settle"}
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["code"], "ServerError")
        self.assertIsNotNone(session.game)
        self.store.failing = set()
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["outcome"], "WIN")
        self.assertEqual(replies[-1]["newBalance"], 1100)
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["code"], "NoActiveSession")


    async def test_disconnect_after_failed_settlement_still_pays(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 9♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        entry_id = session.game.wager.entry_id
        self.store.failing = {"settle"}
        replies = await self.send(session, out, type="blackjack_stand")
        self.assertEqual(replies[-1]["code"], "ServerError")
        self.store.failing = set()
        await self.engine.disconnect(session)
        entry = self.tmp.db.get_entry(entry_id)
        self.assertEqual((entry.status, entry.payout), ("settled", 200))
        self.assertEqual(await self.balance(), 1100)

    async def test_disconnect_after_failed_collect_still_pays(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("5♠ 9♥ 2♦"))
        await self.send(session, out, type="highlow_start", bet=100)
        await self.send(session, out, type="highlow_guess", direction="high")
        self.store.failing = {"settle"}
        replies = await self.send(session, out, type="highlow_collect")
        self.assertEqual(replies[-1]["code"], "ServerError")
        self.store.failing = set()
        await self.engine.disconnect(session)
        self.assertEqual(await self.balance(), 1100)

    async def test_guess_after_failed_collect_finishes_the_collect(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("5♠ 9♥ 2♦"))
        await self.send(session, out, type="highlow_start", bet=100)
        await self.send(session, out, type="highlow_guess", direction="high")
        self.store.failing = {"settle"}
        await self.send(session, out, type="highlow_collect")
        self.store.failing = set()
        replies = await self.send(session, out, type="highlow_guess", direction="low")
        self.assertEqual(replies[-1], {"type": "hl_result", "collected": 200, "newBalance": 1100})
        self.assertIsNone(session.game)

    async def test_settlement_left_open_when_store_stays_down(self):
        session, out = await self.login()
        self.decks.decks.append(stacked_deck("10♠ 9♥ 10♦ 7♣"))
        await self.send(session, out, type="blackjack_start", bet=100)
        entry_id = session.game.wager.entry_id
        self.store.failing = {"settle"}
        await self.send(session, out, type="blackjack_stand")
        with self.assertLogs("highroller.modules.engine", "WARNING"):
            await self.engine.disconnect(session)
        self.store.failing = set()
        self.assertEqual(self.tmp.db.get_entry(entry_id).status, "reserved")


if __name__ == "__main__":
    unittest.main()
