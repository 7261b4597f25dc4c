# highroller/modules/rules.py
"""House rules: every payout constant and policy switch in one place."""
from __future__ import annotations
from dataclasses import dataclass, field
from fractions import Fraction
from typing import List, Optional

from highroller.inc.settings import Settings

DEFAULT_SYMBOLS = ["7️⃣", "💎", "🍒", "🍋", "⭐"]


@dataclass
class HouseRules:
    starting_balance: int = 1000
    leaderboard_size: int = 5
    # slot_symbols[0] is the top tier symbol
    slot_symbols: List[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    slot_top_multiplier: int = 50
    slot_triple_multiplier: int = 10
    slot_pair_multiplier: int = 2
    jackpot_odds: float = 0.02
    highlow_multiplier: Fraction = Fraction(2)
    daily_bonus: int = 500
    bonus_interval: float = 24 * 60 * 60
    one_account_per_origin: bool = False
    idle_timeout: float = 0.0
    chat_retention: int = 100
    chat_history: int = 30
    chat_max_length: int = 500

    @property
    def top_symbol(self) -> str:
        return self.slot_symbols[0]

    @classmethod
    def from_settings(cls, settings: Optional[Settings]) -> "HouseRules":
        rules = cls()
        if settings is None:
            return rules
        g = settings.get
        symbols = g("HOUSE.slot_symbols", None, "json")
        if isinstance(symbols, list) and len(symbols) >= 2:
            rules.slot_symbols = [str(s) for s in symbols]
        rules.starting_balance = g("HOUSE.starting_balance", rules.starting_balance, int)
        rules.leaderboard_size = g("HOUSE.leaderboard_size", rules.leaderboard_size, int)
        rules.slot_top_multiplier = g("HOUSE.slot_top_multiplier", rules.slot_top_multiplier, int)
        rules.slot_triple_multiplier = g("HOUSE.slot_triple_multiplier", rules.slot_triple_multiplier, int)
        rules.slot_pair_multiplier = g("HOUSE.slot_pair_multiplier", rules.slot_pair_multiplier, int)
        rules.jackpot_odds = g("HOUSE.jackpot_odds", rules.jackpot_odds, float)
        rules.highlow_multiplier = Fraction(str(g("HOUSE.highlow_multiplier", "2") or "2"))
        rules.daily_bonus = g("HOUSE.daily_bonus", rules.daily_bonus, int)
        rules.bonus_interval = g("HOUSE.bonus_interval", rules.bonus_interval, float)
        rules.one_account_per_origin = g("HOUSE.one_account_per_origin", False, bool)
        rules.idle_timeout = g("HOUSE.idle_timeout", rules.idle_timeout, float)
        rules.chat_retention = g("HOUSE.chat_retention", rules.chat_retention, int)
        rules.chat_history = g("HOUSE.chat_history", rules.chat_history, int)
        rules.chat_max_length = g("HOUSE.chat_max_length", rules.chat_max_length, int)
        if rules.highlow_multiplier <= 1:
            raise RuntimeError("Config error: HOUSE.highlow_multiplier must be greater than 1")
        if not 0.0 <= rules.jackpot_odds < 1.0:
            raise RuntimeError("Config error: HOUSE.jackpot_odds must be in [0, 1)")
        return rules
