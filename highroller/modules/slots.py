# highroller/modules/slots.py
"""Three-reel slot machine."""
from __future__ import annotations
import random
from typing import List

from highroller.modules.rules import HouseRules


def spin_reels(rng: random.Random, rules: HouseRules) -> List[str]:
    """Draw three symbols; the jackpot layer forces a triple top-tier line."""
    if rules.jackpot_odds > 0 and rng.random() < rules.jackpot_odds:
        return [rules.top_symbol] * 3
    return [rng.choice(rules.slot_symbols) for _ in range(3)]


def payout_multiplier(symbols: List[str], rules: HouseRules) -> int:
    a, b, c = symbols
    if a == b == c:
        return rules.slot_top_multiplier if a == rules.top_symbol else rules.slot_triple_multiplier
    if a == b or b == c or a == c:
        return rules.slot_pair_multiplier
    return 0


def slot_payout(bet: int, symbols: List[str], rules: HouseRules) -> int:
    return bet * payout_multiplier(symbols, rules)
