# highroller/modules/doubleup.py
"""Double-up: player digit against dealer digit, both uniform in 0..9."""
from __future__ import annotations
import random
from typing import Tuple

WIN = "WIN"
PUSH = "PUSH"
LOSE = "LOSE"


def draw_digits(rng: random.Random) -> Tuple[int, int]:
    return rng.randrange(10), rng.randrange(10)


def resolve(bet: int, player: int, dealer: int) -> Tuple[str, int]:
    if player > dealer:
        return WIN, bet * 2
    if player == dealer:
        return PUSH, bet
    return LOSE, 0
