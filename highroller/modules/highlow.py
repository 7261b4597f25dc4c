# highroller/modules/highlow.py
"""High-low streak: guess whether the next card ranks higher or lower.

A tie in rank always counts for the player. Each correct guess multiplies the
pending payout (rounded down); a wrong guess loses it. The player may collect
once at least one guess was right.
"""
from __future__ import annotations
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Dict, List, Optional

from highroller.inc.errors import InvalidRequest, NothingToCollect
from highroller.modules.cards import Card, draw_card, highlow_rank
from highroller.modules.ledger import ReservedWager

HIGH = "high"
LOW = "low"


def normalize_direction(value: Any) -> str:
    text = str(value or "").strip().lower()
    aliases = {"high": HIGH, "higher": HIGH, "hi": HIGH, "low": LOW, "lower": LOW, "lo": LOW}
    direction = aliases.get(text)
    if direction is None:
        raise InvalidRequest("direction must be 'high' or 'low'")
    return direction


def guess_wins(direction: str, current: Card, nxt: Card) -> bool:
    cur, new = highlow_rank(current), highlow_rank(nxt)
    if direction == HIGH:
        return new >= cur
    return new <= cur


@dataclass
class HighLowStreak:
    wager: ReservedWager
    deck: List[Card]
    current: Card
    pending: int
    multiplier: Fraction
    streak: int = 0
    lost: bool = False
    collecting: bool = False
    last_card: Optional[Card] = None

    kind = "highlow"

    @classmethod
    def start(cls, wager: ReservedWager, deck: List[Card], multiplier: Fraction) -> "HighLowStreak":
        return cls(wager=wager, deck=deck, current=draw_card(deck), pending=wager.amount, multiplier=multiplier)

    @property
    def resolved(self) -> bool:
        return self.lost or self.collecting

    @property
    def payout(self) -> int:
        return self.pending if self.collecting else 0

    def guess(self, direction: str) -> bool:
        if self.resolved:
            raise ValueError("streak already resolved")
        nxt = draw_card(self.deck)
        won = guess_wins(direction, self.current, nxt)
        self.last_card = nxt
        self.current = nxt
        if won:
            self.pending = (self.pending * self.multiplier.numerator) // self.multiplier.denominator
            self.streak += 1
        else:
            self.pending = 0
            self.streak = 0
            self.lost = True
        return won

    def cash_out(self) -> int:
        """Lock in the pending payout; the streak takes no further guesses."""
        if not self.collecting:
            if self.streak <= 0 or self.lost:
                raise NothingToCollect()
            self.collecting = True
        return self.pending

    def close(self) -> None:
        self.pending = 0
        self.streak = 0

    def setup_message(self, balance: int) -> Dict[str, Any]:
        return {
            "type": "hl_setup",
            "currentCard": self.current.to_dict(),
            "pending": self.pending,
            "streak": self.streak,
            "balance": balance,
        }

    def guess_message(self, won: bool) -> Dict[str, Any]:
        return {
            "type": "hl_result",
            "won": won,
            "pending": self.pending,
            "streak": self.streak,
            "nextCard": self.last_card.to_dict() if self.last_card else None,
        }
