# highroller/modules/cards.py
"""Deck and card model shared by blackjack and high-low."""
from __future__ import annotations
import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from highroller.inc.errors import EmptyDeckError

RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]
SUITS = ["♠", "♥", "♦", "♣"]
RANK_VALUES = {r: i + 1 for i, r in enumerate(RANKS)}
FACES = ("J", "Q", "K")


@dataclass(frozen=True)
class Card:
    suit: str
    rank: str

    def to_dict(self) -> Dict[str, str]:
        return {"suit": self.suit, "rank": self.rank}

    @classmethod
    def parse(cls, code: str) -> "Card":
        """Build a card from a short code such as ``"10♥"`` or ``"A♠"``."""
        text = str(code or "").strip()
        rank, suit = text[:-1], text[-1:]
        if rank not in RANK_VALUES or suit not in SUITS:
            raise ValueError(f"invalid card code: {code!r}")
        return cls(suit=suit, rank=rank)

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


def standard_deck() -> List[Card]:
    return [Card(suit=s, rank=r) for s in SUITS for r in RANKS]


def create_shuffled_deck(rng: Optional[random.Random] = None) -> List[Card]:
    # random.shuffle is Fisher-Yates
    deck = standard_deck()
    (rng or random).shuffle(deck)
    return deck


def draw_card(deck: List[Card]) -> Card:
    """Remove and return the top card."""
    if not deck:
        raise EmptyDeckError()
    return deck.pop(0)


def blackjack_value(cards: Iterable[Card]) -> int:
    total = 0
    aces = 0
    for card in cards:
        if card.rank == "A":
            aces += 1
            total += 11
        elif card.rank in FACES:
            total += 10
        else:
            total += int(card.rank)
    while total > 21 and aces > 0:
        total -= 10
        aces -= 1
    return total


def highlow_rank(card: Card) -> int:
    return RANK_VALUES[card.rank]


def cards_to_dicts(cards: Iterable[Card]) -> List[Dict[str, str]]:
    return [c.to_dict() for c in cards]
