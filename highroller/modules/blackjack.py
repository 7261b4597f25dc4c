# highroller/modules/blackjack.py
"""Single-deck blackjack hand: deal, hit, stand.

One fresh deck per hand. The dealer stands on 17 and above. Win pays 2x the
bet, a push refunds it, a bust or lower total pays nothing. There is no split,
double down, insurance or natural-21 bonus.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from highroller.modules.cards import Card, blackjack_value, cards_to_dicts, draw_card
from highroller.modules.ledger import ReservedWager

PLAYER_TURN = "PLAYER_TURN"
DEALER_TURN = "DEALER_TURN"
RESOLVED = "RESOLVED"

WIN = "WIN"
LOSE = "LOSE"
PUSH = "PUSH"

DEALER_STANDS_AT = 17


@dataclass
class BlackjackHand:
    wager: ReservedWager
    deck: List[Card]
    player: List[Card] = field(default_factory=list)
    dealer: List[Card] = field(default_factory=list)
    phase: str = PLAYER_TURN
    outcome: Optional[str] = None
    payout: int = 0

    kind = "blackjack"

    @classmethod
    def deal(cls, wager: ReservedWager, deck: List[Card]) -> "BlackjackHand":
        hand = cls(wager=wager, deck=deck)
        hand.player = [draw_card(deck), draw_card(deck)]
        hand.dealer = [draw_card(deck), draw_card(deck)]
        return hand

    @property
    def bet(self) -> int:
        return self.wager.amount

    @property
    def player_total(self) -> int:
        return blackjack_value(self.player)

    @property
    def dealer_total(self) -> int:
        return blackjack_value(self.dealer)

    @property
    def resolved(self) -> bool:
        return self.phase == RESOLVED

    def hit(self) -> None:
        if self.phase != PLAYER_TURN:
            raise ValueError(f"cannot hit in {self.phase}")
        self.player.append(draw_card(self.deck))
        if self.player_total > 21:
            self._resolve(LOSE)

    def stand(self) -> None:
        if self.phase != PLAYER_TURN:
            raise ValueError(f"cannot stand in {self.phase}")
        self.phase = DEALER_TURN
        while self.dealer_total < DEALER_STANDS_AT:
            self.dealer.append(draw_card(self.deck))
        dealer_total = self.dealer_total
        player_total = self.player_total
        if dealer_total > 21 or player_total > dealer_total:
            self._resolve(WIN)
        elif player_total == dealer_total:
            self._resolve(PUSH)
        else:
            self._resolve(LOSE)

    def _resolve(self, outcome: str) -> None:
        self.outcome = outcome
        self.payout = {WIN: self.bet * 2, PUSH: self.bet}.get(outcome, 0)
        self.phase = RESOLVED

    def update_message(self, balance: Optional[int] = None) -> Dict[str, Any]:
        msg = {
            "type": "bj_update",
            "playerHand": cards_to_dicts(self.player),
            "dealerUpcard": self.dealer[0].to_dict(),
            "playerTotal": self.player_total,
        }
        if balance is not None:
            msg["balance"] = balance
        return msg

    def result_message(self, balance: int) -> Dict[str, Any]:
        return {
            "type": "bj_result",
            "playerHand": cards_to_dicts(self.player),
            "dealerHand": cards_to_dicts(self.dealer),
            "playerTotal": self.player_total,
            "dealerTotal": self.dealer_total,
            "outcome": self.outcome,
            "payout": self.payout,
            "newBalance": balance,
        }
