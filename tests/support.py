import os
import random
import tempfile
from typing import Iterable, List

from highroller.inc.database import Database
from highroller.modules.cards import Card, standard_deck


def cards(codes: str) -> List[Card]:
    return [Card.parse(code) for code in codes.split()]


def stacked_deck(codes: str) -> List[Card]:
    """Scripted cards on top, the rest of a standard deck underneath."""
    top = cards(codes)
    return top + [c for c in standard_deck() if c not in top]


class ScriptedRandom(random.Random):
    """random.Random that replays queued values before falling back to fixed ones."""

    def __init__(self, floats: Iterable[float] = (), choices: Iterable = (), ints: Iterable[int] = ()):
        self.floats = list(floats)
        self.choices = list(choices)
        self.ints = list(ints)
        super().__init__(0)

    def random(self):
        return self.floats.pop(0) if self.floats else 0.99

    def choice(self, seq):
        return self.choices.pop(0) if self.choices else seq[len(seq) - 1]

    def randrange(self, start, stop=None, step=1):
        if self.ints:
            return self.ints.pop(0)
        return start if stop is None else stop - 1


class DeckScript:
    """Deck factory handing out prepared decks in order."""

    def __init__(self, *decks: List[Card]):
        self.decks = list(decks)

    def __call__(self, rng) -> List[Card]:
        if self.decks:
            return list(self.decks.pop(0))
        return standard_deck()


class TempDatabase:
    def __init__(self):
        self._dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._dir.name, "casino.db")
        self.db = Database(self.path, busy_timeout=5.0, retries=3, retry_delay=0.01)
        self.db.initialize()

    def cleanup(self):
        self._dir.cleanup()


class Outbox:
    """Collects the messages sent to one fake connection."""

    def __init__(self):
        self.messages = []
        self.fail = False

    async def __call__(self, payload):
        if self.fail:
            raise ConnectionResetError("gone")
        self.messages.append(payload)

    def of_type(self, kind):
        return [m for m in self.messages if m.get("type") == kind]

    def last(self, kind=None):
        found = self.of_type(kind) if kind else self.messages
        return found[-1] if found else None

    def clear(self):
        self.messages.clear()
