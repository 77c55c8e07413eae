"""
coordinator.py — Session Draw Coordinator

`DrawCoordinator.draw(count, excluding)` builds a draw from the deck, the
entropy client and the shuffle. It keeps no memory of previous draws: the
caller passes the session's exclusion set every time and records the result
afterwards (see SessionState.record_draw).
"""

from __future__ import annotations

import logging
import random
from typing import AbstractSet, Iterable, List, Optional, Sequence

from .entropy import EntropySourceClient
from .tarot_core import (
    DECK,
    Card,
    DrawResult,
    InsufficientEntropy,
    InvalidParameterError,
    Orientation,
    entropy_needed,
    shuffle,
)

logger = logging.getLogger(__name__)


def available_cards(deck: Sequence[str], excluding: Iterable[str]) -> List[str]:
    """Deck minus the excluded names, in deck order."""
    excluded = set(excluding)
    return [name for name in deck if name not in excluded]


class DrawCoordinator:
    """
    Draws distinct cards that are not in a supplied exclusion set.

    Args:
        entropy: client that supplies the shuffle's random integers.
        deck: starting order for the shuffle (defaults to the canonical deck).
        orientation_prob: probability a card comes out reversed.
        rng: generator for the orientation coin flips, independent of the
             entropy batch.
    """

    def __init__(
        self,
        entropy: Optional[EntropySourceClient] = None,
        *,
        deck: Sequence[str] = DECK,
        orientation_prob: float = 0.5,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not (0.0 <= float(orientation_prob) <= 1.0):
            raise InvalidParameterError("orientation_prob must be within [0.0, 1.0]")
        if len(set(deck)) != len(deck):
            raise InvalidParameterError("deck contains duplicate card names")
        self.entropy = entropy if entropy is not None else EntropySourceClient()
        self.deck = tuple(deck)
        self.orientation_prob = float(orientation_prob)
        self.rng = rng or random.Random()

    def remaining(self, excluding: AbstractSet[str]) -> int:
        return len(available_cards(self.deck, excluding))

    def _orientation(self) -> Orientation:
        return "reversed" if self.rng.random() < self.orientation_prob else "upright"

    def draw(self, count: int, excluding: Iterable[str] = ()) -> DrawResult:
        """
        Draw `count` cards whose names are pairwise distinct and absent from
        `excluding`. A count larger than what is left is clamped, never raised.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidParameterError("count must be a non-negative integer")

        available = available_cards(self.deck, excluding)
        take = count
        if count > len(available):
            logger.warning(
                "Requested %d cards but only %d remain; clamping", count, len(available)
            )
            take = len(available)
        if take == 0:
            return DrawResult(cards=(), requested=count)

        needed = entropy_needed(len(available))
        batch = self.entropy.fetch_random_ints(needed)
        if len(batch) < needed:
            raise InsufficientEntropy(f"Entropy client returned {len(batch)} values, {needed} required")

        shuffled = shuffle(available, batch)
        cards = tuple(Card(name=name, orientation=self._orientation()) for name in shuffled[:take])
        logger.info("Drew %d card(s) from %d available", len(cards), len(available))
        return DrawResult(cards=cards, requested=count)
