# -*- coding: utf-8 -*-
"""
tarot_core.py — Core Tarot data and the entropy-driven shuffle

Responsibilities:
- Define the canonical 78-card deck (names are the card identifiers)
- Keep suit / rank metadata for each card and the fixed spread registry
- Provide the Fisher–Yates shuffle driven by an externally supplied batch of
  random integers (pure function, no I/O)
- Define the value types shared by every other module (Card, DrawResult)
  and the error taxonomy

Note:
- This module does not fetch randomness and does not decide how many cards to
  draw. Entropy lives in entropy.py, drawing in coordinator.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Sequence, Tuple, TypedDict


# =========================
# Error classes
# =========================

class TarotCoreError(Exception):
    """Base class for tarot errors."""


class InvalidParameterError(TarotCoreError):
    """Raised when an input parameter is invalid."""


class InvalidSpreadError(TarotCoreError):
    """Raised when a spread id is not registered."""


class InsufficientEntropy(TarotCoreError):
    """Raised when a shuffle is attempted with fewer random values than cards."""


class DeckExhausted(TarotCoreError):
    """Raised only on request, when a clamped draw must be treated as a failure."""


# =========================
# Types
# =========================

Orientation = Literal["upright", "reversed"]
Suit = Literal["major", "wands", "cups", "swords", "pentacles"]


@dataclass(frozen=True)
class CardDef:
    """Card definition (RWS)."""
    name: str            # e.g., "The Fool", "Ace of Wands"; the card identifier
    suit: Suit
    rank: str            # major: "0".."21"; minor: "ace","2",...,"king"


@dataclass(frozen=True)
class Card:
    """A drawn card: identifier plus orientation. Value type."""
    name: str
    orientation: Orientation = "upright"

    @property
    def reversed(self) -> bool:
        return self.orientation == "reversed"

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "orientation": self.orientation, "reversed": self.reversed}


@dataclass(frozen=True)
class DrawResult:
    """
    Ordered cards returned by one draw.

    `requested` is the count the caller asked for; when fewer cards were
    available the result is clamped and `clamped` is True.
    """
    cards: Tuple[Card, ...] = field(default_factory=tuple)
    requested: int = 0

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.cards]

    @property
    def clamped(self) -> bool:
        return len(self.cards) < self.requested

    def require_exact(self) -> "DrawResult":
        """Return self, or raise DeckExhausted if the draw was clamped."""
        if self.clamped:
            raise DeckExhausted(
                f"Requested {self.requested} cards but only {len(self.cards)} remained"
            )
        return self

    def __len__(self) -> int:
        return len(self.cards)

    def __bool__(self) -> bool:
        return bool(self.cards)


class SpreadDef(TypedDict):
    """Spread definition."""
    id: str
    name: str
    positions: List[str]


# =========================
# Spread registry
# =========================

SPREAD_REGISTRY: Dict[str, SpreadDef] = {
    "single": {
        "id": "single",
        "name": "Single Card",
        "positions": ["focus"],
    },
    "three_card": {
        "id": "three_card",
        "name": "Three Card (Past / Present / Future)",
        "positions": ["past", "present", "future"],
    },
    "five_card": {
        "id": "five_card",
        "name": "Five Card (Issue / Action / Obstacle / Resource / Outcome)",
        "positions": ["issue", "action", "obstacle", "resource", "outcome"],
    },
    "celtic_cross": {
        "id": "celtic_cross",
        "name": "Celtic Cross (10)",
        "positions": [
            "situation",
            "challenge",
            "subconscious",
            "past",
            "conscious",
            "near_future",
            "self",
            "environment",
            "hopes_fears",
            "outcome",
        ],
    },
}


def list_spreads() -> List[SpreadDef]:
    """Return all available spreads."""
    return list(SPREAD_REGISTRY.values())


def get_spread(spread_id: str) -> SpreadDef:
    """Get a single spread definition; raise if not registered."""
    if spread_id not in SPREAD_REGISTRY:
        raise InvalidSpreadError(f"Spread '{spread_id}' is not registered.")
    return SPREAD_REGISTRY[spread_id]


# =========================
# RWS 78-card deck definition
# =========================

def _build_rws_registry() -> List[CardDef]:
    """Build the RWS 78-card registry in canonical order."""
    majors = [
        "The Fool", "The Magician", "The High Priestess", "The Empress",
        "The Emperor", "The Hierophant", "The Lovers", "The Chariot",
        "Strength", "The Hermit", "Wheel of Fortune", "Justice",
        "The Hanged Man", "Death", "Temperance", "The Devil",
        "The Tower", "The Star", "The Moon", "The Sun",
        "Judgement", "The World",
    ]

    registry: List[CardDef] = []
    for i, name in enumerate(majors):
        registry.append(CardDef(name=name, suit="major", rank=str(i)))

    # Minor Arcana
    suits = [
        ("wands", "Wands"),
        ("cups", "Cups"),
        ("swords", "Swords"),
        ("pentacles", "Pentacles"),
    ]
    ranks = [
        ("ace", "Ace"),
        ("2", "Two"),
        ("3", "Three"),
        ("4", "Four"),
        ("5", "Five"),
        ("6", "Six"),
        ("7", "Seven"),
        ("8", "Eight"),
        ("9", "Nine"),
        ("10", "Ten"),
        ("page", "Page"),
        ("knight", "Knight"),
        ("queen", "Queen"),
        ("king", "King"),
    ]

    for suit_key, suit_name in suits:
        for rank_key, rank_name in ranks:
            registry.append(CardDef(
                name=f"{rank_name} of {suit_name}", suit=suit_key, rank=rank_key
            ))

    assert len(registry) == 78, f"RWS registry size should be 78, got {len(registry)}"
    return registry


CARD_REGISTRY: Tuple[CardDef, ...] = tuple(_build_rws_registry())
CARD_INDEX: Dict[str, CardDef] = {c.name: c for c in CARD_REGISTRY}

# The deck every draw starts from; immutable and shared by all sessions.
DECK: Tuple[str, ...] = tuple(c.name for c in CARD_REGISTRY)
DECK_SIZE = 78

assert len(DECK) == DECK_SIZE and len(set(DECK)) == DECK_SIZE


def card_label(card: Card) -> str:
    """Human-readable label, e.g. "The Tower (Reversed)"."""
    return f"{card.name} (Reversed)" if card.reversed else card.name


def describe_card(card: Card) -> Dict[str, object]:
    """Card fields plus suit / rank metadata, for API and LLM payloads."""
    meta = CARD_INDEX.get(card.name)
    return {
        **card.to_dict(),
        "suit": meta.suit if meta else None,
        "rank": meta.rank if meta else None,
        "label": card_label(card),
    }


# =========================
# Shuffling
# =========================

def entropy_needed(deck_len: int) -> int:
    """Number of random values `shuffle` consumes for a deck of this length."""
    return deck_len


def shuffle(deck: Sequence[str], random_ints: Sequence[int]) -> List[str]:
    """
    Fisher–Yates shuffle driven by a pre-fetched batch of random integers.

    The working index i runs from len(deck) down to 1; step k = len(deck) - i
    picks j = random_ints[k] % i and swaps positions i-1 and j. One value is
    consumed per step, including the final step where i == 1.

    Returns a new list and does not mutate the input. Identical inputs always
    give identical output.
    """
    arr = list(deck)
    n = len(arr)
    if len(random_ints) < entropy_needed(n):
        raise InsufficientEntropy(
            f"Shuffling {n} cards needs {entropy_needed(n)} random values, got {len(random_ints)}"
        )
    for i in range(n, 0, -1):
        j = random_ints[n - i] % i
        arr[i - 1], arr[j] = arr[j], arr[i - 1]
    return arr
