"""
session.py — Caller-owned reading session state

A SessionState is created when a reading begins, threaded through every draw
and clarification turn, and discarded when a new question starts. The only
mutation of `all_drawn_card_names` is a union with the names of a completed
draw; nothing is ever removed.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set

from .coordinator import available_cards
from .tarot_core import DECK, Card, DrawResult


class TurnStage(str, Enum):
    IDLE = "idle"
    DECIDING = "deciding"
    DRAWING = "drawing"
    INTERPRETING = "interpreting"
    DONE = "done"


@dataclass(frozen=True)
class ClarificationTurn:
    """One follow-up exchange: question, cards drawn for it (maybe none), response."""
    question: str
    draw: DrawResult
    response: str

    def to_dict(self):
        return {
            "question": self.question,
            "cards": [c.to_dict() for c in self.draw.cards],
            "response": self.response,
        }


@dataclass
class SessionState:
    question: str = ""
    spread: Optional[str] = None
    cards: List[Card] = field(default_factory=list)
    interpretation: str = ""
    all_drawn_card_names: Set[str] = field(default_factory=set)
    history: List[ClarificationTurn] = field(default_factory=list)
    stage: TurnStage = TurnStage.IDLE
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def remaining(self) -> int:
        """Deck cards not yet drawn; unknown names in the set do not count."""
        return len(available_cards(DECK, self.all_drawn_card_names))

    def record_draw(self, result: DrawResult) -> None:
        """Commit a completed draw: union its names into the exclusion set."""
        with self.lock:
            self.all_drawn_card_names |= set(result.names)
            self.cards.extend(result.cards)

    def record_turn(self, turn: ClarificationTurn) -> None:
        with self.lock:
            self.history.append(turn)

    def excluded(self) -> frozenset:
        """Snapshot of the exclusion set to hand to a draw."""
        with self.lock:
            return frozenset(self.all_drawn_card_names)

    def fork(self) -> "SessionState":
        """Independent copy with its own lock, for use by another request."""
        with self.lock:
            return SessionState(
                question=self.question,
                spread=self.spread,
                cards=list(self.cards),
                interpretation=self.interpretation,
                all_drawn_card_names=set(self.all_drawn_card_names),
                history=copy.copy(self.history),
                stage=self.stage,
            )

    @classmethod
    def restore(
        cls,
        question: str = "",
        interpretation: str = "",
        all_drawn_card_names: Iterable[str] = (),
        history: Iterable[ClarificationTurn] = (),
        spread: Optional[str] = None,
    ) -> "SessionState":
        """
        Rebuild a session from state a caller carried between requests.

        Cards named in `history` count as drawn even when the caller left them
        out of `all_drawn_card_names`.
        """
        history = list(history)
        drawn = set(all_drawn_card_names)
        for turn in history:
            drawn.update(turn.draw.names)
        return cls(
            question=question,
            spread=spread,
            interpretation=interpretation,
            all_drawn_card_names=drawn,
            history=history,
        )
