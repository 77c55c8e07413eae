"""
clarify.py — Clarification Decision Loop

One follow-up turn runs a fixed pipeline:

    IDLE -> DECIDING -> DRAWING -> INTERPRETING -> DONE

1. decide: an external step returns how many new cards to draw (0..3)
2. clamp:  the count is cut down to the cards still undrawn in the session
3. draw-or-skip: draw and commit the cards to the session, then interpret
   with exactly those cards; or interpret without cards when the count is 0

The draw is committed before interpretation starts, so an interpretation
failure leaves the new cards in `all_drawn_card_names`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .coordinator import DrawCoordinator
from .session import ClarificationTurn, SessionState, TurnStage
from .tarot_core import Card, DrawResult, TarotCoreError

logger = logging.getLogger(__name__)

MAX_CLARIFICATION_CARDS = 3


class TurnFailed(TarotCoreError):
    """A clarification turn could not be completed."""


class DecisionStepFailed(TurnFailed):
    """The decide step raised or returned something that is not a count."""


class InterpretationStepFailed(TurnFailed):
    """An interpretation step raised or returned no text."""


@dataclass(frozen=True)
class ReadingContext:
    """Read-only context handed to the external steps."""
    question: str
    spread: Optional[str]
    interpretation: str
    history: Tuple[ClarificationTurn, ...]

    @classmethod
    def from_session(cls, session: SessionState) -> "ReadingContext":
        return cls(
            question=session.question,
            spread=session.spread,
            interpretation=session.interpretation,
            history=tuple(session.history),
        )


DecideStep = Callable[[str, ReadingContext, Sequence[ClarificationTurn]], int]
InterpretWithCardsStep = Callable[[Sequence[Card], str, ReadingContext], str]
InterpretWithoutCardsStep = Callable[[str, ReadingContext], str]


def normalize_draw_count(value: object) -> int:
    """Coerce a decision into [0, 3]. Non-integers are a decision failure."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecisionStepFailed(f"Decide step returned {value!r}, expected an integer")
    if value < 0 or value > MAX_CLARIFICATION_CARDS:
        clamped = max(0, min(value, MAX_CLARIFICATION_CARDS))
        logger.warning("Decide step returned %d; using %d", value, clamped)
        return clamped
    return value


class ClarificationLoop:
    def __init__(
        self,
        coordinator: DrawCoordinator,
        decide: DecideStep,
        interpret_with_cards: InterpretWithCardsStep,
        interpret_without_cards: InterpretWithoutCardsStep,
    ) -> None:
        self.coordinator = coordinator
        self.decide = decide
        self.interpret_with_cards = interpret_with_cards
        self.interpret_without_cards = interpret_without_cards

    @staticmethod
    def _advance(session: SessionState, stage: TurnStage) -> None:
        logger.debug("Clarification turn: %s -> %s", session.stage.value, stage.value)
        session.stage = stage

    def run_turn(self, session: SessionState, question: str) -> ClarificationTurn:
        """
        Run one follow-up turn against `session` and append it to the history.

        Raises DecisionStepFailed / InterpretationStepFailed when an external
        step fails. Entropy errors from the draw propagate unchanged.
        """
        with session.lock:
            try:
                return self._run(session, question)
            finally:
                if session.stage is not TurnStage.DONE:
                    session.stage = TurnStage.IDLE

    def _run(self, session: SessionState, question: str) -> ClarificationTurn:
        context = ReadingContext.from_session(session)

        self._advance(session, TurnStage.DECIDING)
        try:
            decision = self.decide(question, context, context.history)
        except Exception as exc:
            raise DecisionStepFailed(f"Decide step failed: {exc}") from exc
        count = normalize_draw_count(decision)

        available = self.coordinator.remaining(session.all_drawn_card_names)
        if count > available:
            logger.warning("Decide step asked for %d cards, %d remain; clamping", count, available)
            count = available

        if count > 0:
            self._advance(session, TurnStage.DRAWING)
            result = self.coordinator.draw(count, session.excluded())
            session.record_draw(result)

            self._advance(session, TurnStage.INTERPRETING)
            try:
                response = self.interpret_with_cards(result.cards, question, context)
            except Exception as exc:
                raise InterpretationStepFailed(f"Interpretation with cards failed: {exc}") from exc
        else:
            result = DrawResult(cards=(), requested=0)
            self._advance(session, TurnStage.INTERPRETING)
            try:
                response = self.interpret_without_cards(question, context)
            except Exception as exc:
                raise InterpretationStepFailed(f"Interpretation without cards failed: {exc}") from exc

        if not isinstance(response, str) or not response.strip():
            raise InterpretationStepFailed("Interpretation step returned no text")

        turn = ClarificationTurn(question=question, draw=result, response=response)
        session.record_turn(turn)
        self._advance(session, TurnStage.DONE)
        logger.info("Clarification turn done: %d new card(s)", len(result))
        return turn
