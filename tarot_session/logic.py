"""
logic.py — Orchestration layer tying the draw engine to the LLM and the API.

Responsibilities:
- `begin_reading(...)`: draw the initial spread through the coordinator,
  create the SessionState, optionally ask the LLM for an interpretation.
- `GeminiSteps`: the decide / interpret collaborators of the clarification
  loop, backed by Gemini through llm.chat.
- `clarify(...)`: run one clarification turn and return a JSON-ready dict.

Notes:
- Prompts only ever list the cards actually drawn; the model never picks
  cards itself. How many cards to draw is the only thing it decides.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from . import tarot_core
from .clarify import ClarificationLoop, ReadingContext
from .coordinator import DrawCoordinator
from .llm import chat as llm_chat
from .llm import parse_json_reply
from .session import ClarificationTurn, SessionState
from .tarot_core import Card, InvalidParameterError, card_label, describe_card

logger = logging.getLogger(__name__)

ChatFn = Callable[..., str]


# -----------------------------------------------------------------------------
# Prompt construction
# -----------------------------------------------------------------------------

_BASE_PROMPT = """### ROLE
You are a seasoned tarot reader.

### RULES
Only talk about the cards listed under INPUT. Never invent or name other cards.
"""


def _card_lines(cards: Sequence[Card], positions: Optional[Sequence[str]] = None) -> List[str]:
    lines = []
    for i, c in enumerate(cards):
        pos = positions[i] if positions and i < len(positions) else "-"
        lines.append(f"- {i}. {card_label(c)} — pos={pos}")
    return lines


def _history_lines(history: Sequence[ClarificationTurn]) -> List[str]:
    lines = []
    for i, turn in enumerate(history, start=1):
        drawn = ", ".join(card_label(c) for c in turn.draw.cards) or "(no new cards)"
        lines.append(f"{i}. Q: {turn.question} | cards: {drawn} | A: {turn.response}")
    return lines


def _build_reading_prompt(question: Optional[str], cards: Sequence[Card], positions: Optional[Sequence[str]]) -> str:
    q = (question or "").strip()
    lines: List[str] = ["### INPUT", f"Question: {q if q else '(none)'}", "Cards drawn (in order):"]
    lines.extend(_card_lines(cards, positions))
    lines.append("")
    lines.append("### OUTPUT")
    lines.append("2-4 sentences per card, then 3 concrete pieces of advice.")
    return _BASE_PROMPT + "\n" + "\n".join(lines)


def _build_decide_prompt(question: str, context: ReadingContext, history: Sequence[ClarificationTurn]) -> str:
    lines = [
        "### TASK",
        "Decide how many NEW cards (0, 1, 2 or 3) should be drawn to answer the follow-up question.",
        "Draw 0 if the user only wants more detail on cards already on the table.",
        "",
        "### CONTEXT",
        f"Original question: {context.question or '(none)'}",
        f"Initial interpretation: {context.interpretation or '(none)'}",
        "Earlier follow-ups:",
        *(_history_lines(history) or ["(none)"]),
        "",
        f"Follow-up question: {question}",
        "",
        "### OUTPUT",
        'Reply with JSON only: {"draw_count": <0-3>}',
    ]
    return "\n".join(lines)


def _build_clarify_prompt(question: str, context: ReadingContext, cards: Sequence[Card]) -> str:
    lines = [
        "### INPUT",
        f"Original question: {context.question or '(none)'}",
        f"Initial interpretation: {context.interpretation or '(none)'}",
        "Earlier follow-ups:",
        *(_history_lines(context.history) or ["(none)"]),
        f"Follow-up question: {question}",
    ]
    if cards:
        lines.append("New cards drawn for this follow-up:")
        lines.extend(_card_lines(cards))
        lines.append("")
        lines.append("### OUTPUT")
        lines.append("Name each new card as listed above and tie it back to the follow-up question.")
    else:
        lines.append("No new cards were drawn.")
        lines.append("")
        lines.append("### OUTPUT")
        lines.append("Answer from the existing reading only. Do not mention any new card.")
    return _BASE_PROMPT + "\n" + "\n".join(lines)


# -----------------------------------------------------------------------------
# LLM-backed clarification steps
# -----------------------------------------------------------------------------

class GeminiSteps:
    """Decide / interpret collaborators for ClarificationLoop."""

    def __init__(self, model: Optional[str] = None, temperature: float = 0.2, chat: Optional[ChatFn] = None) -> None:
        self.model = model
        self.temperature = temperature
        self._chat = chat or llm_chat

    def _ask(self, prompt: str, temperature: Optional[float] = None) -> str:
        t = self.temperature if temperature is None else temperature
        return self._chat(prompt=prompt, model=self.model, temperature=t)

    def decide(self, question: str, context: ReadingContext, history: Sequence[ClarificationTurn]) -> int:
        reply = self._ask(_build_decide_prompt(question, context, history), temperature=0.0)
        data = parse_json_reply(reply)
        count = data.get("draw_count")
        if isinstance(count, bool) or not isinstance(count, int):
            raise ValueError(f"draw_count must be an integer, got {count!r}")
        return count

    def interpret_with_cards(self, cards: Sequence[Card], question: str, context: ReadingContext) -> str:
        return self._ask(_build_clarify_prompt(question, context, cards))

    def interpret_without_cards(self, question: str, context: ReadingContext) -> str:
        return self._ask(_build_clarify_prompt(question, context, ()))


def build_clarification_loop(
    coordinator: DrawCoordinator,
    *,
    model: Optional[str] = None,
    temperature: float = 0.2,
    chat: Optional[ChatFn] = None,
) -> ClarificationLoop:
    steps = GeminiSteps(model=model, temperature=temperature, chat=chat)
    return ClarificationLoop(
        coordinator,
        decide=steps.decide,
        interpret_with_cards=steps.interpret_with_cards,
        interpret_without_cards=steps.interpret_without_cards,
    )


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def _resolve_card_count(spread: Optional[str], num_cards: Optional[int]) -> Tuple[int, Optional[List[str]]]:
    if spread is not None:
        positions = list(tarot_core.get_spread(spread)["positions"])
        if num_cards is not None and num_cards != len(positions):
            raise tarot_core.InvalidSpreadError(
                f"Spread '{spread}' expects {len(positions)} cards, got {num_cards}"
            )
        return len(positions), positions
    if num_cards is None or isinstance(num_cards, bool) or not isinstance(num_cards, int):
        raise InvalidParameterError("num_cards is required when no spread is given")
    if not (1 <= num_cards <= tarot_core.DECK_SIZE):
        raise InvalidParameterError(f"num_cards must be within 1..{tarot_core.DECK_SIZE}; got {num_cards}")
    return num_cards, None


def session_to_dict(session: SessionState) -> Dict[str, Any]:
    return {
        "question": session.question or None,
        "spread": session.spread,
        "interpretation": session.interpretation,
        "all_drawn_card_names": sorted(session.all_drawn_card_names),
        "history": [t.to_dict() for t in session.history],
    }


def begin_reading(
    coordinator: DrawCoordinator,
    question: Optional[str] = None,
    spread: Optional[str] = None,
    num_cards: Optional[int] = None,
    explain_with_llm: bool = False,
    *,
    model: Optional[str] = None,
    temperature: float = 0.2,
    chat: Optional[ChatFn] = None,
) -> Tuple[SessionState, Dict[str, Any]]:
    """
    Start a reading: a fresh session, the initial spread draw, and (optionally)
    the LLM's interpretation.

    Returns (session, result) where result is JSON-serializable:

        {
          "meta": {"spread": str|null, "question": str|null, "explain_with_llm": bool},
          "cards": [{"name", "orientation", "reversed", "suit", "rank", "label", "position", "index"}, ...],
          "llm": {"prompt": str|null, "response_text": str|null, "error": str|null},
          "session": {... session_to_dict ...}
        }

    LLM failures are captured in result["llm"]["error"]; the draw itself stands.
    """
    count, positions = _resolve_card_count(spread, num_cards)

    session = SessionState(question=(question or "").strip(), spread=spread)
    draw = coordinator.draw(count, session.excluded())
    session.record_draw(draw)

    cards_out: List[Dict[str, Any]] = []
    for idx, card in enumerate(draw.cards):
        cards_out.append({
            **describe_card(card),
            "position": positions[idx] if positions else None,
            "index": idx,
        })

    result: Dict[str, Any] = {
        "meta": {
            "spread": spread,
            "question": question or None,
            "explain_with_llm": bool(explain_with_llm),
        },
        "cards": cards_out,
        "llm": {"prompt": None, "response_text": None, "error": None},
    }

    if explain_with_llm:
        prompt = _build_reading_prompt(question, draw.cards, positions)
        result["llm"]["prompt"] = prompt
        try:
            response_text = (chat or llm_chat)(prompt=prompt, model=model, temperature=temperature)
            if not isinstance(response_text, str):
                response_text = str(response_text)
            if not response_text.strip():
                response_text = "The reader stayed silent this time..."
            result["llm"]["response_text"] = response_text
            session.interpretation = response_text
        except Exception as e:
            # The drawn spread is still valid; let the caller decide how to surface this
            logger.warning("Initial interpretation failed: %s", e)
            result["llm"]["error"] = f"{type(e).__name__}: {e}"

    result["session"] = session_to_dict(session)
    return session, result


def clarify(session: SessionState, follow_up_question: str, loop: ClarificationLoop) -> Dict[str, Any]:
    """
    Run one clarification turn. Decide / interpret failures propagate as
    TurnFailed subclasses.
    """
    if not (follow_up_question or "").strip():
        raise InvalidParameterError("follow_up_question must not be empty")
    turn = loop.run_turn(session, follow_up_question.strip())
    return {
        "turn": {
            "question": turn.question,
            "cards": [describe_card(c) for c in turn.draw.cards],
            "response": turn.response,
        },
        "session": session_to_dict(session),
    }
