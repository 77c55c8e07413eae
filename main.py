import logging
from pprint import pprint

from tarot_session.config import Settings, build_coordinator
from tarot_session.logic import begin_reading, build_clarification_loop, clarify

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    settings = Settings.from_env()
    coordinator = build_coordinator(settings)

    # Example: Celtic Cross, then one follow-up that may draw up to 3 more cards
    session, result = begin_reading(
        coordinator,
        question="Should I change my career?",
        spread="celtic_cross",
        explain_with_llm=True,  # needs GEMINI_TOKEN
        model=settings.gemini_model,
    )
    pprint(result, sort_dicts=False)

    if session.interpretation:
        loop = build_clarification_loop(coordinator, model=settings.gemini_model)
        pprint(clarify(session, "What should I focus on first?", loop), sort_dicts=False)
