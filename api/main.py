# api/main.py
from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Allow starting from the repo root without installing
import sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tarot_session import tarot_core
from tarot_session.clarify import TurnFailed
from tarot_session.config import Settings, build_coordinator
from tarot_session.coordinator import DrawCoordinator
from tarot_session.entropy import EntropySourceUnavailable
from tarot_session.llm import chat as llm_chat
from tarot_session.logic import begin_reading, build_clarification_loop, clarify
from tarot_session.session import ClarificationTurn, SessionState
from tarot_session.tarot_core import Card, DrawResult, describe_card

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ---------- Pydantic Schemas ----------
class DrawRequest(BaseModel):
    count: int = Field(..., ge=0, le=tarot_core.DECK_SIZE)
    excluding: List[str] = Field(default_factory=list)


class ReadingRequest(BaseModel):
    question: Optional[str] = None
    spread: Optional[str] = Field(None, description="single|three_card|five_card|celtic_cross or null")
    num_cards: Optional[int] = Field(None, ge=1, le=tarot_core.DECK_SIZE)
    explain_with_llm: bool = False
    model: Optional[str] = None
    temperature: float = 0.2


class CardIn(BaseModel):
    name: str
    orientation: Literal["upright", "reversed"] = "upright"


class TurnIn(BaseModel):
    question: str
    cards: List[CardIn] = Field(default_factory=list)
    response: str


class ClarificationRequest(BaseModel):
    question: str = ""
    spread: Optional[str] = None
    initial_interpretation: str = ""
    follow_up_question: str = Field(..., min_length=1)
    all_drawn_card_names: List[str] = Field(default_factory=list)
    history: List[TurnIn] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: float = 0.2


class HealthResponse(BaseModel):
    status: str
    version: str
    has_gemini_token: bool
    entropy_policy: str


# ---------- Dependencies ----------
# Set on shutdown; wakes and ends any backoff loop still waiting on the entropy source
shutdown_event = threading.Event()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_coordinator() -> DrawCoordinator:
    return build_coordinator(get_settings(), cancel=shutdown_event)


def get_chat():
    return llm_chat


# ---------- FastAPI app ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    shutdown_event.clear()
    try:
        yield
    finally:
        shutdown_event.set()


app = FastAPI(title="Tarot Session Engine API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_methods=["*"], allow_headers=["*"], allow_credentials=False
)


@app.exception_handler(TurnFailed)
async def turn_failed_handler(request: Request, exc: TurnFailed):
    return JSONResponse(status_code=502, content={"detail": f"{type(exc).__name__}: {exc}"})


@app.exception_handler(EntropySourceUnavailable)
async def entropy_unavailable_handler(request: Request, exc: EntropySourceUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(tarot_core.TarotCoreError)
async def tarot_error_handler(request: Request, exc: tarot_core.TarotCoreError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok",
        version=app.version,
        has_gemini_token=bool(os.getenv("GEMINI_TOKEN")),
        entropy_policy=get_settings().entropy_policy,
    )


@app.get("/v1/spreads")
def list_spreads():
    return {"spreads": tarot_core.list_spreads()}


@app.post("/v1/draws")
def create_draw(req: DrawRequest, coordinator: DrawCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    result = coordinator.draw(req.count, set(req.excluding))
    return {
        "cards": [describe_card(c) for c in result.cards],
        "requested": result.requested,
        "clamped": result.clamped,
        "all_drawn_card_names": sorted(set(req.excluding) | set(result.names)),
    }


@app.post("/v1/readings")
def create_reading(
    req: ReadingRequest,
    coordinator: DrawCoordinator = Depends(get_coordinator),
    chat=Depends(get_chat),
    settings: Settings = Depends(get_settings),
):
    _, result = begin_reading(
        coordinator,
        question=req.question,
        spread=req.spread,
        num_cards=req.num_cards,
        explain_with_llm=req.explain_with_llm,
        model=req.model or settings.gemini_model,
        temperature=req.temperature,
        chat=chat,
    )
    return result


@app.post("/v1/clarifications")
def create_clarification(
    req: ClarificationRequest,
    coordinator: DrawCoordinator = Depends(get_coordinator),
    chat=Depends(get_chat),
    settings: Settings = Depends(get_settings),
):
    history = [
        ClarificationTurn(
            question=t.question,
            draw=DrawResult(
                cards=tuple(Card(name=c.name, orientation=c.orientation) for c in t.cards),
                requested=len(t.cards),
            ),
            response=t.response,
        )
        for t in req.history
    ]
    session = SessionState.restore(
        question=req.question,
        spread=req.spread,
        interpretation=req.initial_interpretation,
        all_drawn_card_names=req.all_drawn_card_names,
        history=history,
    )
    loop = build_clarification_loop(
        coordinator, model=req.model or settings.gemini_model, temperature=req.temperature, chat=chat
    )
    return clarify(session, req.follow_up_question, loop)
