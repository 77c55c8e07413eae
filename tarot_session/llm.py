from __future__ import annotations
import json
import os
import re
from typing import Any, Dict, Optional
from dotenv import load_dotenv

# pip install google-generativeai python-dotenv
import google.generativeai as genai

load_dotenv()
GEMINI_TOKEN = os.getenv("GEMINI_TOKEN")
DEFAULT_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def _extract_text(resp) -> str:
    """
    Extract plain text from a Gemini response, joining candidate parts when
    the aggregated `.text` accessor is unavailable.
    """
    try:
        t = getattr(resp, "text", None)
        if t:
            return t
    except ValueError:
        # .text raises ValueError when the response has no single text part
        pass

    texts = []
    for cand in getattr(resp, "candidates", []) or []:
        content = getattr(cand, "content", None)
        parts = getattr(content, "parts", None) if content else None
        for p in parts or []:
            pt = getattr(p, "text", None)
            if pt:
                texts.append(pt)
    return "\n".join(texts).strip()


def chat(prompt: str, model: Optional[str] = None, temperature: float = 0.2) -> str:
    """
    Single-prompt chat with Gemini. Returns plain text. Raises if API/key error.
    """
    if not GEMINI_TOKEN:
        raise RuntimeError(
            "Missing GEMINI_TOKEN in environment. "
            "Create one in Google AI Studio and set it in your .env."
        )

    genai.configure(api_key=GEMINI_TOKEN)
    gmodel = genai.GenerativeModel(model_name=model or DEFAULT_MODEL)
    resp = gmodel.generate_content(prompt, generation_config={"temperature": float(temperature)})
    return _extract_text(resp) or ""


def parse_json_reply(text: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of a model reply (models often wrap it in
    ```json fences or add a sentence around it).
    """
    m = _JSON_BLOCK.search(text or "")
    if not m:
        raise ValueError(f"No JSON object in model reply: {text[:200]!r}")
    data = json.loads(m.group(0))
    if not isinstance(data, dict):
        raise ValueError("Model reply JSON is not an object")
    return data
