"""
config.py — Environment configuration (.env supported via python-dotenv)
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx
from dotenv import load_dotenv

from .coordinator import DrawCoordinator
from .entropy import (
    DEFAULT_TIMEOUT,
    DEFAULT_URL_TEMPLATE,
    BackoffPolicy,
    EntropySourceClient,
    FallbackPolicy,
)
from .tarot_core import InvalidParameterError

load_dotenv()

ENTROPY_POLICIES = ("fallback", "backoff")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidParameterError(f"{key} must be a number, got {raw!r}") from None


def _int(env: Mapping[str, str], key: str) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidParameterError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    gemini_model: str = "gemini-2.5-flash"
    entropy_policy: str = "fallback"
    entropy_url: str = DEFAULT_URL_TEMPLATE
    entropy_timeout: float = DEFAULT_TIMEOUT
    backoff_initial: float = 1.0
    backoff_max: float = 30.0
    backoff_max_attempts: Optional[int] = None  # None: retry until success or cancel
    orientation_prob: float = 0.5

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        policy = (env.get("TAROT_ENTROPY_POLICY") or "fallback").strip().lower()
        if policy not in ENTROPY_POLICIES:
            raise InvalidParameterError(
                f"TAROT_ENTROPY_POLICY must be one of {ENTROPY_POLICIES}, got {policy!r}"
            )
        return cls(
            gemini_model=env.get("GEMINI_MODEL") or "gemini-2.5-flash",
            entropy_policy=policy,
            entropy_url=env.get("TAROT_ENTROPY_URL") or DEFAULT_URL_TEMPLATE,
            entropy_timeout=_float(env, "TAROT_ENTROPY_TIMEOUT", DEFAULT_TIMEOUT),
            backoff_initial=_float(env, "TAROT_BACKOFF_INITIAL", 1.0),
            backoff_max=_float(env, "TAROT_BACKOFF_MAX", 30.0),
            backoff_max_attempts=_int(env, "TAROT_BACKOFF_MAX_ATTEMPTS"),
            orientation_prob=_float(env, "TAROT_ORIENTATION_PROB", 0.5),
        )


def build_entropy_client(
    settings: Settings,
    *,
    cancel: Optional[threading.Event] = None,
    http_client: Optional[httpx.Client] = None,
    **policy_kwargs,
) -> EntropySourceClient:
    """
    Client with the policy named in settings. `cancel` stops a backoff loop;
    the fallback policy never waits and ignores it. Extra kwargs go to the policy.
    """
    if settings.entropy_policy == "backoff":
        policy = BackoffPolicy(
            settings.backoff_initial,
            settings.backoff_max,
            cancel=cancel,
            max_attempts=settings.backoff_max_attempts,
            **policy_kwargs,
        )
    else:
        policy = FallbackPolicy(**policy_kwargs)
    return EntropySourceClient(
        policy,
        url_template=settings.entropy_url,
        timeout=settings.entropy_timeout,
        http_client=http_client,
    )


def build_coordinator(
    settings: Optional[Settings] = None,
    *,
    cancel: Optional[threading.Event] = None,
    http_client: Optional[httpx.Client] = None,
) -> DrawCoordinator:
    settings = settings or Settings.from_env()
    return DrawCoordinator(
        build_entropy_client(settings, cancel=cancel, http_client=http_client),
        orientation_prob=settings.orientation_prob,
    )
