"""
entropy.py — Entropy Source Client

Responsibilities:
- Fetch a batch of unsigned 16-bit integers from the remote randomness
  service (one HTTP GET per attempt, bounded timeout)
- Validate the response: 2xx status, JSON body, `success` flag, `data` array
  of integers at least as long as requested
- Apply one of two interchangeable policies on failure:
    BackoffPolicy   — retry forever, delay 1s doubling up to a 30s cap
    FallbackPolicy  — one attempt, then local pseudo-random integers

Notes:
- Every attempt is independent; nothing from a failed attempt is reused.
- Under BackoffPolicy a caller can stop the loop with a threading.Event.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Callable, List, Optional, Union

import httpx

from .tarot_core import TarotCoreError, InvalidParameterError

logger = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = "https://qrng.anu.edu.au/API/jsonI.php?length={length}&type=uint16"
DEFAULT_TIMEOUT = 5.0
UINT16_MAX = 0xFFFF

Attempt = Callable[[int], List[int]]


class EntropySourceUnavailable(TarotCoreError):
    """The remote source failed (network, timeout, bad status or bad payload)."""


class EntropyFetchCancelled(EntropySourceUnavailable):
    """The caller cancelled an unbounded retry loop."""


# -----------------------------------------------------------------------------
# Response validation
# -----------------------------------------------------------------------------

def parse_batch(payload: Any, count: int) -> List[int]:
    """
    Validate a decoded response body and return its integers.

    Expected shape: {"success": true, "data": [int, ...]} with len(data) >= count.
    """
    if not isinstance(payload, dict):
        raise EntropySourceUnavailable(f"Expected a JSON object, got {type(payload).__name__}")
    if payload.get("success") is not True:
        raise EntropySourceUnavailable("Entropy source reported success=false")
    data = payload.get("data")
    if not isinstance(data, list):
        raise EntropySourceUnavailable("Entropy source response has no data array")
    if len(data) < count:
        raise EntropySourceUnavailable(
            f"Entropy source returned {len(data)} values, {count} required"
        )
    for v in data:
        # bool is an int subclass; reject it explicitly
        if isinstance(v, bool) or not isinstance(v, int) or not (0 <= v <= UINT16_MAX):
            raise EntropySourceUnavailable(f"Entropy source returned a non-uint16 value: {v!r}")
    return list(data)


def local_random_ints(count: int, rng: Optional[random.Random] = None) -> List[int]:
    """Local pseudo-random uint16 values. Default generator is seeded from OS entropy."""
    rng = rng or random.Random()
    return [rng.randint(0, UINT16_MAX) for _ in range(count)]


# -----------------------------------------------------------------------------
# Policies
# -----------------------------------------------------------------------------

class BackoffPolicy:
    """
    Retry until success: wait `initial_delay`, then double after every further
    failure, capped at `max_delay`. No attempt limit unless `max_attempts` is set.

    `sleep` is injectable so tests can record delays instead of waiting.
    """

    name = "backoff"

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        cancel: Optional[threading.Event] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        if initial_delay <= 0 or max_delay < initial_delay:
            raise InvalidParameterError("backoff delays must satisfy 0 < initial_delay <= max_delay")
        if max_attempts is not None and max_attempts < 1:
            raise InvalidParameterError("max_attempts must be >= 1")
        self.initial_delay = float(initial_delay)
        self.max_delay = float(max_delay)
        self.cancel = cancel
        self.max_attempts = max_attempts
        self._sleep = sleep

    def delays(self):
        """Yield the wait before each retry: 1, 2, 4, ... up to the cap, forever."""
        delay = self.initial_delay
        while True:
            yield delay
            delay = min(delay * 2, self.max_delay)

    def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif self.cancel is not None:
            # Wakes early when cancelled
            self.cancel.wait(delay)
        else:
            time.sleep(delay)

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise EntropyFetchCancelled("Entropy fetch cancelled by caller")

    def acquire(self, attempt: Attempt, count: int) -> List[int]:
        delays = self.delays()
        attempts = 0
        while True:
            self._check_cancelled()
            attempts += 1
            try:
                return attempt(count)
            except EntropySourceUnavailable as exc:
                if self.max_attempts is not None and attempts >= self.max_attempts:
                    raise
                delay = next(delays)
                logger.warning("Entropy attempt %d failed (%s); retrying in %.1fs", attempts, exc, delay)
                self._wait(delay)


class FallbackPolicy:
    """One remote attempt; on failure degrade to local pseudo-random integers."""

    name = "fallback"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng

    def acquire(self, attempt: Attempt, count: int) -> List[int]:
        try:
            return attempt(count)
        except EntropySourceUnavailable as exc:
            logger.warning("Entropy source unavailable (%s); using local pseudo-random fallback", exc)
            return local_random_ints(count, self.rng)


EntropyPolicy = Union[BackoffPolicy, FallbackPolicy]


# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------

class EntropySourceClient:
    """
    Fetches random integer batches for shuffling.

    Args:
        policy: BackoffPolicy or FallbackPolicy (default FallbackPolicy).
        url_template: endpoint with a `{length}` placeholder.
        timeout: per-attempt timeout in seconds.
        http_client: optional httpx.Client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        policy: Optional[EntropyPolicy] = None,
        *,
        url_template: str = DEFAULT_URL_TEMPLATE,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if "{length}" not in url_template:
            raise InvalidParameterError("url_template must contain a {length} placeholder")
        self.policy = policy if policy is not None else FallbackPolicy()
        self.url_template = url_template
        self.timeout = httpx.Timeout(timeout)
        self._http = http_client

    def fetch_once(self, count: int) -> List[int]:
        """Single attempt against the remote source. Raises EntropySourceUnavailable."""
        url = self.url_template.format(length=count)
        try:
            if self._http is not None:
                resp = self._http.get(url, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.get(url)
        except httpx.TimeoutException as exc:
            raise EntropySourceUnavailable(f"Entropy source timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EntropySourceUnavailable(f"Could not reach entropy source: {exc}") from exc

        if not resp.is_success:
            raise EntropySourceUnavailable(
                f"Entropy source responded with status {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise EntropySourceUnavailable("Entropy source returned a non-JSON body") from exc

        batch = parse_batch(payload, count)
        logger.info("Fetched %d random values from entropy source", len(batch))
        return batch

    def fetch_random_ints(self, count: int) -> List[int]:
        """Return at least `count` random integers according to the configured policy."""
        if not isinstance(count, int) or count < 0:
            raise InvalidParameterError("count must be a non-negative integer")
        if count == 0:
            return []
        return self.policy.acquire(self.fetch_once, count)
