"""Shared fixtures for the draw engine tests."""
import random

import httpx
import pytest

from tarot_session.coordinator import DrawCoordinator


class StubEntropy:
    """Deterministic stand-in for EntropySourceClient; records requested counts."""

    def __init__(self, seed=0, short_by=0):
        self.rng = random.Random(seed)
        self.calls = []
        self.short_by = short_by

    def fetch_random_ints(self, count):
        self.calls.append(count)
        return [self.rng.randint(0, 0xFFFF) for _ in range(max(0, count - self.short_by))]


def qrng_payload(count, seed=0):
    rng = random.Random(seed)
    return {"type": "uint16", "length": count, "data": [rng.randint(0, 0xFFFF) for _ in range(count)], "success": True}


def mock_http(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def stub_entropy():
    return StubEntropy(seed=42)


@pytest.fixture
def coordinator(stub_entropy):
    return DrawCoordinator(stub_entropy, rng=random.Random(7))
