"""Tests for the entropy client, response validation and both retry policies."""
import itertools
import random
import threading
import time

import httpx
import pytest

from conftest import mock_http, qrng_payload
from tarot_session.entropy import (
    BackoffPolicy,
    EntropyFetchCancelled,
    EntropySourceClient,
    EntropySourceUnavailable,
    FallbackPolicy,
    local_random_ints,
    parse_batch,
)
from tarot_session.tarot_core import InvalidParameterError


# ── parse_batch ─────────────────────────────────────────────────────

class TestParseBatch:

    def test_valid_payload(self):
        assert parse_batch({"success": True, "data": [1, 2, 3]}, 3) == [1, 2, 3]

    def test_uint16_bounds_accepted(self):
        assert parse_batch({"success": True, "data": [0, 0xFFFF]}, 2) == [0, 0xFFFF]

    def test_longer_data_is_accepted(self):
        assert len(parse_batch({"success": True, "data": list(range(100))}, 78)) == 100

    @pytest.mark.parametrize("payload", [
        [],
        {"data": [1, 2, 3]},
        {"success": False, "data": [1, 2, 3]},
        {"success": "true", "data": [1, 2, 3]},
        {"success": True},
        {"success": True, "data": [1, 2]},
        {"success": True, "data": [1, "2", 3]},
        {"success": True, "data": [1, True, 3]},
        {"success": True, "data": [1, -2, 3]},
        {"success": True, "data": [1, 0x10000, 3]},
    ])
    def test_rejected_payloads(self, payload):
        with pytest.raises(EntropySourceUnavailable):
            parse_batch(payload, 3)


# ── single attempt ──────────────────────────────────────────────────

class TestFetchOnce:

    def test_success_requests_uint16_batch(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=qrng_payload(78))

        client = EntropySourceClient(http_client=mock_http(handler))
        assert len(client.fetch_once(78)) == 78
        assert seen[0].params["length"] == "78"
        assert seen[0].params["type"] == "uint16"
        assert seen[0].path.endswith("jsonI.php")

    def test_server_error(self):
        client = EntropySourceClient(http_client=mock_http(lambda r: httpx.Response(500, text="down")))
        with pytest.raises(EntropySourceUnavailable, match="500"):
            client.fetch_once(10)

    def test_non_json_body(self):
        client = EntropySourceClient(http_client=mock_http(lambda r: httpx.Response(200, text="<html>")))
        with pytest.raises(EntropySourceUnavailable):
            client.fetch_once(10)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = EntropySourceClient(http_client=mock_http(handler))
        with pytest.raises(EntropySourceUnavailable, match="timed out"):
            client.fetch_once(10)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        client = EntropySourceClient(http_client=mock_http(handler))
        with pytest.raises(EntropySourceUnavailable):
            client.fetch_once(10)

    def test_short_batch(self):
        client = EntropySourceClient(http_client=mock_http(lambda r: httpx.Response(200, json=qrng_payload(5))))
        with pytest.raises(EntropySourceUnavailable):
            client.fetch_once(10)

    def test_url_template_needs_length(self):
        with pytest.raises(InvalidParameterError):
            EntropySourceClient(url_template="https://example.org/random")

    def test_zero_count_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = EntropySourceClient(http_client=mock_http(handler))
        assert client.fetch_random_ints(0) == []

    def test_negative_count(self):
        with pytest.raises(InvalidParameterError):
            EntropySourceClient().fetch_random_ints(-1)


# ── BackoffPolicy ───────────────────────────────────────────────────

class TestBackoffPolicy:

    def test_retries_with_doubling_delays_until_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) <= 3:
                return httpx.Response(500, text="busy")
            return httpx.Response(200, json=qrng_payload(78))

        delays = []
        client = EntropySourceClient(BackoffPolicy(sleep=delays.append), http_client=mock_http(handler))

        batch = client.fetch_random_ints(78)

        assert len(batch) == 78
        assert len(calls) == 4
        assert delays == [1.0, 2.0, 4.0]

    def test_delays_cap_at_thirty_seconds(self):
        policy = BackoffPolicy()
        assert list(itertools.islice(policy.delays(), 8)) == [1, 2, 4, 8, 16, 30, 30, 30]

    def test_any_failure_kind_is_retried(self):
        responses = iter([
            "timeout",
            httpx.Response(200, json={"success": False}),
            httpx.Response(200, json=qrng_payload(3)),
            httpx.Response(200, json=qrng_payload(10)),
        ])

        def handler(request):
            r = next(responses)
            if isinstance(r, str):
                raise httpx.ConnectTimeout("slow", request=request)
            return r

        delays = []
        client = EntropySourceClient(BackoffPolicy(sleep=delays.append), http_client=mock_http(handler))
        assert len(client.fetch_random_ints(10)) == 10
        assert delays == [1.0, 2.0, 4.0]

    def test_cancellation_stops_the_loop(self):
        cancel = threading.Event()
        delays = []

        def sleep(delay):
            delays.append(delay)
            if len(delays) == 2:
                cancel.set()

        client = EntropySourceClient(
            BackoffPolicy(sleep=sleep, cancel=cancel),
            http_client=mock_http(lambda r: httpx.Response(503)),
        )
        with pytest.raises(EntropyFetchCancelled):
            client.fetch_random_ints(10)
        assert delays == [1.0, 2.0]

    def test_cancel_event_wakes_default_wait(self):
        cancel = threading.Event()
        cancel.set()
        policy = BackoffPolicy(initial_delay=30, max_delay=30, cancel=cancel)
        start = time.monotonic()
        policy._wait(30)
        assert time.monotonic() - start < 1.0

    def test_max_attempts_surfaces_failure(self):
        delays = []
        client = EntropySourceClient(
            BackoffPolicy(sleep=delays.append, max_attempts=3),
            http_client=mock_http(lambda r: httpx.Response(500)),
        )
        with pytest.raises(EntropySourceUnavailable):
            client.fetch_random_ints(10)
        assert delays == [1.0, 2.0]

    def test_invalid_delays(self):
        with pytest.raises(InvalidParameterError):
            BackoffPolicy(initial_delay=0)
        with pytest.raises(InvalidParameterError):
            BackoffPolicy(initial_delay=10, max_delay=5)


# ── FallbackPolicy ──────────────────────────────────────────────────

class TestFallbackPolicy:

    def test_unreachable_source_degrades_to_local_values(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("no route", request=request)

        client = EntropySourceClient(FallbackPolicy(), http_client=mock_http(handler))
        start = time.monotonic()
        batch = client.fetch_random_ints(78)

        assert time.monotonic() - start < 1.0
        assert len(calls) == 1
        assert len(batch) == 78
        assert all(0 <= v <= 0xFFFF for v in batch)

    def test_remote_values_used_when_available(self):
        payload = qrng_payload(78, seed=9)
        client = EntropySourceClient(FallbackPolicy(), http_client=mock_http(lambda r: httpx.Response(200, json=payload)))
        assert client.fetch_random_ints(78) == payload["data"]

    def test_default_policy_is_fallback(self):
        assert isinstance(EntropySourceClient().policy, FallbackPolicy)

    def test_local_random_ints_seeded(self):
        assert local_random_ints(5, random.Random(1)) == local_random_ints(5, random.Random(1))
