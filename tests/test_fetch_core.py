"""Tests for coinstack.fetch_core — cache, coalescing, retry and backoff."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from coinstack._http import cache_key
from coinstack.backoff import BackoffPolicy, wait
from coinstack.errors import (
    NotFound,
    PermanentUpstream,
    RateLimited,
    RequestFailed,
    TransientError,
)
from upstream_stub import FakeClock, Upstream, json_reply, make_fetcher, settle, text_reply

URL = "https://api.example.com/v1/thing"


class TestBackoffPolicy:
    def test_unkeyed_scales_call_base(self):
        policy = BackoffPolicy(multiplier=2.0)
        assert policy.effective_base(1000) == 2000

    def test_keyed_base_overrides_call_base(self):
        policy = BackoffPolicy(base_ms=500)
        assert policy.effective_base(2000) == 500

    def test_delays_grow_geometrically(self):
        policy = BackoffPolicy(multiplier=2.0)
        delays = [policy.delay_ms(a, 1000, lambda: 0.0) for a in range(4)]
        assert delays == [2000, 3000, 4500, 6750]

    def test_jitter_is_bounded(self):
        policy = BackoffPolicy()
        assert policy.delay_ms(0, 1000, lambda: 0.0) == 1000
        assert policy.delay_ms(0, 1000, lambda: 1.0) == 1200

    def test_wait_accepts_zero_and_negative(self):
        asyncio.run(wait(0))
        asyncio.run(wait(-5))


class TestCaching:
    def test_second_call_served_from_cache(self):
        up = Upstream().add("/v1/thing", json_reply({"n": 1}))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            first = await fetcher.fetch(URL)
            second = await fetcher.fetch(URL)
            return first, second

        assert asyncio.run(scenario()) == ({"n": 1}, {"n": 1})
        assert len(up.requests) == 1

    def test_use_cache_false_always_hits_network(self):
        up = Upstream().add("/v1/thing", json_reply({"n": 1}))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            await fetcher.fetch(URL, use_cache=False)
            await fetcher.fetch(URL, use_cache=False)

        asyncio.run(scenario())
        assert len(up.requests) == 2
        assert len(fetcher.cache) == 0

    def test_expired_entry_refetched(self):
        up = Upstream().add("/v1/thing", json_reply({"v": "old"}), json_reply({"v": "new"}))
        clock = FakeClock()
        fetcher, _ = make_fetcher(up, clock=clock)

        async def scenario():
            await fetcher.fetch(URL)
            clock.advance(120)
            return await fetcher.fetch(URL)

        assert asyncio.run(scenario()) == {"v": "new"}
        assert len(up.requests) == 2

    def test_volatile_params_sent_but_not_keyed(self):
        up = Upstream().add("/v1/thing", json_reply({"ok": True}))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            await fetcher.fetch(URL, params={"ids": "bitcoin"}, volatile_params={"x_cg_demo_api_key": "k1"})
            await fetcher.fetch(URL, params={"ids": "bitcoin"}, volatile_params={"x_cg_demo_api_key": "k2"})

        asyncio.run(scenario())
        assert len(up.requests) == 1
        sent = up.requests[0].url.params
        assert sent["ids"] == "bitcoin"
        assert sent["x_cg_demo_api_key"] == "k1"
        key = cache_key(URL, {"ids": "bitcoin"})
        assert "x_cg_demo_api_key" not in key
        assert fetcher.cache.get(key) == {"ok": True}

    def test_text_response(self):
        up = Upstream().add("/v1/thing", text_reply("<rss/>"))
        fetcher, _ = make_fetcher(up)
        assert asyncio.run(fetcher.fetch(URL, response="text")) == "<rss/>"


class TestCoalescing:
    def test_concurrent_callers_share_one_request(self):
        up = Upstream().add("/v1/thing", json_reply({"price": 42}))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            up.gate = asyncio.Event()
            tasks = [asyncio.ensure_future(fetcher.fetch(URL)) for _ in range(3)]
            await settle()
            assert len(fetcher.inflight) == 1
            up.gate.set()
            return await asyncio.gather(*tasks)

        results = asyncio.run(scenario())
        assert results == [{"price": 42}] * 3
        assert len(up.requests) == 1
        assert len(fetcher.inflight) == 0

    def test_concurrent_callers_share_failure(self):
        up = Upstream().add("/v1/thing", httpx.Response(404))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            up.gate = asyncio.Event()
            tasks = [asyncio.ensure_future(fetcher.fetch(URL)) for _ in range(2)]
            await settle()
            up.gate.set()
            return await asyncio.gather(*tasks, return_exceptions=True)

        results = asyncio.run(scenario())
        assert all(isinstance(r, NotFound) for r in results)
        assert len(up.requests) == 1
        assert len(fetcher.inflight) == 0

    def test_cancelled_waiter_does_not_cancel_shared_fetch(self):
        up = Upstream().add("/v1/thing", json_reply({"ok": 1}))
        fetcher, _ = make_fetcher(up)

        async def scenario():
            up.gate = asyncio.Event()
            first = asyncio.ensure_future(fetcher.fetch(URL))
            second = asyncio.ensure_future(fetcher.fetch(URL))
            await settle()
            first.cancel()
            await settle()
            up.gate.set()
            result = await second
            return first.cancelled(), result

        cancelled, result = asyncio.run(scenario())
        assert cancelled
        assert result == {"ok": 1}
        assert len(up.requests) == 1


class TestRetry:
    def test_not_found_is_single_attempt_and_uncached(self):
        up = Upstream().add("/v1/thing", httpx.Response(404))
        fetcher, sleep = make_fetcher(up)

        with pytest.raises(NotFound):
            asyncio.run(fetcher.fetch(URL, max_retries=3))
        assert len(up.requests) == 1
        assert sleep.delays == []
        assert len(fetcher.cache) == 0
        assert len(fetcher.inflight) == 0

    def test_attempt_ceiling_then_request_failed(self):
        up = Upstream().add("/v1/thing", httpx.Response(500))
        fetcher, sleep = make_fetcher(up)

        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, max_retries=3))
        assert len(up.requests) == 3
        assert info.value.attempts == 3
        assert isinstance(info.value.last_error, PermanentUpstream)
        assert len(sleep.delays) == 2
        assert len(fetcher.cache) == 0
        assert len(fetcher.inflight) == 0

    def test_zero_retries_still_makes_one_attempt(self):
        up = Upstream().add("/v1/thing", httpx.Response(503))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed):
            asyncio.run(fetcher.fetch(URL, max_retries=0))
        assert len(up.requests) == 1

    def test_rate_limit_recovers(self):
        up = Upstream().add("/v1/thing", httpx.Response(429), json_reply({"ok": True}))
        fetcher, sleep = make_fetcher(up)

        assert asyncio.run(fetcher.fetch(URL, max_retries=3)) == {"ok": True}
        assert len(up.requests) == 2
        assert len(sleep.delays) == 1

    def test_rate_limit_exhausted_reports_last_error(self):
        up = Upstream().add("/v1/thing", httpx.Response(429))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, max_retries=2))
        assert isinstance(info.value.last_error, RateLimited)
        assert len(up.requests) == 2

    def test_network_error_is_retried(self):
        up = Upstream().add("/v1/thing", httpx.ConnectError("connection refused"), json_reply([1]))
        fetcher, _ = make_fetcher(up)
        assert asyncio.run(fetcher.fetch(URL)) == [1]
        assert len(up.requests) == 2

    def test_network_error_exhausted(self):
        up = Upstream().add("/v1/thing", httpx.ConnectError("connection refused"))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, max_retries=2))
        assert isinstance(info.value.last_error, TransientError)

    def test_redirect_loop_is_retried_as_transient(self):
        up = Upstream().add("/v1/thing", httpx.TooManyRedirects("loop"), json_reply({"ok": 1}))
        fetcher, sleep = make_fetcher(up)
        assert asyncio.run(fetcher.fetch(URL, max_retries=3)) == {"ok": 1}
        assert len(up.requests) == 2
        assert len(sleep.delays) == 1

    def test_decoding_error_exhausted_as_transient(self):
        up = Upstream().add("/v1/thing", httpx.DecodingError("bad gzip"))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, max_retries=2))
        assert isinstance(info.value.last_error, TransientError)
        assert "DecodingError" in str(info.value.last_error)
        assert len(up.requests) == 2
        assert len(fetcher.inflight) == 0

    def test_non_retryable_error_stops_after_one_attempt(self):
        class Rejected(PermanentUpstream):
            retryable = False

        up = Upstream()
        fetcher, sleep = make_fetcher(up)
        calls = []

        async def reject(url, request_params, response):
            calls.append(url)
            raise Rejected("HTTP 451 from api.example.com", url=url, status=451)

        fetcher._attempt = reject
        with pytest.raises(Rejected):
            asyncio.run(fetcher.fetch(URL, max_retries=4))
        assert len(calls) == 1
        assert sleep.delays == []

    def test_undecodable_json_is_upstream_error(self):
        up = Upstream().add("/v1/thing", text_reply("<html>oops</html>"))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, max_retries=2))
        assert isinstance(info.value.last_error, PermanentUpstream)

    def test_backoff_delays_strictly_increase(self):
        up = Upstream().add("/v1/thing", httpx.Response(500))
        fetcher, sleep = make_fetcher(up)

        with pytest.raises(RequestFailed):
            asyncio.run(fetcher.fetch(URL, max_retries=4, backoff_ms=1000, policy=BackoffPolicy(multiplier=2.0)))
        assert sleep.delays == [2000, 3000, 4500]

    def test_keyed_policy_uses_fixed_base(self):
        up = Upstream().add("/v1/thing", httpx.Response(429))
        fetcher, sleep = make_fetcher(up)

        with pytest.raises(RequestFailed):
            asyncio.run(fetcher.fetch(URL, max_retries=3, backoff_ms=2000, policy=BackoffPolicy(base_ms=500)))
        assert sleep.delays == [500, 750]

    def test_failure_message_hides_api_key(self):
        up = Upstream().add("/v1/thing", httpx.Response(500))
        fetcher, _ = make_fetcher(up)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(fetcher.fetch(URL, volatile_params={"x_cg_demo_api_key": "CG-secret"}, max_retries=1))
        assert "CG-secret" not in str(info.value)
