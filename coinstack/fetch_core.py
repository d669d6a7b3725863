"""Resilient fetch core: cache → in-flight coalescing → network with retry.

Every adapter call goes through :meth:`ResilientFetcher.fetch`:

1. A fresh cache entry for the request key is returned immediately.
2. If a call for the same key is already running, the caller awaits that
   call's result (or failure) instead of issuing a second request.
3. Otherwise one task runs the retry loop.  404 is terminal
   (``NotFound``); 429, network errors and other non-success statuses are
   retried with exponential backoff until the attempt budget runs out,
   then ``RequestFailed`` is raised.  The in-flight entry is released
   when the task settles, whatever the outcome.

Request keys are the full URL with stable query params.  API keys and
cache-busting tokens go in ``volatile_params``: they are sent upstream
but never become part of the key.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Mapping

import httpx

from ._http import cache_key, sanitize_exc, sanitize_url
from .backoff import BackoffPolicy, wait
from .cache import InflightRegistry, ResourceCache
from .errors import (
    NotFound,
    PermanentUpstream,
    RateLimited,
    RequestFailed,
    TransientError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

ResponseKind = Literal["json", "text"]


class ResilientFetcher:
    """Owns the cache + in-flight registry and runs every upstream GET."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: ResourceCache | None = None,
        inflight: InflightRegistry | None = None,
        *,
        default_policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = wait,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else ResourceCache()
        self.inflight = inflight if inflight is not None else InflightRegistry()
        self.default_policy = default_policy or BackoffPolicy()
        self._sleep = sleep
        self._rand = rand

    async def fetch(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        volatile_params: Mapping[str, Any] | None = None,
        max_retries: int = 3,
        backoff_ms: float = 1000.0,
        use_cache: bool = True,
        policy: BackoffPolicy | None = None,
        response: ResponseKind = "json",
    ) -> Any:
        """GET *url* and return the decoded payload.

        Raises ``NotFound`` on 404 and ``RequestFailed`` once
        ``max_retries`` attempts (total, minimum 1) have failed.
        """
        key = cache_key(url, params)

        if use_cache:
            hit = self.cache.get(key)
            if hit is not None:
                logger.debug("Cache hit: %s", sanitize_url(key))
                return hit

        pending = self.inflight.get(key)
        if pending is not None:
            logger.debug("Joining in-flight request: %s", sanitize_url(key))
            return await asyncio.shield(pending)

        request_params: dict[str, Any] = dict(params or {})
        request_params.update(volatile_params or {})
        task = asyncio.ensure_future(self._run(
            key,
            url,
            request_params,
            attempts=max(1, max_retries),
            backoff_ms=backoff_ms,
            use_cache=use_cache,
            policy=policy or self.default_policy,
            response=response,
        ))
        self.inflight.register(key, task)
        # A cancelled caller must not cancel the call other callers share.
        return await asyncio.shield(task)

    # ── Internals ───────────────────────────────────────────────

    async def _run(
        self,
        key: str,
        url: str,
        request_params: dict[str, Any],
        *,
        attempts: int,
        backoff_ms: float,
        use_cache: bool,
        policy: BackoffPolicy,
        response: ResponseKind,
    ) -> Any:
        try:
            payload = await self._retry_loop(key, url, request_params, attempts, backoff_ms, policy, response)
            if use_cache:
                self.cache.set(key, payload)
            return payload
        finally:
            self.inflight.release(key)

    async def _retry_loop(
        self,
        key: str,
        url: str,
        request_params: dict[str, Any],
        attempts: int,
        backoff_ms: float,
        policy: BackoffPolicy,
        response: ResponseKind,
    ) -> Any:
        last_exc: UpstreamError | None = None
        for attempt in range(attempts):
            try:
                return await self._attempt(url, request_params, response)
            except UpstreamError as exc:
                if not exc.retryable:
                    raise
                last_exc = exc
                if attempt >= attempts - 1:
                    break
                delay = policy.delay_ms(attempt, backoff_ms, self._rand)
                logger.warning(
                    "%s (attempt %d/%d) – retrying in %.0fms",
                    exc, attempt + 1, attempts, delay,
                )
                await self._sleep(delay)
        raise RequestFailed(sanitize_url(key), last_exc, attempts)

    async def _attempt(self, url: str, request_params: dict[str, Any], response: ResponseKind) -> Any:
        safe = sanitize_url(url)
        try:
            r = await self.client.get(url, params=request_params or None)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # Any request-level failure, redirect loops and bad encodings included.
            raise TransientError(
                f"Network error ({type(exc).__name__}) from {safe}: {sanitize_exc(exc)}", url=safe,
            ) from None

        status = r.status_code
        if status == 404:
            raise NotFound(f"HTTP 404 from {safe}", url=safe, status=status)
        if status == 429:
            raise RateLimited(f"HTTP 429 from {safe}", url=safe, status=status)
        if not r.is_success:
            raise PermanentUpstream(f"HTTP {status} from {safe}", url=safe, status=status)

        if response == "text":
            return r.text
        try:
            return r.json()
        except ValueError:
            ct = r.headers.get("content-type", "")
            raise PermanentUpstream(
                f"Non-JSON body (content-type={ct!r}) from {safe}", url=safe, status=status,
            ) from None
