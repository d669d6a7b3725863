"""News adapters: CryptoCompare REST, RSS via rss2json, raw RSS via proxy.

Three upstream shapes, one output contract: ``await adapter.fetch()``
returns ``List[NewsItem]`` and never raises.  A failing source logs a
warning and contributes zero items.

* ``CryptoCompareNewsAdapter`` – structured JSON REST.
* ``Rss2JsonAdapter`` – a third-party proxy parses the feed and returns a
  JSON envelope ``{"status": "ok", "items": [...]}``.
* ``RawXmlFeedAdapter`` – for feeds whose image encoding (media:content,
  enclosures) rss2json drops.  The raw XML comes through a pass-through
  proxy and is traversed locally with feedparser.  Caching is off: the
  content turns over too fast and the proxy caches unreliably, so each
  call also carries a cache-busting token.
"""

from __future__ import annotations

import io
import logging
import time
from collections.abc import Callable
from typing import List, Protocol

import feedparser

from ._http import as_dict_list, log_fetch_warning
from .common_types import NewsItem
from .config import Config
from .errors import CoinstackError
from .fetch_core import ResilientFetcher
from .normalize import normalize_cryptocompare, normalize_feed_entry, normalize_rss2json

logger = logging.getLogger(__name__)

CRYPTOCOMPARE_NEWS_URL = "https://min-api.cryptocompare.com/data/v2/news/"
RSS2JSON_URL = "https://api.rss2json.com/v1/api.json"
RAW_PROXY_URL = "https://api.allorigins.win/raw"


class NewsSource(Protocol):
    label: str

    async def fetch(self) -> List[NewsItem]: ...


class CryptoCompareNewsAdapter:
    """Async adapter for CryptoCompare ``/data/v2/news/``."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        config: Config,
        *,
        lang: str = "EN",
        categories: str | None = None,
        label: str = "cryptocompare",
    ) -> None:
        self.fetcher = fetcher
        self.config = config
        self.lang = lang
        self.categories = categories
        self.label = label

    async def fetch(self) -> List[NewsItem]:
        return await self.fetch_news(categories=self.categories, lang=self.lang)

    async def fetch_news(self, categories: str | None = None, lang: str = "EN") -> List[NewsItem]:
        """GET /data/v2/news/?lang=…[&categories=…]"""
        params = {"lang": lang.upper()}
        if categories:
            params["categories"] = categories.upper()
        try:
            # News is secondary: one attempt, no retries.
            body = await self.fetcher.fetch(
                CRYPTOCOMPARE_NEWS_URL,
                params=params,
                max_retries=1,
                backoff_ms=1000,
                use_cache=True,
                policy=self.config.default_policy,
            )
        except CoinstackError as exc:
            log_fetch_warning(self.label, exc)
            return []
        data = body.get("Data") if isinstance(body, dict) else None
        items = [normalize_cryptocompare(it) for it in as_dict_list(data, "CryptoCompare news")]
        return [it for it in items if it.is_valid]


class Rss2JsonAdapter:
    """One RSS feed converted to JSON by rss2json.com."""

    def __init__(self, fetcher: ResilientFetcher, config: Config, feed_url: str, label: str) -> None:
        self.fetcher = fetcher
        self.config = config
        self.feed_url = feed_url
        self.label = label

    async def fetch(self) -> List[NewsItem]:
        try:
            body = await self.fetcher.fetch(
                RSS2JSON_URL,
                params={"rss_url": self.feed_url},
                max_retries=2,
                backoff_ms=1000,
                use_cache=True,
                policy=self.config.default_policy,
            )
        except CoinstackError as exc:
            log_fetch_warning(self.label, exc)
            return []
        if not isinstance(body, dict) or body.get("status") != "ok":
            status = body.get("status") if isinstance(body, dict) else type(body).__name__
            logger.warning("%s: rss2json envelope status %r — 0 items ingested.", self.label, status)
            return []
        items = [normalize_rss2json(it, self.label) for it in as_dict_list(body.get("items"), self.label)]
        return [it for it in items if it.is_valid]


class RawXmlFeedAdapter:
    """One RSS feed fetched verbatim through a pass-through proxy."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        config: Config,
        feed_url: str,
        label: str,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.fetcher = fetcher
        self.config = config
        self.feed_url = feed_url
        self.label = label
        self._clock = clock

    async def fetch(self) -> List[NewsItem]:
        try:
            body = await self.fetcher.fetch(
                RAW_PROXY_URL,
                params={"url": self.feed_url},
                volatile_params={"_": int(self._clock() * 1000)},
                max_retries=2,
                backoff_ms=1000,
                use_cache=False,
                policy=self.config.default_policy,
                response="text",
            )
        except CoinstackError as exc:
            log_fetch_warning(self.label, exc)
            return []
        return self.parse(body)

    def parse(self, xml_text: str) -> List[NewsItem]:
        """Traverse raw RSS/Atom markup into NewsItems."""
        if not xml_text or not xml_text.strip():
            logger.warning("%s: empty feed body — 0 items ingested.", self.label)
            return []
        parsed = feedparser.parse(io.BytesIO(xml_text.encode("utf-8")))
        if not parsed.entries:
            if getattr(parsed, "bozo", False):
                logger.warning("%s: unparseable feed: %s", self.label, getattr(parsed, "bozo_exception", ""))
            return []
        items = [normalize_feed_entry(entry, self.label) for entry in parsed.entries]
        return [it for it in items if it.is_valid]
