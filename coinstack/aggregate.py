"""Multi-source news aggregation: fan-out → merge → sort → dedupe → fallback.

``NewsAggregator.feed(lang)`` always returns renderable content:

1. All adapters for the language run concurrently; a failing adapter
   contributes zero items, never an error.
2. Results are merged, sorted newest first and de-duplicated by title.
3. Below ``news_min_items`` the broad-coverage fallback adapter is merged
   in as well.
4. Still nothing → static placeholder items saying live data is
   unavailable.

The final list is split into a flash stream (most recent N) and an
illustrated-articles stream (items with an image, backfilled with
image-less items when short).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import List
from urllib.parse import quote

from ._http import sanitize_exc
from .common_types import NewsItem
from .config import Config
from .fetch_core import ResilientFetcher
from .ingest_news import CryptoCompareNewsAdapter, NewsSource, RawXmlFeedAdapter, Rss2JsonAdapter

logger = logging.getLogger(__name__)

COIN_NEWS_LIMIT = 5

# (label, feed url) per language.
RSS2JSON_FEEDS: dict[str, list[tuple[str, str]]] = {
    "en": [
        ("CoinDesk", "https://www.coindesk.com/arc/outboundfeeds/rss/"),
        ("Decrypt", "https://decrypt.co/feed"),
    ],
    "zh": [
        ("PANews", "https://www.panewslab.com/rss/zh/index.xml"),
    ],
}
RAW_XML_FEEDS: dict[str, list[tuple[str, str]]] = {
    "en": [("Cointelegraph", "https://cointelegraph.com/rss")],
    "zh": [("BlockBeats", "https://api.theblockbeats.news/v2/rss/newsflash")],
}
FALLBACK_FEED = (
    "Google News",
    "https://news.google.com/rss/search?q=cryptocurrency&hl=en-US&gl=US&ceid=US:en",
)


@dataclass
class NewsFeed:
    flash: List[NewsItem] = field(default_factory=list)
    articles: List[NewsItem] = field(default_factory=list)
    placeholder: bool = False  # True when live data was unavailable


# ── Pure helpers ────────────────────────────────────────────────

def sort_newest_first(items: Iterable[NewsItem]) -> List[NewsItem]:
    return sorted(items, key=lambda it: it.created_at, reverse=True)


def dedupe_by_title(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Keep the first item for each exact title."""
    seen: set[str] = set()
    out: List[NewsItem] = []
    for it in items:
        if it.title in seen:
            continue
        seen.add(it.title)
        out.append(it)
    return out


def merge(*batches: Iterable[NewsItem]) -> List[NewsItem]:
    """Valid items from all batches, newest first, one per title."""
    pooled = [it for batch in batches for it in batch if it.is_valid]
    return dedupe_by_title(sort_newest_first(pooled))


def partition(items: Sequence[NewsItem], flash_limit: int, article_limit: int) -> tuple[List[NewsItem], List[NewsItem]]:
    """Split into ``(flash, articles)``."""
    flash = list(items[:flash_limit])
    articles = [it for it in items if it.image_url][:article_limit]
    if len(articles) < article_limit:
        taken = {it.title for it in articles}
        for it in items:
            if len(articles) >= article_limit:
                break
            if it.title not in taken:
                articles.append(it)
                taken.add(it.title)
    return flash, articles


def placeholder_news(now_ms: int) -> List[NewsItem]:
    """Static cards shown when every live source failed."""
    return [
        NewsItem(
            title="Live news temporarily unavailable",
            url="https://www.coindesk.com/",
            description="All news sources are unreachable right now. Headlines will reappear automatically on the next refresh.",
            source="coinstack",
            created_at=now_ms,
            provider="placeholder",
        ),
        NewsItem(
            title="Browse the latest crypto headlines on CoinDesk",
            url="https://www.coindesk.com/latest-crypto-news/",
            description="Live data unavailable — open CoinDesk for the latest market coverage.",
            source="CoinDesk",
            created_at=now_ms,
            provider="placeholder",
        ),
        NewsItem(
            title="Market overview on CoinGecko",
            url="https://www.coingecko.com/en/news",
            description="Live data unavailable — CoinGecko aggregates news and market data for every listed coin.",
            source="CoinGecko",
            created_at=now_ms,
            provider="placeholder",
        ),
    ]


def coin_link_cards(symbol: str, now_ms: int) -> List[NewsItem]:
    """Link cards for a coin when no news source has anything on it."""
    sym = symbol.upper()
    return [
        NewsItem(
            title=f"{sym} Market Updates - Google News",
            url=f"https://www.google.com/search?q={quote(sym)}+crypto+news&tbm=nws",
            description=f"Click to view the latest aggregated news stories for {sym} on Google News.",
            source="Google News",
            created_at=now_ms,
            provider="placeholder",
        ),
        NewsItem(
            title=f"{sym} Community Discussion",
            url=f"https://twitter.com/search?q=%24{quote(sym)}&src=typed_query",
            description=f"See what the community is saying about ${sym} on X (Twitter).",
            source="X (Twitter)",
            created_at=now_ms,
            provider="placeholder",
        ),
        NewsItem(
            title=f"{sym} Price & Analysis",
            url=f"https://www.coingecko.com/en/coins/{quote(symbol.lower())}",
            description="Deep dive into on-chain data and price action on CoinGecko.",
            source="CoinGecko",
            created_at=now_ms,
            provider="placeholder",
        ),
    ]


# ── Aggregator ──────────────────────────────────────────────────

class NewsAggregator:
    def __init__(
        self,
        sources: dict[str, List[NewsSource]],
        fallback: NewsSource | None,
        cryptocompare: CryptoCompareNewsAdapter | None,
        config: Config,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sources = sources
        self.fallback = fallback
        self.cryptocompare = cryptocompare
        self.config = config
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _collect(self, sources: Sequence[NewsSource]) -> List[NewsItem]:
        results = await asyncio.gather(*(s.fetch() for s in sources), return_exceptions=True)
        items: List[NewsItem] = []
        for src, res in zip(sources, results):
            if isinstance(res, Exception):
                logger.warning("News source %s raised: %s", getattr(src, "label", src), sanitize_exc(res))
                continue
            if isinstance(res, BaseException):
                raise res
            logger.debug("News source %s: %d items", getattr(src, "label", src), len(res))
            items.extend(res)
        return items

    async def feed(self, lang: str = "en") -> NewsFeed:
        """Market news for *lang*; never empty, never raises on upstream failure."""
        sources = self.sources.get(lang) or self.sources.get("en") or []
        items = merge(await self._collect(sources))

        if len(items) < self.config.news_min_items and self.fallback is not None:
            logger.info("Only %d news items for %r — adding fallback source %s.",
                        len(items), lang, self.fallback.label)
            items = merge(items, await self._collect([self.fallback]))

        placeholder = False
        if not items:
            logger.warning("No live news from any source — serving placeholders.")
            items = placeholder_news(self._now_ms())
            placeholder = True

        flash, articles = partition(items, self.config.flash_limit, self.config.article_limit)
        return NewsFeed(flash=flash, articles=articles, placeholder=placeholder)

    async def coin_news(self, symbol: str, lang: str = "en") -> List[NewsItem]:
        """Latest few stories for one coin, or link cards when there are none."""
        items: List[NewsItem] = []
        if self.cryptocompare is not None and symbol.strip():
            sym = symbol.strip().upper()
            items = await self.cryptocompare.fetch_news(categories=sym, lang="ZH" if lang == "zh" else "EN")
            if not items and lang == "zh":
                items = await self.cryptocompare.fetch_news(categories=sym, lang="EN")
        if items:
            return items[:COIN_NEWS_LIMIT]
        return coin_link_cards(symbol.strip() or "crypto", self._now_ms())


def default_sources(
    fetcher: ResilientFetcher, config: Config,
) -> tuple[dict[str, List[NewsSource]], NewsSource, CryptoCompareNewsAdapter]:
    """Production adapter sets: ``(sources_by_lang, fallback, cryptocompare)``."""
    sources: dict[str, List[NewsSource]] = {}
    for lang in ("en", "zh"):
        lang_sources: List[NewsSource] = [
            CryptoCompareNewsAdapter(fetcher, config, lang=lang.upper(), label=f"cryptocompare_{lang}"),
        ]
        lang_sources.extend(Rss2JsonAdapter(fetcher, config, url, label) for label, url in RSS2JSON_FEEDS[lang])
        lang_sources.extend(RawXmlFeedAdapter(fetcher, config, url, label) for label, url in RAW_XML_FEEDS[lang])
        sources[lang] = lang_sources
    fallback = Rss2JsonAdapter(fetcher, config, FALLBACK_FEED[1], FALLBACK_FEED[0])
    cryptocompare = CryptoCompareNewsAdapter(fetcher, config, label="cryptocompare")
    return sources, fallback, cryptocompare
