"""Service façade: one object wiring client, cache, adapters and prefs.

``MarketDataService`` is what the dashboard talks to.  It owns every
piece of process state (HTTP client, resource cache, in-flight registry)
so tests and embedders can run several independent instances side by
side.  Use it as an async context manager, or call :meth:`aclose`.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import List

import httpx

from .aggregate import NewsAggregator, NewsFeed, default_sources
from .backoff import wait
from .cache import InflightRegistry, ResourceCache
from .common_types import ChartPoint, CoinRecord, FearGreed, GlobalStats, NewsItem, PortfolioItem
from .config import Config
from .errors import NotFound
from .fetch_core import ResilientFetcher
from .ingest_coingecko import ApiCredentials, CoinGeckoAdapter
from .ingest_sentiment import FearGreedAdapter
from .ingest_wallet import EthplorerAdapter
from .onchain import OnChainSnapshot, RandomSimulatedMetrics, SimulatedMetrics, build_snapshot
from .portfolio import PortfolioValuation, value_portfolio, wallet_holdings
from .preferences import PreferenceStore
from .resolver import CoinResolver

logger = logging.getLogger(__name__)


@dataclass
class Dashboard:
    global_stats: GlobalStats
    trending: List[CoinRecord] = field(default_factory=list)
    fear_greed: FearGreed | None = None


@dataclass
class CoinView:
    record: CoinRecord
    history: List[ChartPoint]
    news: List[NewsItem]
    onchain: OnChainSnapshot


class MarketDataService:
    def __init__(
        self,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
        prefs: PreferenceStore | None = None,
        *,
        simulated: SimulatedMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = wait,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or Config()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.config.http_timeout_s,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )
        self._owns_prefs = prefs is None
        self.prefs = prefs if prefs is not None else PreferenceStore(self.config.prefs_path)

        # A key saved from the UI wins over the environment.
        self.credentials = ApiCredentials(self.prefs.api_key() or self.config.coingecko_api_key)
        self.cache = ResourceCache(ttl_s=self.config.cache_ttl_s, clock=clock)
        self.inflight = InflightRegistry()
        self.fetcher = ResilientFetcher(
            self.client,
            self.cache,
            self.inflight,
            default_policy=self.config.default_policy,
            sleep=sleep,
            rand=rand,
        )

        self.gecko = CoinGeckoAdapter(self.fetcher, self.credentials, self.config)
        self.fear_greed = FearGreedAdapter(self.fetcher, self.config)
        self.wallet = EthplorerAdapter(self.fetcher, self.config)
        self.resolver = CoinResolver(self.gecko)
        sources, fallback, cryptocompare = default_sources(self.fetcher, self.config)
        self.news = NewsAggregator(sources, fallback, cryptocompare, self.config)
        self.simulated = simulated or RandomSimulatedMetrics()

    # ── Lifecycle ───────────────────────────────────────────────

    async def __aenter__(self) -> MarketDataService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
        if self._owns_prefs:
            self.prefs.close()

    # ── Credentials ─────────────────────────────────────────────

    def set_api_key(self, key: str) -> None:
        """Swap the market-data key.

        Synchronous so that no refresh can interleave between the
        credential change and the cache clear; entries fetched under the
        old key are gone before the next ``await`` anywhere.
        """
        self.credentials.api_key = (key or "").strip()
        self.cache.clear()
        self.prefs.set_api_key(self.credentials.api_key)
        logger.info("Market-data API key %s; cache cleared.",
                    "set" if self.credentials.has_key else "removed")

    # ── Dashboard ───────────────────────────────────────────────

    async def init_dashboard(self) -> Dashboard:
        global_stats, trending, fng = await asyncio.gather(
            self.gecko.fetch_global(),
            self.gecko.fetch_category("all"),
            self.fear_greed.fetch(),
        )
        return Dashboard(global_stats=global_stats, trending=trending, fear_greed=fng)

    async def refresh_global(self) -> GlobalStats:
        return await self.gecko.fetch_global()

    async def category(self, category: str = "all") -> List[CoinRecord]:
        return await self.gecko.fetch_category(category)

    async def news_feed(self, lang: str = "en") -> NewsFeed:
        return await self.news.feed(lang)

    # ── Coin detail ─────────────────────────────────────────────

    async def load_coin(self, query: str, lang: str = "en") -> CoinView:
        """Resolve *query* and load everything the detail view shows.

        Raises ``NotFound`` for an unknown coin and ``RequestFailed`` when
        the market-data upstream stays unavailable; history and news
        failures degrade to empty / link cards instead.
        """
        coin_id = await self.resolver.resolve(query)
        if not coin_id:
            raise NotFound("Empty coin query")
        record = await self.gecko.fetch_coin(coin_id)
        history, news = await asyncio.gather(
            self.gecko.fetch_history(record.id),
            self.news.coin_news(record.symbol, lang),
        )
        return CoinView(
            record=record,
            history=history,
            news=news,
            onchain=build_snapshot(record, self.simulated),
        )

    # ── Favourites / portfolio ──────────────────────────────────

    async def watchlist(self) -> List[CoinRecord]:
        """Market rows for the favourites, in the order they were added."""
        favorites = self.prefs.favorites()
        rows = {r.id: r for r in await self.gecko.fetch_markets(favorites)}
        return [rows[f] for f in favorites if f in rows]

    def toggle_favorite(self, coin_id: str) -> List[str]:
        favorites = self.prefs.favorites()
        if coin_id in favorites:
            favorites.remove(coin_id)
        else:
            favorites.append(coin_id)
        self.prefs.set_favorites(favorites)
        return favorites

    def add_holding(self, item: PortfolioItem) -> None:
        items = [it for it in self.prefs.portfolio() if it.id != item.id]
        items.append(item)
        self.prefs.set_portfolio(items)

    def remove_holding(self, holding_id: str) -> None:
        self.prefs.set_portfolio([it for it in self.prefs.portfolio() if it.id != holding_id])

    async def portfolio(self) -> PortfolioValuation:
        return await value_portfolio(self.prefs.portfolio(), self.gecko)

    async def wallet_portfolio(self, address: str) -> PortfolioValuation:
        """Value the holdings at *address* and remember it for next time."""
        self.prefs.set_wallet_address(address)
        items = await wallet_holdings(address, self.wallet, self.resolver, self.gecko)
        return await value_portfolio(items, self.gecko)
