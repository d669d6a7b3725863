"""CoinGecko market-data adapter.

Endpoints (all GET, JSON):
 1. /global                     total market cap / volume / BTC dominance
 2. /coins/markets              single or multi coin snapshot
 3. /coins/{id}/market_chart    historical price series
 4. /search                     free-text coin search

An optional demo API key is sent as ``x_cg_demo_api_key``.  It travels as
a volatile param so cached entries are keyed on the bare URL; a key
change clears the cache instead (see ``MarketDataService.set_api_key``).
"""

from __future__ import annotations

import logging
from typing import Any, List

from ._http import as_dict_list, log_fetch_warning
from .common_types import ChartPoint, CoinRecord, GlobalStats, SearchCandidate
from .config import Config
from .errors import CoinstackError, NotFound
from .fetch_core import ResilientFetcher

logger = logging.getLogger(__name__)

# Ecosystem coin lists for the dashboard category tabs.
CATEGORY_COINS: dict[str, str] = {
    "all": "bitcoin,ethereum,binancecoin,solana",
    "eth": "ethereum,shiba-inu,uniswap,pepe",
    "sol": "solana,render-token,bonk,jupiter-exchange-solana",
    "bsc": "binancecoin,pancakeswap-token,trust-wallet-token,cake-monster",
    "arb": "arbitrum,chainlink,lido-dao,gmx",
}

MAX_MARKET_IDS = 50


class ApiCredentials:
    """Mutable holder for the optional market-data API key."""

    def __init__(self, api_key: str = "") -> None:
        self.api_key = api_key.strip()

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    def volatile_params(self) -> dict[str, str]:
        return {"x_cg_demo_api_key": self.api_key} if self.api_key else {}

    def __repr__(self) -> str:
        return f"ApiCredentials(has_key={self.has_key})"


def _markets_params(ids: str, per_page: int) -> dict[str, Any]:
    return {
        "vs_currency": "usd",
        "ids": ids,
        "order": "market_cap_desc",
        "per_page": per_page,
        "page": 1,
        "sparkline": "false",
    }


class CoinGeckoAdapter:
    """Async adapter for the CoinGecko v3 REST API."""

    def __init__(self, fetcher: ResilientFetcher, credentials: ApiCredentials, config: Config) -> None:
        self.fetcher = fetcher
        self.credentials = credentials
        self.config = config
        self.base = config.coingecko_base.rstrip("/")

    async def _get(self, path: str, params: dict[str, Any] | None, retries: int, backoff_ms: float) -> Any:
        return await self.fetcher.fetch(
            f"{self.base}{path}",
            params=params,
            volatile_params=self.credentials.volatile_params(),
            max_retries=retries,
            backoff_ms=backoff_ms,
            use_cache=True,
            policy=self.config.backoff_policy(self.credentials.has_key),
        )

    # ── Endpoint helpers ────────────────────────────────────────

    async def fetch_global(self) -> GlobalStats:
        """GET /global.  Zeroed stats on any failure."""
        try:
            body = await self._get("/global", None, 3, 2000)
        except CoinstackError as exc:
            log_fetch_warning("coingecko_global", exc)
            return GlobalStats()
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.warning("CoinGecko /global returned unexpected shape — using zeros.")
            return GlobalStats()
        return GlobalStats(
            total_market_cap_usd=float((data.get("total_market_cap") or {}).get("usd") or 0),
            total_volume_usd=float((data.get("total_volume") or {}).get("usd") or 0),
            btc_dominance=float((data.get("market_cap_percentage") or {}).get("btc") or 0),
        )

    async def fetch_coin(self, coin_id: str) -> CoinRecord:
        """Market snapshot for one coin.

        Raises ``NotFound`` when the id is unknown (404 *or* an empty
        result list) and ``RequestFailed`` when the upstream stays down.
        """
        cid = coin_id.strip().lower()
        rows = as_dict_list(
            await self._get("/coins/markets", _markets_params(cid, 1), 3, 1000),
            "CoinGecko /coins/markets",
        )
        if not rows:
            raise NotFound(f"No market data for coin {cid!r}", url=f"{self.base}/coins/markets")
        return CoinRecord.from_api(rows[0])

    async def fetch_markets(self, ids: List[str]) -> List[CoinRecord]:
        """Snapshots for up to 50 coins (watchlist / portfolio pricing)."""
        if not ids:
            return []
        id_string = ",".join(ids[:MAX_MARKET_IDS])
        try:
            body = await self._get("/coins/markets", _markets_params(id_string, MAX_MARKET_IDS), 3, 1500)
        except CoinstackError as exc:
            log_fetch_warning("coingecko_markets", exc)
            return []
        return [CoinRecord.from_api(d) for d in as_dict_list(body, "CoinGecko /coins/markets")]

    async def fetch_category(self, category: str = "all") -> List[CoinRecord]:
        """Snapshots for a dashboard category; unknown categories use ``all``."""
        ids = CATEGORY_COINS.get(category) or CATEGORY_COINS["all"]
        try:
            body = await self._get("/coins/markets", _markets_params(ids, 10), 3, 1500)
        except CoinstackError as exc:
            log_fetch_warning(f"coingecko_category_{category}", exc)
            return []
        return [CoinRecord.from_api(d) for d in as_dict_list(body, "CoinGecko /coins/markets")]

    async def fetch_history(self, coin_id: str, days: int = 7) -> List[ChartPoint]:
        """GET /coins/{id}/market_chart – ``[(ms, price), …]`` as ChartPoints."""
        cid = coin_id.strip().lower()
        try:
            body = await self._get(f"/coins/{cid}/market_chart", {"vs_currency": "usd", "days": days}, 2, 2000)
        except CoinstackError as exc:
            log_fetch_warning("coingecko_market_chart", exc)
            return []
        prices = body.get("prices") if isinstance(body, dict) else None
        points: List[ChartPoint] = []
        for row in prices or []:
            if isinstance(row, (list, tuple)) and len(row) >= 2 and row[1] is not None:
                points.append(ChartPoint(timestamp=int(row[0]), price=float(row[1])))
        return points

    async def search(self, query: str) -> List[SearchCandidate]:
        """GET /search?query=…  Errors propagate; the resolver decides."""
        body = await self._get("/search", {"query": query}, 2, 1000)
        coins = body.get("coins") if isinstance(body, dict) else None
        out: List[SearchCandidate] = []
        for c in as_dict_list(coins, "CoinGecko /search"):
            rank = c.get("market_cap_rank")
            out.append(SearchCandidate(
                id=str(c.get("id") or ""),
                symbol=str(c.get("symbol") or ""),
                name=str(c.get("name") or ""),
                market_cap_rank=int(rank) if isinstance(rank, (int, float)) and rank else None,
            ))
        return [c for c in out if c.id]
