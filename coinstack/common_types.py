"""Unified internal schema shared across all providers.

Every adapter normalises its raw payload into one of these records
before handing it to the aggregation layer or the UI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal


def _num(v: Any) -> float:
    try:
        return float(v) if v is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _opt_num(v: Any) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class NewsItem:
    """Provider-agnostic news record."""

    title: str
    url: str
    description: str  # plain text, HTML stripped, length-capped
    source: str  # publisher / site / author
    created_at: int  # epoch milliseconds
    image_url: str | None = None
    provider: str = ""  # "cryptocompare" | "rss2json" | "rss_raw" | "placeholder" | …

    @property
    def is_valid(self) -> bool:
        """Minimal sanity check before aggregation accepts the item."""
        return bool(self.title and self.title.strip())


@dataclass(frozen=True)
class CoinRecord:
    """One CoinGecko ``/coins/markets`` row.  Never mutated after fetch."""

    id: str
    symbol: str
    name: str
    image: str = ""
    current_price: float = 0.0
    market_cap: float = 0.0
    market_cap_rank: int | None = None
    total_volume: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    price_change_percentage_24h: float = 0.0
    ath: float = 0.0
    ath_change_percentage: float = 0.0
    ath_date: str = ""
    atl: float = 0.0
    atl_change_percentage: float = 0.0
    atl_date: str = ""
    circulating_supply: float | None = None
    total_supply: float | None = None
    max_supply: float | None = None
    fully_diluted_valuation: float | None = None
    last_updated: str = ""

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> CoinRecord:
        """Build from a raw row; ``null``/missing numbers become 0 (or None)."""
        rank = d.get("market_cap_rank")
        return cls(
            id=str(d.get("id") or ""),
            symbol=str(d.get("symbol") or ""),
            name=str(d.get("name") or ""),
            image=str(d.get("image") or ""),
            current_price=_num(d.get("current_price")),
            market_cap=_num(d.get("market_cap")),
            market_cap_rank=int(rank) if isinstance(rank, (int, float)) else None,
            total_volume=_num(d.get("total_volume")),
            high_24h=_num(d.get("high_24h")),
            low_24h=_num(d.get("low_24h")),
            price_change_percentage_24h=_num(d.get("price_change_percentage_24h")),
            ath=_num(d.get("ath")),
            ath_change_percentage=_num(d.get("ath_change_percentage")),
            ath_date=str(d.get("ath_date") or ""),
            atl=_num(d.get("atl")),
            atl_change_percentage=_num(d.get("atl_change_percentage")),
            atl_date=str(d.get("atl_date") or ""),
            circulating_supply=_opt_num(d.get("circulating_supply")),
            total_supply=_opt_num(d.get("total_supply")),
            max_supply=_opt_num(d.get("max_supply")),
            fully_diluted_valuation=_opt_num(d.get("fully_diluted_valuation")),
            last_updated=str(d.get("last_updated") or ""),
        )


@dataclass(frozen=True)
class GlobalStats:
    total_market_cap_usd: float = 0.0
    total_volume_usd: float = 0.0
    btc_dominance: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.total_market_cap_usd == 0 and self.total_volume_usd == 0


@dataclass(frozen=True)
class FearGreed:
    value: int
    classification: str
    timestamp: str = ""


@dataclass(frozen=True)
class ChartPoint:
    timestamp: int  # epoch ms
    price: float


@dataclass(frozen=True)
class SearchCandidate:
    id: str
    symbol: str
    name: str
    market_cap_rank: int | None = None


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    balance: float
    contract: str = ""  # empty for the native currency


@dataclass
class PortfolioItem:
    """A holding: manually entered or derived from a wallet lookup."""

    id: str
    coin_id: str
    symbol: str
    name: str
    amount: float
    avg_buy_price: float
    source: Literal["manual", "wallet"] = "manual"
    image: str = ""
    price_change_24h: float | None = None
