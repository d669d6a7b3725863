"""Portfolio valuation and wallet-derived holdings.

Both paths price everything with a single ``fetch_markets`` call, so a
portfolio of N coins costs one upstream request (or zero, when the
watchlist refresh already cached the same id set).
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .common_types import CoinRecord, PortfolioItem
from .ingest_coingecko import CoinGeckoAdapter
from .ingest_wallet import EthplorerAdapter
from .resolver import CoinResolver

logger = logging.getLogger(__name__)


@dataclass
class HoldingValue:
    item: PortfolioItem
    price: float  # 0.0 when the market lookup had no row for the coin
    value: float
    cost: float
    pnl: float


@dataclass
class PortfolioValuation:
    holdings: List[HoldingValue] = field(default_factory=list)
    total_value: float = 0.0
    total_cost: float = 0.0

    @property
    def pnl(self) -> float:
        return self.total_value - self.total_cost

    @property
    def pnl_percent(self) -> float:
        if self.total_cost <= 0:
            return 0.0
        return self.pnl / self.total_cost * 100


def _by_id(records: List[CoinRecord]) -> Dict[str, CoinRecord]:
    return {r.id: r for r in records if r.id}


async def value_portfolio(items: List[PortfolioItem], gecko: CoinGeckoAdapter) -> PortfolioValuation:
    """Current value of *items*; holdings without a price value at 0."""
    if not items:
        return PortfolioValuation()
    ids = list(dict.fromkeys(it.coin_id for it in items))
    prices = _by_id(await gecko.fetch_markets(ids))

    valuation = PortfolioValuation()
    for it in items:
        rec = prices.get(it.coin_id)
        price = rec.current_price if rec else 0.0
        if rec is None:
            logger.debug("No market row for %s — valued at 0.", it.coin_id)
        else:
            it = dataclasses.replace(
                it,
                price_change_24h=rec.price_change_percentage_24h,
                image=it.image or rec.image,
            )
        value = it.amount * price
        cost = it.amount * it.avg_buy_price
        valuation.holdings.append(HoldingValue(item=it, price=price, value=value, cost=cost, pnl=value - cost))
        valuation.total_value += value
        valuation.total_cost += cost
    return valuation


async def wallet_holdings(
    address: str,
    wallet: EthplorerAdapter,
    resolver: CoinResolver,
    gecko: CoinGeckoAdapter,
) -> List[PortfolioItem]:
    """Holdings read from *address*, priced at the current market.

    Balances → symbol resolution → one market lookup.  Tokens whose
    resolved id has no market row are dropped (unlisted / spam tokens).
    Cost basis is unknown for on-chain balances, so ``avg_buy_price`` is
    the current price and PnL starts at zero.
    """
    balances = await wallet.fetch_balances(address)
    if not balances:
        return []

    coin_ids = await asyncio.gather(*(resolver.resolve(bal.symbol) for bal in balances))
    resolved = [(cid, bal.balance) for cid, bal in zip(coin_ids, balances) if cid]

    # Same coin held twice (e.g. bridged variants resolving to one id).
    amounts: Dict[str, float] = {}
    for coin_id, balance in resolved:
        amounts[coin_id] = amounts.get(coin_id, 0.0) + balance

    markets = _by_id(await gecko.fetch_markets(list(amounts)))
    items: List[PortfolioItem] = []
    for coin_id, amount in amounts.items():
        rec = markets.get(coin_id)
        if rec is None:
            logger.debug("Wallet token %s has no market data — skipped.", coin_id)
            continue
        items.append(PortfolioItem(
            id=f"wallet-{coin_id}",
            coin_id=coin_id,
            symbol=rec.symbol.upper(),
            name=rec.name,
            amount=amount,
            avg_buy_price=rec.current_price,
            source="wallet",
            image=rec.image,
            price_change_24h=rec.price_change_percentage_24h,
        ))
    return items
