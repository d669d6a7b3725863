"""Free-text query → canonical CoinGecko coin id."""

from __future__ import annotations

import logging
from typing import List

from ._http import sanitize_exc
from .common_types import SearchCandidate
from .errors import CoinstackError
from .ingest_coingecko import CoinGeckoAdapter

logger = logging.getLogger(__name__)

# Majors resolve without a network call.
COMMON_COINS: dict[str, str] = {
    "btc": "bitcoin",
    "bitcoin": "bitcoin",
    "eth": "ethereum",
    "ethereum": "ethereum",
    "sol": "solana",
    "solana": "solana",
    "bnb": "binancecoin",
    "binancecoin": "binancecoin",
    "xrp": "ripple",
    "ripple": "ripple",
    "doge": "dogecoin",
    "dogecoin": "dogecoin",
    "ada": "cardano",
    "cardano": "cardano",
    "avax": "avalanche-2",
    "dot": "polkadot",
    "link": "chainlink",
    "matic": "matic-network",
    "trx": "tron",
    "shib": "shiba-inu",
    "ltc": "litecoin",
    "usdt": "tether",
    "usdc": "usd-coin",
    "pepe": "pepe",
}

# Rank given to unranked search hits so they sort after every ranked one.
UNRANKED = 10000


def pick_candidate(candidates: List[SearchCandidate], query: str) -> str | None:
    """Best id for *query*: exact symbol, then exact name, then top rank."""
    if not candidates:
        return None
    ranked = sorted(candidates, key=lambda c: c.market_cap_rank or UNRANKED)
    q = query.strip().lower()
    for c in ranked:
        if c.symbol.lower() == q:
            return c.id
    for c in ranked:
        if c.name.lower() == q:
            return c.id
    return ranked[0].id


class CoinResolver:
    def __init__(self, gecko: CoinGeckoAdapter) -> None:
        self.gecko = gecko

    async def resolve(self, query: str) -> str:
        """Resolve *query* to a coin id.

        Falls back to the lowercased query itself when search finds
        nothing or fails; a later ``NotFound`` from the detail fetch is
        the authoritative "no such coin" signal.
        """
        q = query.strip().lower()
        if q in COMMON_COINS:
            return COMMON_COINS[q]
        if not q:
            return q
        try:
            candidates = await self.gecko.search(query.strip())
        except CoinstackError as exc:
            logger.info("Coin search for %r failed, using query as id: %s", q, sanitize_exc(exc))
            return q
        return pick_candidate(candidates, q) or q
