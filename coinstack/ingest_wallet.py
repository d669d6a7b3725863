"""Address → native + token balances via Ethplorer ``getAddressInfo``.

Ethplorer reports token balances as raw integers plus each token's
declared ``decimals``; the native ETH balance comes both raw (wei) and
pre-scaled.  Balances are live data, so caching is disabled.

Dust balances (airdropped spam tokens, rounding residue) are dropped so
they never reach symbol resolution.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List

from ._http import as_dict_list, log_fetch_warning
from .common_types import TokenBalance
from .config import Config
from .errors import CoinstackError
from .fetch_core import ResilientFetcher

logger = logging.getLogger(__name__)

ETHPLORER_BASE = "https://api.ethplorer.io"
NATIVE_DECIMALS = 18


def scale_balance(raw: Any, decimals: Any) -> float:
    """``raw / 10**decimals`` computed exactly, returned as float.

    Raises ``ValueError`` for non-numeric input.
    """
    try:
        amount = Decimal(str(raw).strip())
        places = int(decimals)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"bad balance {raw!r} / decimals {decimals!r}") from exc
    if not amount.is_finite() or places < 0:
        raise ValueError(f"bad balance {raw!r} / decimals {decimals!r}")
    return float(amount.scaleb(-places))


class EthplorerAdapter:
    """Async adapter for Ethplorer address lookups."""

    def __init__(self, fetcher: ResilientFetcher, config: Config) -> None:
        self.fetcher = fetcher
        self.config = config

    async def fetch_balances(self, address: str) -> List[TokenBalance]:
        """Non-dust balances held by *address*; ``[]`` on any failure."""
        addr = (address or "").strip()
        if not addr:
            return []
        try:
            body = await self.fetcher.fetch(
                f"{ETHPLORER_BASE}/getAddressInfo/{addr}",
                volatile_params={"apiKey": self.config.ethplorer_api_key},
                max_retries=2,
                backoff_ms=1500,
                use_cache=False,
                policy=self.config.default_policy,
            )
        except CoinstackError as exc:
            log_fetch_warning("ethplorer", exc)
            return []
        if not isinstance(body, dict):
            logger.warning("Ethplorer returned %s instead of dict — no balances.", type(body).__name__)
            return []
        return self.parse_balances(body)

    def parse_balances(self, body: dict[str, Any]) -> List[TokenBalance]:
        out: List[TokenBalance] = []
        native = self._native_balance(body.get("ETH"))
        if native is not None:
            out.append(native)

        for tok in as_dict_list(body.get("tokens"), "Ethplorer tokens"):
            info = tok.get("tokenInfo") if isinstance(tok.get("tokenInfo"), dict) else {}
            symbol = str(info.get("symbol") or "").strip()
            if not symbol:
                continue
            raw = tok.get("rawBalance")
            if raw is None:
                raw = tok.get("balance")
            try:
                balance = scale_balance(raw, info.get("decimals", NATIVE_DECIMALS))
            except ValueError as exc:
                logger.debug("Skipping token %s: %s", symbol, exc)
                continue
            if balance < self.config.dust_threshold:
                continue
            out.append(TokenBalance(symbol=symbol, balance=balance, contract=str(info.get("address") or "")))
        return out

    def _native_balance(self, eth: Any) -> TokenBalance | None:
        if not isinstance(eth, dict):
            return None
        try:
            if eth.get("rawBalance") is not None:
                balance = scale_balance(eth["rawBalance"], NATIVE_DECIMALS)
            else:
                balance = float(eth.get("balance") or 0)
        except (TypeError, ValueError) as exc:
            logger.debug("Unreadable native balance: %s", exc)
            return None
        if balance < self.config.dust_threshold:
            return None
        return TokenBalance(symbol="ETH", balance=balance)
