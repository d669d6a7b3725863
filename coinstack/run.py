"""Entry point: ``python -m coinstack.run <command>``

Commands print JSON on stdout; logs go to stderr.

    dashboard            global stats, trending coins, Fear & Greed
    coin QUERY           detail view for one coin (symbol, name or id)
    news [--lang zh]     aggregated market news
    wallet ADDRESS       holdings at an Ethereum address, valued in USD

``coin`` exits 2 when the coin does not exist and 1 when market data is
temporarily unavailable.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from typing import Any, List

from .config import Config
from .errors import NotFound, RequestFailed
from .log_redaction import apply_global_log_redaction
from .portfolio import PortfolioValuation
from .service import MarketDataService

logger = logging.getLogger(__name__)


def _parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="coinstack",
        description="Fetch crypto market data, news and wallet holdings as JSON.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("dashboard", help="Global stats, trending coins and the Fear & Greed index.")

    coin = sub.add_parser("coin", help="Detail view for one coin.")
    coin.add_argument("query", help="Symbol, name or CoinGecko id (e.g. eth, solana).")
    coin.add_argument("--lang", default="en", choices=["en", "zh"], help="News language.")

    news = sub.add_parser("news", help="Aggregated market news.")
    news.add_argument("--lang", default="en", choices=["en", "zh"], help="News language.")

    wallet = sub.add_parser("wallet", help="Holdings at an Ethereum address.")
    wallet.add_argument("address", help="0x… address.")

    return parser.parse_args(argv)


def _valuation_dict(v: PortfolioValuation) -> dict[str, Any]:
    return {
        "holdings": [dataclasses.asdict(h) for h in v.holdings],
        "total_value": v.total_value,
        "total_cost": v.total_cost,
        "pnl": v.pnl,
        "pnl_percent": v.pnl_percent,
    }


async def _run(args: argparse.Namespace) -> tuple[int, Any]:
    async with MarketDataService(Config()) as svc:
        if args.command == "dashboard":
            return 0, dataclasses.asdict(await svc.init_dashboard())
        if args.command == "news":
            return 0, dataclasses.asdict(await svc.news_feed(args.lang))
        if args.command == "wallet":
            return 0, _valuation_dict(await svc.wallet_portfolio(args.address))
        try:
            view = await svc.load_coin(args.query, args.lang)
        except NotFound as exc:
            logger.debug("Coin lookup failed: %s", exc)
            sys.stderr.write(f"{args.query}: not found\n")
            return 2, None
        except RequestFailed as exc:
            logger.warning("Coin lookup failed: %s", exc)
            sys.stderr.write(f"{args.query}: {exc.user_message}\n")
            return 1, None
        return 0, dataclasses.asdict(view)


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=os.environ.get("COINSTACK_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()
    code, result = asyncio.run(_run(args))
    if result is not None:
        sys.stdout.write(json.dumps(result, indent=2, ensure_ascii=False) + "\n")
    return code


if __name__ == "__main__":
    raise SystemExit(main())
