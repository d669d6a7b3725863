"""Tests for coinstack.service.MarketDataService and the CLI wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest

from coinstack import run
from coinstack.common_types import PortfolioItem
from coinstack.errors import NotFound, RequestFailed
from coinstack.preferences import PreferenceStore
from coinstack.service import MarketDataService
from upstream_stub import RecordingSleep, Upstream, json_reply, make_config

ROWS = {
    "bitcoin": {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 65000,
                "market_cap": 1.0e12, "total_volume": 2.0e10, "max_supply": 21e6, "circulating_supply": 19.7e6},
    "solana": {"id": "solana", "symbol": "sol", "name": "Solana", "current_price": 150,
               "market_cap": 7.0e10, "total_volume": 3.0e9},
    "ethereum": {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "current_price": 3000,
                 "market_cap": 3.6e11, "total_volume": 1.5e10},
}
GLOBAL_BODY = {"data": {"total_market_cap": {"usd": 2.4e12}, "total_volume": {"usd": 9e10},
                        "market_cap_percentage": {"btc": 52.0}}}


def markets_reply(request: httpx.Request) -> httpx.Response:
    ids = request.url.params.get("ids", "").split(",")
    return json_reply([ROWS[i] for i in ids if i in ROWS])


class StubMetrics:
    def net_flow(self, record):
        return 0

    def holders(self, record):
        return 777


def _service(up: Upstream, prefs: PreferenceStore | None = None, **cfg) -> MarketDataService:
    return MarketDataService(
        make_config(**cfg),
        client=up.client(),
        prefs=prefs or PreferenceStore(),
        simulated=StubMetrics(),
        sleep=RecordingSleep(),
    )


class TestApiKey:
    def test_set_api_key_clears_cache_and_persists(self):
        up = Upstream().add("/global", json_reply(GLOBAL_BODY))
        prefs = PreferenceStore()
        svc = _service(up, prefs)

        async def scenario():
            await svc.refresh_global()
            await svc.refresh_global()
            assert len(svc.cache) == 1
            svc.set_api_key(" CG-new ")
            assert len(svc.cache) == 0
            await svc.refresh_global()

        asyncio.run(scenario())
        assert len(up.calls("/global")) == 2
        assert "x_cg_demo_api_key" not in up.requests[0].url.params
        assert up.requests[1].url.params["x_cg_demo_api_key"] == "CG-new"
        assert prefs.api_key() == "CG-new"

    def test_saved_key_wins_over_environment(self):
        prefs = PreferenceStore()
        prefs.set_api_key("CG-saved")
        svc = _service(Upstream(), prefs, coingecko_api_key="CG-env")
        assert svc.credentials.api_key == "CG-saved"

    def test_removing_key(self):
        prefs = PreferenceStore()
        svc = _service(Upstream(), prefs, coingecko_api_key="CG-env")
        svc.set_api_key("")
        assert not svc.credentials.has_key
        assert prefs.api_key() == ""


class TestDashboard:
    def test_init_dashboard(self):
        up = (Upstream()
              .add("/global", json_reply(GLOBAL_BODY))
              .add("/coins/markets", markets_reply)
              .add("api.alternative.me/fng/", json_reply({"data": [{"value": "40", "value_classification": "Fear"}]})))
        dash = asyncio.run(_service(up).init_dashboard())
        assert dash.global_stats.btc_dominance == 52.0
        assert {r.id for r in dash.trending} == {"bitcoin", "ethereum", "solana"}
        assert dash.fear_greed is not None
        assert dash.fear_greed.classification == "Fear"

    def test_dashboard_degrades(self):
        up = Upstream().add("", httpx.Response(500))
        dash = asyncio.run(_service(up).init_dashboard())
        assert dash.global_stats.is_empty
        assert dash.trending == []
        assert dash.fear_greed is None


class TestLoadCoin:
    def test_full_view(self):
        up = (Upstream()
              .add("/coins/markets", markets_reply)
              .add("/market_chart", json_reply({"prices": [[1, 60000.0], [2, 65000.0]]}))
              .add("/data/v2/news/", json_reply({"Data": [
                  {"title": "BTC rallies", "url": "https://n/1", "published_on": 1_700_000_000},
              ]})))
        view = asyncio.run(_service(up).load_coin("BTC"))
        assert view.record.id == "bitcoin"
        assert [p.price for p in view.history] == [60000.0, 65000.0]
        assert [n.title for n in view.news] == ["BTC rallies"]
        assert view.onchain.holders == 777
        assert view.onchain.unlock_progress == pytest.approx(19.7 / 21 * 100, abs=0.01)
        assert up.calls("/data/v2/news/")[0].url.params["categories"] == "BTC"

    def test_unknown_coin_not_found(self):
        up = (Upstream()
              .add("/search", json_reply({"coins": []}))
              .add("/coins/markets", json_reply([])))
        with pytest.raises(NotFound):
            asyncio.run(_service(up).load_coin("nosuchcoin"))
        assert up.calls("/market_chart") == []

    def test_outage_request_failed(self):
        up = Upstream().add("/coins/markets", httpx.Response(503))
        with pytest.raises(RequestFailed):
            asyncio.run(_service(up).load_coin("eth"))
        assert up.calls("/market_chart") == []

    def test_empty_query_not_found(self):
        with pytest.raises(NotFound):
            asyncio.run(_service(Upstream()).load_coin("  "))


class TestFavoritesAndPortfolio:
    def test_watchlist_keeps_favorite_order(self):
        up = Upstream().add("/coins/markets", markets_reply)
        svc = _service(up)
        svc.toggle_favorite("solana")
        assert svc.toggle_favorite("bitcoin") == ["solana", "bitcoin"]
        rows = asyncio.run(svc.watchlist())
        assert [r.id for r in rows] == ["solana", "bitcoin"]
        assert svc.toggle_favorite("solana") == ["bitcoin"]

    def test_manual_portfolio(self):
        up = Upstream().add("/coins/markets", markets_reply)
        svc = _service(up)
        svc.add_holding(PortfolioItem(id="h1", coin_id="bitcoin", symbol="BTC", name="Bitcoin",
                                      amount=2, avg_buy_price=50000))
        val = asyncio.run(svc.portfolio())
        assert val.total_value == 130000
        assert val.pnl == 30000
        assert val.pnl_percent == pytest.approx(30.0)
        svc.remove_holding("h1")
        assert svc.prefs.portfolio() == []

    def test_wallet_portfolio_remembers_address(self):
        up = (Upstream()
              .add("/getAddressInfo/", json_reply({"ETH": {"rawBalance": "1000000000000000000"}}))
              .add("/coins/markets", markets_reply))
        svc = _service(up)
        val = asyncio.run(svc.wallet_portfolio("0xfeed"))
        assert val.total_value == 3000
        assert val.pnl == 0
        assert svc.prefs.wallet_address() == "0xfeed"


class TestContextManager:
    def test_owned_client_closed(self):
        async def scenario():
            async with MarketDataService(make_config(), prefs=PreferenceStore()) as svc:
                client = svc.client
            return client.is_closed

        assert asyncio.run(scenario())


class FakeService:
    error: Exception | None = None

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def load_coin(self, query, lang="en"):
        raise self.error


class TestCli:
    def test_parse_args(self):
        args = run._parse_args(["coin", "eth", "--lang", "zh"])
        assert args.command == "coin"
        assert args.query == "eth"
        assert args.lang == "zh"

    def test_coin_not_found_exit_code(self, capsys):
        FakeService.error = NotFound("nope")
        with patch.object(run, "MarketDataService", FakeService):
            assert run.main(["coin", "nosuchcoin"]) == 2
        assert "not found" in capsys.readouterr().err

    def test_coin_unavailable_exit_code(self, capsys):
        FakeService.error = RequestFailed("https://x", None, 3)
        with patch.object(run, "MarketDataService", FakeService):
            assert run.main(["coin", "eth"]) == 1
        assert "temporarily unavailable" in capsys.readouterr().err
