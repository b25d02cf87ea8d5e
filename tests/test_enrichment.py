"""
Tests for the enrichment services over mocked HTTP providers.
"""

from typing import Any, Dict, List

import httpx
import pytest

from sion.core.errors import DataUnavailable
from sion.providers.birdeye import BirdeyeProvider
from sion.providers.dexscreener import DexScreenerProvider
from sion.providers.lunarcrush import LunarCrushProvider
from sion.services.enrichment import LiquidityAnalyzer, MarketAnalysis, PricePredictor, SentimentAnalyzer
from sion.services.enrichment.prediction import project

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def mock_client(routes: Dict[str, Any], calls: List[str]) -> httpx.AsyncClient:
    """Client answering by URL path; unknown paths are 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def birdeye(routes: Dict[str, Any], calls: List[str], api_key: str = "test-key") -> BirdeyeProvider:
    return BirdeyeProvider(api_key, base_url="https://birdeye.test", client=mock_client(routes, calls))


def overview(**fields: Any) -> Dict[str, Any]:
    return {"success": True, "data": {"symbol": "BONK", "price": 0.00002, **fields}}


def candles(closes: List[float]) -> Dict[str, Any]:
    items = [{"c": c, "h": c * 1.01, "l": c * 0.99, "unixTime": 1700000000 + i * 900} for i, c in enumerate(closes)]
    return {"success": True, "data": {"items": items}}


class TestMarketAnalysis:

    @pytest.mark.asyncio
    async def test_missing_api_key_is_unavailable(self):
        calls: List[str] = []
        market = MarketAnalysis(birdeye({}, calls, api_key=""))

        with pytest.raises(DataUnavailable) as exc_info:
            await market.get_market_metrics(BONK)

        assert exc_info.value.source == "birdeye"
        assert calls == []

    @pytest.mark.asyncio
    async def test_market_metrics_are_parsed_and_cached(self):
        calls: List[str] = []
        routes = {"/defi/token_overview": overview(marketCap=1.5e9, v24hUSD=2.5e8, holder=700000)}
        market = MarketAnalysis(birdeye(routes, calls))

        first = await market.get_market_metrics(BONK)
        second = await market.get_market_metrics(BONK)

        assert first.data["marketCap"] == 1.5e9
        assert first.data["volume24h"] == 2.5e8
        assert first.data["holders"] == 700000
        # Absent fields stay absent rather than zero
        assert first.data["fullyDilutedValuation"] is None
        assert second is first
        assert calls == ["/defi/token_overview"]

    @pytest.mark.asyncio
    async def test_empty_response_is_not_cached(self):
        calls: List[str] = []
        routes = {"/defi/token_overview": {"success": False, "data": None, "message": "token not found"}}
        market = MarketAnalysis(birdeye(routes, calls))

        for _ in range(2):
            with pytest.raises(DataUnavailable):
                await market.get_market_metrics(BONK)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_meme_metrics_scores(self):
        calls: List[str] = []
        routes = {
            "/defi/token_overview": overview(
                trade24h=12000,
                trade24hChangePercent=40,
                uniqueWallet24h=3000,
                uniqueWallet24hChangePercent=20,
                buy24h=60,
                sell24h=40,
                priceChange24hPercent=12.5,
                extensions={"twitter": "https://x.com/bonk", "discord": None},
            )
        }
        market = MarketAnalysis(birdeye(routes, calls))

        snapshot = await market.get_meme_metrics(BONK)

        assert snapshot.data["viralityScore"] == 65.0
        assert snapshot.data["buyRatio"] == 0.6
        assert snapshot.data["socialLinks"] == {"twitter": "https://x.com/bonk"}
        assert snapshot.to_dict()["version"] == 1

    @pytest.mark.asyncio
    async def test_whale_trades_filtered_by_threshold(self):
        calls: List[str] = []
        trades = [
            {"txHash": "a", "side": "buy", "owner": "w1", "volumeUSD": 25000, "blockUnixTime": 1},
            {"txHash": "b", "side": "sell", "owner": "w2", "volumeUSD": 500, "blockUnixTime": 2},
            {"txHash": "c", "side": "sell", "owner": "w3", "from": {"uiAmount": 1000, "price": 15}, "blockUnixTime": 3},
        ]
        routes = {"/defi/txs/token": {"success": True, "data": {"items": trades}}}
        market = MarketAnalysis(birdeye(routes, calls), whale_trade_min_usd=10000)

        snapshot = await market.track_whale_activity(BONK)

        assert [t["txHash"] for t in snapshot.data["whaleTrades"]] == ["a", "c"]
        assert snapshot.data["netFlowUsd"] == 10000.0
        assert snapshot.data["tradesScanned"] == 3

    @pytest.mark.asyncio
    async def test_watch_keeps_trades_inside_the_window(self):
        calls: List[str] = []
        now = 1_700_000_000
        trades = [
            {"txHash": "old", "side": "buy", "owner": "w1", "volumeUSD": 90000, "blockUnixTime": now - 900},
            {"txHash": "a", "side": "buy", "owner": "w1", "volumeUSD": 25000, "blockUnixTime": now - 120},
            {"txHash": "b", "side": "sell", "owner": "w2", "volumeUSD": 500, "blockUnixTime": now - 30},
        ]
        routes = {"/defi/txs/token": {"success": True, "data": {"items": trades}}}
        market = MarketAnalysis(birdeye(routes, calls), whale_trade_min_usd=10000, clock=lambda: now)

        snapshot = await market.watch_token_trades(BONK, 300)

        assert [t["txHash"] for t in snapshot.data["trades"]] == ["b", "a"]
        assert [t["txHash"] for t in snapshot.data["whaleTrades"]] == ["a"]
        assert snapshot.data["buyCount"] == 1
        assert snapshot.data["sellCount"] == 1
        assert snapshot.data["uniqueTraders"] == 2
        assert snapshot.data["netFlowUsd"] == 24500.0
        assert snapshot.data["windowSeconds"] == 300
        assert snapshot.data["complete"] is True

    @pytest.mark.asyncio
    async def test_ticker_without_token_list_is_unavailable(self):
        market = MarketAnalysis(birdeye({}, []))
        with pytest.raises(DataUnavailable):
            await market.get_market_metrics("BONK")


class TestSentimentAnalyzer:

    @pytest.mark.asyncio
    async def test_social_only_reading_records_missing_market(self):
        calls: List[str] = []
        lunarcrush = LunarCrushProvider(
            "lc-key",
            base_url="https://lunarcrush.test",
            client=mock_client({"/coins/bonk/v1": {"data": {"sentiment": 80, "galaxy_score": 75}}}, calls),
        )
        analyzer = SentimentAnalyzer(lunarcrush, market=MarketAnalysis(birdeye({}, [], api_key="")))

        snapshot = await analyzer.analyze("BONK")

        assert snapshot.data["overall"] == "bullish"
        assert snapshot.source == "lunarcrush"
        assert "market" in snapshot.data["unavailable"]

    @pytest.mark.asyncio
    async def test_no_signals_is_unavailable(self):
        lunarcrush = LunarCrushProvider("lc-key", base_url="https://lunarcrush.test", client=mock_client({}, []))
        analyzer = SentimentAnalyzer(lunarcrush)

        with pytest.raises(DataUnavailable):
            await analyzer.analyze("NOPE")


class TestLiquidityAnalyzer:

    def pair(self, dex: str, liquidity: float, h1: float = 100.0, h24: float = 2400.0) -> Dict[str, Any]:
        return {
            "chainId": "solana",
            "dexId": dex,
            "pairAddress": f"{dex}-pair",
            "quoteToken": {"symbol": "SOL"},
            "liquidity": {"usd": liquidity},
            "volume": {"h1": h1, "h24": h24},
            "txns": {"h24": {"buys": 10, "sells": 4}},
        }

    def analyzer(self, pairs: Any) -> LiquidityAnalyzer:
        client = mock_client({f"/latest/dex/tokens/{BONK}": {"pairs": pairs}}, [])
        provider = DexScreenerProvider(base_url="https://dexscreener.test/latest/dex", client=client)
        return LiquidityAnalyzer(provider, min_liquidity_usd=100000)

    @pytest.mark.asyncio
    async def test_pools_below_minimum_are_counted_not_listed(self):
        analyzer = self.analyzer([
            self.pair("raydium", 500000),
            self.pair("orca", 50000),
            {**self.pair("uniswap", 1e9), "chainId": "ethereum"},
        ])

        snapshot = await analyzer.analyze_liquidity(BONK)

        assert [p["dex"] for p in snapshot.data["pools"]] == ["raydium"]
        assert snapshot.data["poolsBelowMinimum"] == 1
        assert snapshot.data["totalLiquidityUsd"] == 550000
        assert set(snapshot.data["byDex"]) == {"raydium", "orca"}

    @pytest.mark.asyncio
    async def test_trend_from_hourly_rate(self):
        analyzer = self.analyzer([self.pair("raydium", 500000, h1=200, h24=2400)])

        snapshot = await analyzer.predict_liquidity_trends(BONK)

        assert snapshot.data["activityTrend"] == "rising"
        assert snapshot.data["netFlow"] == "inflow"

    @pytest.mark.asyncio
    async def test_unlisted_token_gets_bonding_curve_strategy(self):
        analyzer = self.analyzer(None)

        snapshot = await analyzer.generate_optimal_strategy(BONK)

        assert snapshot.data["stage"] == "bonding-curve"


class TestPricePredictor:

    def test_projection_from_rising_candles(self):
        closes = [1.0 + 0.01 * i for i in range(12)]
        items = candles(closes)["data"]["items"]

        outlook = project(items, "24h")

        assert outlook["expectedChangePct"] > 0
        assert outlook["range"]["low"] < outlook["target"] < outlook["range"]["high"]
        assert outlook["supportLevels"] == sorted(outlook["supportLevels"])
        assert outlook["resistanceLevels"] == sorted(outlook["resistanceLevels"], reverse=True)

    @pytest.mark.asyncio
    async def test_too_few_candles_is_unavailable(self):
        calls: List[str] = []
        predictor = PricePredictor(birdeye({"/defi/ohlcv": candles([1.0, 1.1, 1.2])}, calls))

        with pytest.raises(DataUnavailable):
            await predictor.predict(BONK, "24h")

    @pytest.mark.asyncio
    async def test_unsupported_timeframe(self):
        predictor = PricePredictor(birdeye({}, []))
        with pytest.raises(DataUnavailable):
            await predictor.predict(BONK, "5y")
