"""
Market analysis over Birdeye data: headline metrics, meme-style activity
metrics, correlation with SOL and whale trade tracking.
"""

import logging
import math
import time
from statistics import mean
from typing import Any, Callable, Dict, List, Optional

from ...core.errors import DataUnavailable
from ...providers.birdeye import BirdeyeProvider
from ...providers.jupiter import NATIVE_SOL_MINT, JupiterProvider
from .base import EnrichmentService, EnrichmentSnapshot, as_float

logger = logging.getLogger(__name__)

# Birdeye's overview only carries 1h and 24h activity windows
_ACTIVITY_WINDOWS = {"1h": "1h", "24h": "24h", "7d": "24h", "30d": "24h"}
_SOCIAL_LINKS = ("twitter", "telegram", "discord", "website")


def _pct_change_series(values: List[float]) -> List[float]:
    return [
        (curr - prev) / prev
        for prev, curr in zip(values, values[1:])
        if prev
    ]


def closes(candles: List[Dict[str, Any]]) -> List[float]:
    values = (as_float(candle.get("c")) for candle in candles)
    return [v for v in values if v is not None]


def pearson(xs: List[float], ys: List[float]) -> Optional[float]:
    n = min(len(xs), len(ys))
    if n < 3:
        return None
    xs, ys = xs[-n:], ys[-n:]
    mx, my = mean(xs), mean(ys)
    cov = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    vx = sum((x - mx) ** 2 for x in xs)
    vy = sum((y - my) ** 2 for y in ys)
    if vx == 0 or vy == 0:
        return None
    return cov / math.sqrt(vx * vy)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class MarketAnalysis(EnrichmentService):
    """Market and meme metrics for Solana tokens."""

    name = "market"

    def __init__(
        self,
        birdeye: BirdeyeProvider,
        resolver: Optional[JupiterProvider] = None,
        whale_trade_min_usd: float = 10000,
        cache_ttl_seconds: int = 60,
        cache_size: int = 512,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(resolver, cache_ttl_seconds, cache_size)
        self._birdeye = birdeye
        self.whale_trade_min_usd = whale_trade_min_usd
        self._clock = clock

    async def _overview(self, address: str) -> Dict[str, Any]:
        return await self._birdeye.get_token_overview(address)

    async def get_market_metrics(self, token: str) -> EnrichmentSnapshot:
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            overview = await self._overview(address)
            price = as_float(overview.get("price"))
            if price is None:
                raise DataUnavailable(f"Birdeye has no price for {token}", source=self._birdeye.name)
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                timeframe="24h",
                data={
                    "symbol": overview.get("symbol"),
                    "price": price,
                    "priceChange24hPct": as_float(overview.get("priceChange24hPercent")),
                    "volume24h": as_float(overview.get("v24hUSD")),
                    "marketCap": as_float(overview.get("marketCap", overview.get("mc"))),
                    "fullyDilutedValuation": as_float(overview.get("fdv")),
                    "circulatingSupply": as_float(overview.get("circulatingSupply")),
                    "totalSupply": as_float(overview.get("supply")),
                    "holders": overview.get("holder"),
                    "transactions24h": overview.get("trade24h"),
                    "liquidity": as_float(overview.get("liquidity")),
                },
            )

        return await self._cached(f"metrics:{address}", load)

    async def get_meme_metrics(self, token: str, timeframe: str = "24h") -> EnrichmentSnapshot:
        """Activity-driven metrics: wallet growth, trade growth, buy pressure."""
        address = await self.resolve_address(token)
        window = _ACTIVITY_WINDOWS.get(timeframe, "24h")

        async def load() -> EnrichmentSnapshot:
            overview = await self._overview(address)
            trades = overview.get(f"trade{window}")
            trade_growth = as_float(overview.get(f"trade{window}ChangePercent"))
            wallets = overview.get(f"uniqueWallet{window}")
            wallet_growth = as_float(overview.get(f"uniqueWallet{window}ChangePercent"))
            buys = as_float(overview.get(f"buy{window}"))
            sells = as_float(overview.get(f"sell{window}"))
            price_change = as_float(overview.get(f"priceChange{window}Percent"))

            if trades is None and wallets is None:
                raise DataUnavailable(f"No activity data for {token}", source=self._birdeye.name)

            buy_ratio = None
            if buys is not None and sells is not None and buys + sells > 0:
                buy_ratio = buys / (buys + sells)
            virality = None
            if trade_growth is not None and wallet_growth is not None:
                virality = round(_clamp(50 + (trade_growth + wallet_growth) / 4), 1)

            extensions = overview.get("extensions") or {}
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                timeframe=timeframe,
                data={
                    "window": window,
                    "viralityScore": virality,
                    "communityGrowthPct": wallet_growth,
                    "uniqueWallets": wallets,
                    "tradeGrowthPct": trade_growth,
                    "trades": trades,
                    "buyRatio": round(buy_ratio, 4) if buy_ratio is not None else None,
                    "trendStrengthPct": price_change,
                    "holders": overview.get("holder"),
                    "socialLinks": {k: extensions.get(k) for k in _SOCIAL_LINKS if extensions.get(k)},
                },
            )

        return await self._cached(f"meme:{address}:{window}:{timeframe}", load)

    async def analyze_market_correlation(self, token: str, timeframe: str = "24h") -> EnrichmentSnapshot:
        """Correlation of the token's candle returns with SOL's."""
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            token_candles = await self._birdeye.get_ohlcv(address, timeframe)
            sol_candles = await self._birdeye.get_ohlcv(NATIVE_SOL_MINT, timeframe)
            token_closes = closes(token_candles)
            sol_closes = closes(sol_candles)
            correlation = pearson(_pct_change_series(token_closes), _pct_change_series(sol_closes))
            if correlation is None:
                raise DataUnavailable(f"Not enough price history to correlate {token}", source=self._birdeye.name)
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                timeframe=timeframe,
                data={
                    "benchmark": "SOL",
                    "correlation": round(correlation, 4),
                    "samples": min(len(token_closes), len(sol_closes)),
                },
            )

        return await self._cached(f"correlation:{address}:{timeframe}", load)

    async def track_whale_activity(self, token: str) -> EnrichmentSnapshot:
        """Recent swaps at or above the whale threshold."""
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            trades = await self._birdeye.get_recent_trades(address)
            whales = [t for t in map(_trade_summary, trades) if self._is_whale(t)]
            buy_volume = sum(w["volumeUsd"] for w in whales if w["side"] == "buy")
            sell_volume = sum(w["volumeUsd"] for w in whales if w["side"] == "sell")
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                data={
                    "thresholdUsd": self.whale_trade_min_usd,
                    "tradesScanned": len(trades),
                    "whaleTrades": whales,
                    "whaleBuyVolumeUsd": round(buy_volume, 2),
                    "whaleSellVolumeUsd": round(sell_volume, 2),
                    "netFlowUsd": round(buy_volume - sell_volume, 2),
                },
            )

        return await self._cached(f"whales:{address}", load)

    async def watch_token_trades(self, token: str, duration_seconds: int) -> EnrichmentSnapshot:
        """Swaps of ``token`` in the last ``duration_seconds``, newest first.

        Birdeye serves one bounded page of recent swaps, so on a busy token
        the page may not reach back to the start of the window. ``complete``
        is False in that case.
        """
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            trades = await self._birdeye.get_recent_trades(address)
            since = self._clock() - duration_seconds
            in_window = [
                _trade_summary(trade) for trade in trades
                if (as_float(trade.get("blockUnixTime")) or 0) >= since
            ]
            in_window.sort(key=lambda t: t["blockTime"] or 0, reverse=True)
            buy_volume = sum(t["volumeUsd"] or 0 for t in in_window if t["side"] == "buy")
            sell_volume = sum(t["volumeUsd"] or 0 for t in in_window if t["side"] == "sell")
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                data={
                    "windowSeconds": duration_seconds,
                    "complete": len(in_window) < len(trades),
                    "tradeCount": len(in_window),
                    "buyCount": sum(1 for t in in_window if t["side"] == "buy"),
                    "sellCount": sum(1 for t in in_window if t["side"] == "sell"),
                    "uniqueTraders": len({t["owner"] for t in in_window if t["owner"]}),
                    "buyVolumeUsd": round(buy_volume, 2),
                    "sellVolumeUsd": round(sell_volume, 2),
                    "netFlowUsd": round(buy_volume - sell_volume, 2),
                    "whaleTrades": [t for t in in_window if self._is_whale(t)],
                    "trades": in_window,
                },
            )

        return await self._cached(f"watch:{address}:{duration_seconds}", load)

    def _is_whale(self, trade: Dict[str, Any]) -> bool:
        return trade["volumeUsd"] is not None and trade["volumeUsd"] >= self.whale_trade_min_usd


def _trade_summary(trade: Dict[str, Any]) -> Dict[str, Any]:
    volume = _trade_volume_usd(trade)
    return {
        "txHash": trade.get("txHash"),
        "side": trade.get("side"),
        "owner": trade.get("owner"),
        "volumeUsd": round(volume, 2) if volume is not None else None,
        "blockTime": trade.get("blockUnixTime"),
    }


def _trade_volume_usd(trade: Dict[str, Any]) -> Optional[float]:
    volume = as_float(trade.get("volumeUSD"))
    if volume is not None:
        return volume
    leg = trade.get("from") or {}
    amount, price = as_float(leg.get("uiAmount")), as_float(leg.get("price"))
    if amount is None or price is None:
        return None
    return amount * price
