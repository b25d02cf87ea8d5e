"""
DEX liquidity analysis from DexScreener pairs.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from ...core.errors import DataUnavailable
from ...providers.dexscreener import DexScreenerProvider
from ...providers.jupiter import JupiterProvider
from .base import EnrichmentService, EnrichmentSnapshot, as_float

logger = logging.getLogger(__name__)

# DexScreener reports m5 / h1 / h6 / h24 windows
_PAIR_WINDOWS = {"1h": "h1", "24h": "h24", "7d": "h24", "30d": "h24"}
MAX_DEPTH = 50
# Trade size that keeps price impact near 2% on a constant-product pool
SAFE_TRADE_FRACTION = 0.01


def _pool(pair: Dict[str, Any], window: str) -> Dict[str, Any]:
    txns = (pair.get("txns") or {}).get(window) or {}
    return {
        "dex": pair.get("dexId"),
        "pairAddress": pair.get("pairAddress"),
        "quoteToken": (pair.get("quoteToken") or {}).get("symbol"),
        "liquidityUsd": as_float((pair.get("liquidity") or {}).get("usd")),
        "volumeUsd": as_float((pair.get("volume") or {}).get(window)),
        "priceChangePct": as_float((pair.get("priceChange") or {}).get(window)),
        "buys": txns.get("buys"),
        "sells": txns.get("sells"),
        "createdAt": pair.get("pairCreatedAt"),
    }


class LiquidityAnalyzer(EnrichmentService):
    name = "liquidity"

    def __init__(
        self,
        dexscreener: DexScreenerProvider,
        resolver: Optional[JupiterProvider] = None,
        min_liquidity_usd: float = 100000,
        default_depth: int = 10,
        cache_ttl_seconds: int = 60,
        cache_size: int = 512,
    ):
        super().__init__(resolver, cache_ttl_seconds, cache_size)
        self._dexscreener = dexscreener
        self.min_liquidity_usd = min_liquidity_usd
        self.default_depth = default_depth

    async def _pairs(self, address: str) -> List[Dict[str, Any]]:
        return await self._dexscreener.get_token_pairs(address)

    async def analyze_liquidity(
        self,
        token: str,
        timeframe: str = "24h",
        depth: Optional[int] = None,
    ) -> EnrichmentSnapshot:
        """Per-DEX liquidity for ``token``, deepest ``depth`` pools listed."""
        address = await self.resolve_address(token)
        depth = max(1, min(depth or self.default_depth, MAX_DEPTH))
        window = _PAIR_WINDOWS.get(timeframe, "h24")

        async def load() -> EnrichmentSnapshot:
            pools = [_pool(pair, window) for pair in await self._pairs(address)]
            priced = [p for p in pools if p["liquidityUsd"] is not None]
            if not priced:
                raise DataUnavailable(f"No pool reports liquidity for {token}", source=self._dexscreener.name)

            qualifying = sorted(
                (p for p in priced if p["liquidityUsd"] >= self.min_liquidity_usd),
                key=lambda p: p["liquidityUsd"],
                reverse=True,
            )
            by_dex: Dict[str, Dict[str, float]] = defaultdict(lambda: {"liquidityUsd": 0.0, "volumeUsd": 0.0, "pools": 0})
            for pool in priced:
                entry = by_dex[pool["dex"] or "unknown"]
                entry["liquidityUsd"] += pool["liquidityUsd"]
                entry["volumeUsd"] += pool["volumeUsd"] or 0.0
                entry["pools"] += 1

            total_liquidity = sum(p["liquidityUsd"] for p in priced)
            volumes = [p["volumeUsd"] for p in priced if p["volumeUsd"] is not None]
            total_volume = sum(volumes) if volumes else None
            return EnrichmentSnapshot(
                source=self._dexscreener.name,
                token=address,
                timeframe=timeframe,
                data={
                    "window": window,
                    "totalLiquidityUsd": round(total_liquidity, 2),
                    "totalVolumeUsd": round(total_volume, 2) if total_volume is not None else None,
                    "volumeToLiquidity": round(total_volume / total_liquidity, 4) if total_volume is not None and total_liquidity else None,
                    "minLiquidityUsd": self.min_liquidity_usd,
                    "meetsMinimum": bool(qualifying),
                    "byDex": dict(by_dex),
                    "pools": qualifying[:depth],
                    "poolsBelowMinimum": len(priced) - len(qualifying),
                },
            )

        return await self._cached(f"liquidity:{address}:{window}:{depth}", load)

    async def predict_liquidity_trends(self, token: str) -> EnrichmentSnapshot:
        """Compare the last hour's activity with the 24h average."""
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            pairs = await self._pairs(address)
            hourly = sum(as_float((p.get("volume") or {}).get("h1")) or 0.0 for p in pairs)
            daily = sum(as_float((p.get("volume") or {}).get("h24")) or 0.0 for p in pairs)
            if daily <= 0:
                raise DataUnavailable(f"No 24h volume for {token}", source=self._dexscreener.name)

            momentum = hourly * 24 / daily
            if momentum >= 1.2:
                trend = "rising"
            elif momentum <= 0.8:
                trend = "falling"
            else:
                trend = "stable"

            buys = sum(((p.get("txns") or {}).get("h24") or {}).get("buys", 0) for p in pairs)
            sells = sum(((p.get("txns") or {}).get("h24") or {}).get("sells", 0) for p in pairs)
            return EnrichmentSnapshot(
                source=self._dexscreener.name,
                token=address,
                timeframe="24h",
                data={
                    "activityTrend": trend,
                    "hourlyVsDailyRate": round(momentum, 3),
                    "netFlow": "inflow" if buys > sells else "outflow" if sells > buys else "balanced",
                    "buys24h": buys,
                    "sells24h": sells,
                },
            )

        return await self._cached(f"trend:{address}", load)

    async def generate_optimal_strategy(self, token: str) -> EnrichmentSnapshot:
        """Liquidity plan for a token, typically one that was just launched."""
        address = await self.resolve_address(token)
        try:
            analysis = await self.analyze_liquidity(address)
        except DataUnavailable:
            # pump.fun tokens trade on the bonding curve until it completes
            return EnrichmentSnapshot(
                source=self.name,
                token=address,
                data={
                    "stage": "bonding-curve",
                    "recommendations": [
                        "Liquidity is held by the pump.fun bonding curve until it completes.",
                        "On completion the curve migrates liquidity to a DEX pool automatically.",
                        "Avoid large early buys; they move the curve price sharply.",
                    ],
                },
            )

        pools = analysis.data["pools"]
        deepest = pools[0] if pools else None
        recommendations = []
        if deepest:
            recommendations.append(f"Route trades through {deepest['dex']} ({deepest['pairAddress']}).")
        if not analysis.data["meetsMinimum"]:
            recommendations.append(
                f"No pool holds ${self.min_liquidity_usd:,.0f}; seed additional liquidity before marketing."
            )
        return EnrichmentSnapshot(
            source=analysis.source,
            token=address,
            data={
                "stage": "trading",
                "totalLiquidityUsd": analysis.data["totalLiquidityUsd"],
                "recommendedDex": deepest["dex"] if deepest else None,
                "maxTradeUsd": round(deepest["liquidityUsd"] * SAFE_TRADE_FRACTION, 2) if deepest else None,
                "recommendations": recommendations,
            },
        )
