"""
Price outlook from recent candles.

Drift and volatility of log returns over the requested window, projected
forward over a window of the same length. Support and resistance are the
lowest lows and highest highs seen.
"""

import math
from statistics import mean, pstdev
from typing import Any, Dict, List, Optional

from ...core.errors import DataUnavailable
from ...providers.birdeye import BirdeyeProvider
from ...providers.jupiter import JupiterProvider
from .base import TIMEFRAMES, EnrichmentService, EnrichmentSnapshot, as_float

MIN_CANDLES = 10
LEVELS = 3


def _levels(values: List[float], lowest: bool) -> List[float]:
    distinct = sorted(set(round(v, 10) for v in values), reverse=not lowest)
    return distinct[:LEVELS]


class PricePredictor(EnrichmentService):
    name = "prediction"

    def __init__(
        self,
        birdeye: BirdeyeProvider,
        resolver: Optional[JupiterProvider] = None,
        cache_ttl_seconds: int = 60,
        cache_size: int = 512,
    ):
        super().__init__(resolver, cache_ttl_seconds, cache_size)
        self._birdeye = birdeye

    async def predict(self, token: str, timeframe: str = "24h") -> EnrichmentSnapshot:
        if timeframe not in TIMEFRAMES:
            raise DataUnavailable(f"Unsupported timeframe {timeframe}", source=self.name)
        address = await self.resolve_address(token)

        async def load() -> EnrichmentSnapshot:
            candles = await self._birdeye.get_ohlcv(address, timeframe)
            return EnrichmentSnapshot(
                source=self._birdeye.name,
                token=address,
                timeframe=timeframe,
                data=project(candles, timeframe),
            )

        return await self._cached(f"predict:{address}:{timeframe}", load)


def project(candles: List[Dict[str, Any]], timeframe: str) -> Dict[str, Any]:
    rows = [
        (as_float(c.get("c")), as_float(c.get("h")), as_float(c.get("l")))
        for c in candles
    ]
    rows = [(close, high, low) for close, high, low in rows if close and high and low]
    if len(rows) < MIN_CANDLES:
        raise DataUnavailable(
            f"Need at least {MIN_CANDLES} candles to project a price, got {len(rows)}",
            source="prediction",
        )

    closes = [close for close, _, _ in rows]
    returns = [math.log(curr / prev) for prev, curr in zip(closes, closes[1:])]
    drift = mean(returns)
    volatility = pstdev(returns)
    horizon = len(returns)

    current = closes[-1]
    target = current * math.exp(drift * horizon)
    spread = volatility * math.sqrt(horizon)
    confidence = max(0.0, min(1.0, 1 - spread))

    return {
        "method": "drift-volatility",
        "samples": len(rows),
        "currentPrice": current,
        "target": target,
        "expectedChangePct": round((target / current - 1) * 100, 2),
        "range": {"low": current * math.exp(drift * horizon - spread), "high": current * math.exp(drift * horizon + spread)},
        "volatility": round(volatility, 6),
        "confidence": round(confidence, 3),
        "supportLevels": _levels([low for _, _, low in rows], lowest=True),
        "resistanceLevels": _levels([high for _, high, _ in rows], lowest=False),
        "horizon": timeframe,
    }
