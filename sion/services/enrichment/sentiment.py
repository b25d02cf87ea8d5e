"""
Social and market sentiment.

Social metrics come from LunarCrush; market momentum from Birdeye through
``MarketAnalysis``. Each available signal is scored in [-1, 1] and the
average decides the overall reading.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ...core.errors import DataUnavailable
from ...providers.jupiter import JupiterProvider
from ...providers.lunarcrush import LunarCrushProvider
from .base import EnrichmentService, EnrichmentSnapshot, as_float
from .market import MarketAnalysis

logger = logging.getLogger(__name__)

BULLISH_THRESHOLD = 0.2


def _bounded(value: float) -> float:
    return max(-1.0, min(1.0, value))


class SentimentAnalyzer(EnrichmentService):
    name = "sentiment"

    def __init__(
        self,
        lunarcrush: LunarCrushProvider,
        market: Optional[MarketAnalysis] = None,
        resolver: Optional[JupiterProvider] = None,
        cache_ttl_seconds: int = 60,
        cache_size: int = 512,
    ):
        super().__init__(resolver, cache_ttl_seconds, cache_size)
        self._lunarcrush = lunarcrush
        self._market = market

    async def get_social_metrics(self, token: str) -> EnrichmentSnapshot:
        symbol = await self.resolve_symbol(token)

        async def load() -> EnrichmentSnapshot:
            coin = await self._lunarcrush.get_coin(symbol)
            return EnrichmentSnapshot(
                source=self._lunarcrush.name,
                token=symbol,
                timeframe="24h",
                data={
                    "galaxyScore": as_float(coin.get("galaxy_score")),
                    "altRank": coin.get("alt_rank"),
                    "sentimentPct": as_float(coin.get("sentiment")),
                    "socialDominancePct": as_float(coin.get("social_dominance")),
                    "interactions24h": coin.get("interactions_24h"),
                    "socialVolume24h": coin.get("social_volume_24h"),
                    "activeContributors": coin.get("contributors_active"),
                },
            )

        return await self._cached(f"social:{symbol}", load)

    async def analyze(self, token: str, include_social: bool = True) -> EnrichmentSnapshot:
        """Overall bullish / bearish / neutral reading with its key factors."""
        signals: List[Tuple[str, float, str]] = []
        sources: List[str] = []
        unavailable: Dict[str, Any] = {}

        if self._market is not None:
            try:
                market = await self._market.get_market_metrics(token)
                meme = await self._market.get_meme_metrics(token, "24h")
            except DataUnavailable as exc:
                unavailable["market"] = exc.to_payload()
            else:
                sources.append(market.source)
                signals.extend(_market_signals(market.data, meme.data))

        if include_social:
            try:
                social = await self.get_social_metrics(token)
            except DataUnavailable as exc:
                unavailable["social"] = exc.to_payload()
            else:
                sources.append(social.source)
                signals.extend(_social_signals(social.data))

        if not signals:
            raise DataUnavailable(f"No sentiment signals available for {token}", source=self.name)

        score = sum(weight for _, weight, _ in signals) / len(signals)
        if score >= BULLISH_THRESHOLD:
            overall = "bullish"
        elif score <= -BULLISH_THRESHOLD:
            overall = "bearish"
        else:
            overall = "neutral"

        agreement = sum(1 for _, weight, _ in signals if (weight > 0) == (score > 0)) / len(signals)
        confidence = round(min(1.0, abs(score) * 0.5 + agreement * 0.5) * min(1.0, len(signals) / 3), 3)
        ranked = sorted(signals, key=lambda s: abs(s[1]), reverse=True)

        return EnrichmentSnapshot(
            source="+".join(sources),
            token=token,
            timeframe="24h",
            data={
                "overall": overall,
                "score": round(score, 3),
                "confidence": confidence,
                "keyFactors": [description for _, _, description in ranked[:5]],
                "signals": {name: round(weight, 3) for name, weight, _ in signals},
                "unavailable": unavailable,
            },
        )


def _market_signals(metrics: Dict[str, Any], meme: Dict[str, Any]) -> List[Tuple[str, float, str]]:
    signals = []
    change = metrics.get("priceChange24hPct")
    if change is not None:
        signals.append(("priceMomentum", _bounded(change / 20), f"Price {change:+.1f}% over 24h"))
    buy_ratio = meme.get("buyRatio")
    if buy_ratio is not None:
        signals.append(("buyPressure", _bounded((buy_ratio - 0.5) * 4), f"{buy_ratio:.0%} of 24h trades are buys"))
    growth = meme.get("communityGrowthPct")
    if growth is not None:
        signals.append(("walletGrowth", _bounded(growth / 50), f"Unique wallets {growth:+.1f}% over 24h"))
    return signals


def _social_signals(social: Dict[str, Any]) -> List[Tuple[str, float, str]]:
    signals = []
    sentiment = social.get("sentimentPct")
    if sentiment is not None:
        signals.append(("socialSentiment", _bounded((sentiment - 50) / 30), f"{sentiment:.0f}% positive social posts"))
    galaxy = social.get("galaxyScore")
    if galaxy is not None:
        signals.append(("galaxyScore", _bounded((galaxy - 50) / 25), f"Galaxy score {galaxy:.0f}"))
    return signals
