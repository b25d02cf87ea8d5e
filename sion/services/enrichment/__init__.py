"""
Read-only enrichment services. Each is built once at startup and injected
into the tool handlers.
"""

from .base import EnrichmentService, EnrichmentSnapshot
from .market import MarketAnalysis
from .sentiment import SentimentAnalyzer
from .prediction import PricePredictor
from .liquidity import LiquidityAnalyzer

__all__ = [
    "EnrichmentService",
    "EnrichmentSnapshot",
    "MarketAnalysis",
    "SentimentAnalyzer",
    "PricePredictor",
    "LiquidityAnalyzer",
]
