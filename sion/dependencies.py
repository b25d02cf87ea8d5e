"""
Process-wide service graph.

Everything the routes need is built once at startup from settings and held
on ``app.state.services``. Tests build their own ``AppServices`` with fakes
and pass it to ``create_app``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Optional

from fastapi import Request

from .config import Settings
from .core.chain import ChainAgent, SolanaAgent
from .core.chat import ChatService
from .core.errors import ErrorTracker, RetryPolicy
from .core.orchestrator import TurnOrchestrator
from .core.tools import ChainToolkit, ToolName, ToolRegistry, allowed_tools
from .core.transactions import ConfirmationTracker, TransactionPipeline
from .db import ConversationStore, build_conversation_store
from .providers.birdeye import BirdeyeProvider
from .providers.dexscreener import DexScreenerProvider
from .providers.jito import JitoRelay
from .providers.jupiter import JupiterProvider, JupiterSwapProvider
from .providers.lunarcrush import LunarCrushProvider
from .providers.pumpportal import PumpPortalProvider
from .providers.solana_rpc import SolanaRpc, SolanaRpcConfig
from .services import MarketUpdateHub, PriceFeed, PriceFeedPublisher
from .services.enrichment import LiquidityAnalyzer, MarketAnalysis, PricePredictor, SentimentAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: Any
    store: ConversationStore
    agent: ChainAgent
    pipeline: TransactionPipeline
    registry: ToolRegistry
    chat: ChatService
    error_tracker: ErrorTracker
    allowed_tools: FrozenSet[ToolName]
    rpc: Optional[SolanaRpc] = None
    hub: MarketUpdateHub = field(default_factory=MarketUpdateHub)
    publisher: Optional[PriceFeedPublisher] = None
    providers: List[Any] = field(default_factory=list)

    async def startup(self) -> None:
        if self.publisher is not None:
            self.publisher.start()

    async def shutdown(self) -> None:
        if self.publisher is not None:
            await self.publisher.stop()
        await self.pipeline.close()
        await self.store.close()
        for provider in self.providers:
            await provider.close()
        if self.rpc is not None:
            await self.rpc.close()


def build_services(settings: Settings) -> AppServices:
    error_tracker = ErrorTracker()
    read_retry = RetryPolicy()

    rpc = SolanaRpc(SolanaRpcConfig(
        rpc_url=settings.solana_rpc_url,
        commitment=settings.solana_commitment,
        timeout_s=settings.rpc_timeout_seconds,
    ))
    jupiter = JupiterProvider(
        token_list_url=settings.jupiter_token_list_url,
        price_url=settings.jupiter_price_url,
        cache_ttl_seconds=settings.jupiter_cache_ttl_seconds,
    )
    jupiter_swap = JupiterSwapProvider(settings.jupiter_quote_url)
    pumpportal = PumpPortalProvider(settings.pumpportal_url, settings.pumpfun_ipfs_url)
    birdeye = BirdeyeProvider(settings.birdeye_api_key, settings.birdeye_base_url, settings.birdeye_ws_url)
    lunarcrush = LunarCrushProvider(settings.lunarcrush_api_key, settings.lunarcrush_base_url)
    dexscreener = DexScreenerProvider(settings.dexscreener_base_url)
    relay = JitoRelay(settings.jito_block_engine_url) if settings.jito_block_engine_url else None

    agent = SolanaAgent.from_secret(
        settings.solana_private_key,
        rpc=rpc,
        jupiter=jupiter,
        jupiter_swap=jupiter_swap,
        pumpportal=pumpportal,
        pump_dev_buy_sol=settings.pump_launch_dev_buy_sol,
    )
    if not agent.identity:
        logger.warning("No Solana signing key configured; mutating tools will fail")
    if not settings.has_anthropic_key:
        logger.warning("No Anthropic API key configured; chat requests will be refused")

    pipeline = TransactionPipeline(
        rpc=rpc,
        confirmation=ConfirmationTracker(
            rpc,
            required_confirmations=settings.required_confirmations,
            timeout_ms=settings.confirmation_timeout_ms,
            poll_interval_ms=settings.confirmation_poll_interval_ms,
        ),
        config=settings.protection_config,
        relay=relay,
        error_tracker=error_tracker,
        bundle_flush_ms=settings.protection_bundle_flush_ms,
        retention_seconds=settings.transaction_retention_seconds,
        max_retained=settings.max_retained_transactions,
    )

    cache_kwargs = {
        "cache_ttl_seconds": settings.enrichment_cache_ttl_seconds,
        "cache_size": settings.enrichment_cache_size,
    }
    market = MarketAnalysis(birdeye, jupiter, whale_trade_min_usd=settings.whale_trade_min_usd, **cache_kwargs)
    toolkit = ChainToolkit(
        agent=agent,
        pipeline=pipeline,
        market=market,
        sentiment=SentimentAnalyzer(lunarcrush, market, jupiter, **cache_kwargs),
        predictor=PricePredictor(birdeye, jupiter, **cache_kwargs),
        liquidity=LiquidityAnalyzer(dexscreener, jupiter, min_liquidity_usd=settings.liquidity_min_usd, **cache_kwargs),
        default_slippage_bps=settings.default_slippage_bps,
    )
    registry = toolkit.bind(ToolRegistry(error_tracker=error_tracker, read_retry=read_retry))
    allowed = allowed_tools(settings)

    store = build_conversation_store(settings)
    orchestrator = TurnOrchestrator(
        registry,
        store,
        error_tracker,
        max_steps=settings.max_tool_steps,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )
    chat = ChatService(
        orchestrator=orchestrator,
        store=store,
        agent=agent,
        pipeline=pipeline,
        allowed_tools=allowed,
        error_tracker=error_tracker,
        settings=settings,
    )

    hub = MarketUpdateHub()
    publisher = None
    if settings.enable_price_feed and not settings.has_birdeye_key:
        logger.warning("Price feed enabled without a Birdeye API key; /market/stream stays idle")
    elif settings.enable_price_feed:
        publisher = PriceFeedPublisher(
            PriceFeed(settings.birdeye_api_key, settings.birdeye_ws_url),
            hub,
            settings.price_feed_symbols,
        )

    return AppServices(
        settings=settings,
        store=store,
        agent=agent,
        pipeline=pipeline,
        registry=registry,
        chat=chat,
        error_tracker=error_tracker,
        allowed_tools=allowed,
        rpc=rpc,
        hub=hub,
        publisher=publisher,
        providers=[jupiter, jupiter_swap, pumpportal, birdeye, lunarcrush, dexscreener] + ([relay] if relay else []),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services
