"""
Chain toolkit: the handler behind every ``ToolName``.

Read-only tools query the chain agent and the enrichment services. Mutating
tools build a signed instruction with the chain agent and hand it to the
transaction pipeline, then report the pipeline's outcome.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..chain.base import ChainAgent, ChainInstruction
from ..errors import DataUnavailable, NotFound
from ..transactions import PendingTransaction, TransactionPipeline, TxStatus
from ...services.enrichment import (
    EnrichmentSnapshot,
    LiquidityAnalyzer,
    MarketAnalysis,
    PricePredictor,
    SentimentAnalyzer,
)
from .registry import ToolContext, ToolHandler, ToolRegistry
from .schemas import (
    TOOL_SCHEMAS,
    AnalyzeLiquidityArgs,
    AnalyzeMemeMetricsArgs,
    CheckMarketSentimentArgs,
    CheckTokenPriceArgs,
    DeployTokenArgs,
    GetTransactionStatusArgs,
    LaunchPumpFunTokenArgs,
    MintNftArgs,
    MonitorTransactionsArgs,
    PredictTokenPerformanceArgs,
    StakeSolArgs,
    SwapTokensArgs,
    ToolName,
)

logger = logging.getLogger(__name__)

_ADDRESS_METADATA_KEYS = ("inputMint", "outputMint", "tokenAddress", "mintAddress")


async def enrichment_layer(loader: Callable[[], Awaitable[EnrichmentSnapshot]]) -> Dict[str, Any]:
    """Run one optional layer; an unavailable source is reported as such."""
    try:
        snapshot = await loader()
    except DataUnavailable as exc:
        return {"status": "unavailable", **exc.to_payload()}
    return snapshot.to_dict()


def transaction_result(instruction: ChainInstruction, pending: PendingTransaction) -> Dict[str, Any]:
    return {
        "transactionId": pending.id,
        "status": pending.status.value,
        "signature": pending.signature or instruction.signature,
        "confirmed": pending.status == TxStatus.CONFIRMED,
        "instruction": instruction.summary(),
        "transaction": pending.to_dict(),
    }


class ChainToolkit:
    """Binds one handler per tool name to a ``ToolRegistry``."""

    def __init__(
        self,
        agent: ChainAgent,
        pipeline: TransactionPipeline,
        market: MarketAnalysis,
        sentiment: SentimentAnalyzer,
        predictor: PricePredictor,
        liquidity: LiquidityAnalyzer,
        default_slippage_bps: int = 50,
    ):
        self.agent = agent
        self.pipeline = pipeline
        self.market = market
        self.sentiment = sentiment
        self.predictor = predictor
        self.liquidity = liquidity
        self.default_slippage_bps = default_slippage_bps

    def handlers(self) -> Dict[ToolName, Tuple[ToolHandler, str]]:
        return {
            ToolName.CHECK_TOKEN_PRICE: (
                self.check_token_price,
                "Check a token's current USD price. Optionally add meme, market and social metrics.",
            ),
            ToolName.STAKE_SOL: (
                self.stake_sol,
                "Stake SOL from the agent wallet (liquid staking into jupSOL).",
            ),
            ToolName.MINT_NFT: (
                self.mint_nft,
                "Mint a single NFT into a collection, sent to the recipient or the agent wallet.",
            ),
            ToolName.SWAP_TOKENS: (
                self.swap_tokens,
                "Swap tokens from the agent wallet through Jupiter.",
            ),
            ToolName.DEPLOY_TOKEN: (
                self.deploy_token,
                "Deploy a new SPL token and mint its initial supply to the agent wallet.",
            ),
            ToolName.LAUNCH_PUMP_FUN_TOKEN: (
                self.launch_pump_fun_token,
                "Launch a token on pump.fun. Optionally add a post-launch liquidity strategy.",
            ),
            ToolName.GET_TRANSACTION_STATUS: (
                self.get_transaction_status,
                "Look up the current status of a transaction by its id, re-checking the chain if it timed out.",
            ),
            ToolName.ANALYZE_MEME_METRICS: (
                self.analyze_meme_metrics,
                "Comprehensive meme metrics analysis: virality, wallet and trade growth, buy pressure.",
            ),
            ToolName.CHECK_MARKET_SENTIMENT: (
                self.check_market_sentiment,
                "Market sentiment from price momentum and social data. Optionally track whale trades.",
            ),
            ToolName.PREDICT_TOKEN_PERFORMANCE: (
                self.predict_token_performance,
                "Statistical price outlook with support and resistance levels.",
            ),
            ToolName.ANALYZE_LIQUIDITY: (
                self.analyze_liquidity,
                "Analyze token liquidity across Solana DEXs.",
            ),
            ToolName.MONITOR_TRANSACTIONS: (
                self.monitor_transactions,
                "Watch a token's on-chain swaps over the last `duration` seconds, with optional whale alerts "
                "and the agent's own transactions in that token.",
            ),
        }

    def bind(self, registry: ToolRegistry) -> ToolRegistry:
        handlers = self.handlers()
        missing = set(ToolName) - set(handlers)
        if missing:
            raise RuntimeError(f"No handler for tools: {sorted(m.value for m in missing)}")
        for name, (handler, description) in handlers.items():
            registry.register(name.value, TOOL_SCHEMAS[name], handler, description)
        return registry

    # ------------------------------------------------------------------
    # Read-only tools
    # ------------------------------------------------------------------

    async def check_token_price(self, args: CheckTokenPriceArgs, context: ToolContext) -> Dict[str, Any]:
        try:
            price = await self.agent.get_token_price(args.symbol)
        except DataUnavailable as exc:
            exc.details.setdefault("symbol", args.symbol)
            exc.details.setdefault("price", "unavailable")
            raise
        result = price.to_dict()
        if args.include_meme_metrics:
            result["memeMetrics"] = await enrichment_layer(lambda: self.market.get_meme_metrics(price.mint))
        if args.include_market_metrics:
            result["marketMetrics"] = await enrichment_layer(lambda: self.market.get_market_metrics(price.mint))
        if args.include_social_metrics:
            result["socialMetrics"] = await enrichment_layer(lambda: self.sentiment.get_social_metrics(price.symbol))
        return result

    async def analyze_meme_metrics(self, args: AnalyzeMemeMetricsArgs, context: ToolContext) -> Dict[str, Any]:
        base = await self.market.get_meme_metrics(args.token_address, args.timeframe)
        result = base.to_dict()
        if args.include_market_correlation:
            result["marketCorrelation"] = await enrichment_layer(
                lambda: self.market.analyze_market_correlation(args.token_address, args.timeframe)
            )
        if args.include_predictions:
            result["predictions"] = await enrichment_layer(
                lambda: self.predictor.predict(args.token_address, args.timeframe)
            )
        return result

    async def check_market_sentiment(self, args: CheckMarketSentimentArgs, context: ToolContext) -> Dict[str, Any]:
        base = await self.sentiment.analyze(args.token_address, include_social=args.include_social)
        result = base.to_dict()
        if args.include_whale_tracking:
            result["whaleActivity"] = await enrichment_layer(
                lambda: self.market.track_whale_activity(args.token_address)
            )
        return result

    async def predict_token_performance(self, args: PredictTokenPerformanceArgs, context: ToolContext) -> Dict[str, Any]:
        snapshot = await self.predictor.predict(args.token_address, args.timeframe)
        return snapshot.to_dict()

    async def analyze_liquidity(self, args: AnalyzeLiquidityArgs, context: ToolContext) -> Dict[str, Any]:
        base = await self.liquidity.analyze_liquidity(args.token_address, args.timeframe, args.depth)
        result = base.to_dict()
        if args.include_predictions:
            result["predictions"] = await enrichment_layer(
                lambda: self.liquidity.predict_liquidity_trends(args.token_address)
            )
        return result

    async def get_transaction_status(self, args: GetTransactionStatusArgs, context: ToolContext) -> Dict[str, Any]:
        pending = self.pipeline.get(args.transaction_id)
        if pending.owner_id and pending.owner_id != context.actor_id:
            raise NotFound(f"Transaction {args.transaction_id} not found")
        pending = await self.pipeline.refresh(pending.id)
        return pending.to_dict()

    async def monitor_transactions(self, args: MonitorTransactionsArgs, context: ToolContext) -> Dict[str, Any]:
        """On-chain swap activity for a token over the last ``duration`` seconds,
        plus the actor's own pipeline transactions in that token."""
        activity = await enrichment_layer(
            lambda: self.market.watch_token_trades(args.token_address, args.duration)
        )
        mint = activity.get("token") or args.token_address

        status = TxStatus(args.status) if args.status else None
        own = [
            tx for tx in self.pipeline.list(owner_id=context.actor_id, status=status)
            if mint in (tx.instruction.metadata.get(key) for key in _ADDRESS_METADATA_KEYS)
        ]
        result: Dict[str, Any] = {
            "tokenAddress": mint,
            "durationSeconds": args.duration,
            "activity": activity,
            "agentTransactions": {
                "count": len(own),
                "transactions": [tx.to_dict() for tx in own],
            },
        }
        if args.include_whale_alerts:
            result["whaleAlerts"] = await enrichment_layer(
                lambda: self.market.track_whale_activity(args.token_address)
            )
        return result

    # ------------------------------------------------------------------
    # Mutating tools
    # ------------------------------------------------------------------

    @property
    def _priority_fee(self) -> int:
        return self.pipeline.config.priority_fee

    async def _submit(self, instruction: ChainInstruction, context: ToolContext) -> Dict[str, Any]:
        pending = await self.pipeline.execute(
            instruction,
            owner_id=context.actor_id,
            conversation_id=context.conversation_id,
        )
        return transaction_result(instruction, pending)

    async def stake_sol(self, args: StakeSolArgs, context: ToolContext) -> Dict[str, Any]:
        instruction = await self.agent.stake(
            args.amount,
            slippage_bps=self.default_slippage_bps,
            priority_fee=self._priority_fee,
        )
        return await self._submit(instruction, context)

    async def mint_nft(self, args: MintNftArgs, context: ToolContext) -> Dict[str, Any]:
        metadata = {"name": args.name, "uri": args.uri}
        if args.symbol:
            metadata["symbol"] = args.symbol
        instruction = await self.agent.mint_nft(
            args.collection,
            metadata,
            recipient=args.recipient,
            priority_fee=self._priority_fee,
        )
        return await self._submit(instruction, context)

    async def swap_tokens(self, args: SwapTokensArgs, context: ToolContext) -> Dict[str, Any]:
        instruction = await self.agent.swap(
            args.from_token,
            args.to_token,
            args.amount,
            args.slippage_bps or self.default_slippage_bps,
            priority_fee=self._priority_fee,
        )
        return await self._submit(instruction, context)

    async def deploy_token(self, args: DeployTokenArgs, context: ToolContext) -> Dict[str, Any]:
        instruction = await self.agent.deploy_token(
            args.name,
            args.ticker,
            args.uri,
            args.decimals,
            args.initial_supply,
            priority_fee=self._priority_fee,
        )
        return await self._submit(instruction, context)

    async def launch_pump_fun_token(self, args: LaunchPumpFunTokenArgs, context: ToolContext) -> Dict[str, Any]:
        instruction = await self.agent.launch_token(
            args.token_name,
            args.token_ticker,
            args.description,
            args.image_url,
            priority_fee=self._priority_fee,
        )
        result = await self._submit(instruction, context)
        token_address: Optional[str] = instruction.metadata.get("tokenAddress")
        if args.include_liquidity_strategy and token_address:
            result["liquidityStrategy"] = await enrichment_layer(
                lambda: self.liquidity.generate_optimal_strategy(token_address)
            )
        return result
