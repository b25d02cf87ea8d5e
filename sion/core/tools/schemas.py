"""
Tool names and argument schemas.

``ToolName`` is the closed set of tools the model can call. Each tool's
arguments are a pydantic model; the model's JSON schema is what the LLM
sees, and validation against it happens before any handler runs.
"""

from enum import Enum
from typing import Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ToolName(str, Enum):
    # Core chain tools
    CHECK_TOKEN_PRICE = "checkTokenPrice"
    STAKE_SOL = "stakeSOL"
    MINT_NFT = "mintNFT"
    SWAP_TOKENS = "swapTokens"
    DEPLOY_TOKEN = "deployToken"
    LAUNCH_PUMP_FUN_TOKEN = "launchPumpFunToken"
    GET_TRANSACTION_STATUS = "getTransactionStatus"
    # Enhanced analysis tools
    ANALYZE_MEME_METRICS = "analyzeMemeMetrics"
    CHECK_MARKET_SENTIMENT = "checkMarketSentiment"
    PREDICT_TOKEN_PERFORMANCE = "predictTokenPerformance"
    ANALYZE_LIQUIDITY = "analyzeLiquidity"
    MONITOR_TRANSACTIONS = "monitorTransactions"


CORE_TOOLS = frozenset({
    ToolName.CHECK_TOKEN_PRICE,
    ToolName.STAKE_SOL,
    ToolName.MINT_NFT,
    ToolName.SWAP_TOKENS,
    ToolName.DEPLOY_TOKEN,
    ToolName.LAUNCH_PUMP_FUN_TOKEN,
    ToolName.GET_TRANSACTION_STATUS,
})

ENHANCED_TOOLS = frozenset(set(ToolName) - CORE_TOOLS)

# Never retried automatically
MUTATING_TOOLS = frozenset({
    ToolName.STAKE_SOL,
    ToolName.MINT_NFT,
    ToolName.SWAP_TOKENS,
    ToolName.DEPLOY_TOKEN,
    ToolName.LAUNCH_PUMP_FUN_TOKEN,
})

Timeframe = Literal["1h", "24h", "7d", "30d"]
TransactionStatusFilter = Literal[
    "simulating",
    "simulated-ok",
    "simulated-failed",
    "queued",
    "submitted",
    "confirmed",
    "failed",
    "timed-out",
]


class ToolArgs(BaseModel):
    """Base for tool arguments: camelCase on the wire, unknown keys rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CheckTokenPriceArgs(ToolArgs):
    symbol: str = Field(min_length=1, description="Token symbol (e.g. SOL, BONK) or mint address")
    include_meme_metrics: bool = Field(default=False, description="Add virality and community metrics")
    include_market_metrics: bool = Field(default=False, description="Add volume, market cap and supply")
    include_social_metrics: bool = Field(default=False, description="Add social engagement metrics")


class StakeSolArgs(ToolArgs):
    amount: float = Field(gt=0, description="Amount of SOL to stake")


class MintNftArgs(ToolArgs):
    collection: str = Field(min_length=32, max_length=44, description="Collection address")
    name: str = Field(min_length=1, max_length=32, description="NFT name")
    uri: str = Field(min_length=1, description="Metadata URI")
    symbol: Optional[str] = Field(default=None, max_length=10, description="NFT symbol")
    recipient: Optional[str] = Field(
        default=None, min_length=32, max_length=44, description="Recipient wallet; defaults to the agent"
    )


class SwapTokensArgs(ToolArgs):
    from_token: str = Field(min_length=1, description="Symbol or mint address of the token to sell")
    to_token: str = Field(min_length=1, description="Symbol or mint address of the token to buy")
    amount: float = Field(gt=0, description="Amount of from_token to sell")
    slippage_bps: Optional[int] = Field(
        default=None, ge=1, le=1000, description="Slippage tolerance in basis points"
    )


class DeployTokenArgs(ToolArgs):
    name: str = Field(min_length=1, max_length=32)
    ticker: str = Field(min_length=1, max_length=10)
    uri: str = Field(min_length=1, description="Metadata URI")
    decimals: int = Field(default=9, ge=0, le=9)
    initial_supply: int = Field(gt=0, description="Whole tokens minted to the agent")


class LaunchPumpFunTokenArgs(ToolArgs):
    token_name: str = Field(min_length=1, max_length=32)
    token_ticker: str = Field(min_length=1, max_length=10)
    description: str = Field(min_length=1, max_length=1000)
    image_url: str = Field(min_length=1, description="Image to upload as the token logo")
    include_liquidity_strategy: bool = Field(default=False, description="Add a post-launch liquidity plan")


class GetTransactionStatusArgs(ToolArgs):
    transaction_id: str = Field(min_length=1, description="Id returned by a transaction tool")


class AnalyzeMemeMetricsArgs(ToolArgs):
    token_address: str = Field(min_length=1)
    timeframe: Timeframe = "24h"
    include_market_correlation: bool = False
    include_predictions: bool = False


class CheckMarketSentimentArgs(ToolArgs):
    token_address: str = Field(min_length=1)
    include_social: bool = True
    include_whale_tracking: bool = False


class PredictTokenPerformanceArgs(ToolArgs):
    token_address: str = Field(min_length=1)
    timeframe: Timeframe = "24h"


class AnalyzeLiquidityArgs(ToolArgs):
    token_address: str = Field(min_length=1)
    timeframe: Timeframe = "24h"
    depth: Optional[int] = Field(default=None, ge=1, le=50, description="Number of pools to list")
    include_predictions: bool = False


# One day; Birdeye's recent-trades page rarely reaches further back
MAX_MONITOR_SECONDS = 86400


class MonitorTransactionsArgs(ToolArgs):
    token_address: str = Field(min_length=1, description="Symbol or mint address of the token to watch")
    duration: int = Field(ge=1, le=MAX_MONITOR_SECONDS, description="Look-back window in seconds")
    include_whale_alerts: bool = False
    status: Optional[TransactionStatusFilter] = Field(
        default=None, description="Filter for the agent's own transactions in this token"
    )


TOOL_SCHEMAS: Dict[ToolName, Type[ToolArgs]] = {
    ToolName.CHECK_TOKEN_PRICE: CheckTokenPriceArgs,
    ToolName.STAKE_SOL: StakeSolArgs,
    ToolName.MINT_NFT: MintNftArgs,
    ToolName.SWAP_TOKENS: SwapTokensArgs,
    ToolName.DEPLOY_TOKEN: DeployTokenArgs,
    ToolName.LAUNCH_PUMP_FUN_TOKEN: LaunchPumpFunTokenArgs,
    ToolName.GET_TRANSACTION_STATUS: GetTransactionStatusArgs,
    ToolName.ANALYZE_MEME_METRICS: AnalyzeMemeMetricsArgs,
    ToolName.CHECK_MARKET_SENTIMENT: CheckMarketSentimentArgs,
    ToolName.PREDICT_TOKEN_PERFORMANCE: PredictTokenPerformanceArgs,
    ToolName.ANALYZE_LIQUIDITY: AnalyzeLiquidityArgs,
    ToolName.MONITOR_TRANSACTIONS: MonitorTransactionsArgs,
}
