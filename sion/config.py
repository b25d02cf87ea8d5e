from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    admin_token: str = Field(default="", description="Operator token guarding protection reconfiguration")

    # LLM Provider Settings
    llm_provider: str = Field(default="anthropic", description="Default LLM provider")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    llm_model: str = Field(default="claude-sonnet-4-20250514", description="Default LLM model")
    max_tokens: int = Field(default=4000, description="Maximum tokens for LLM response")
    temperature: float = Field(default=0.7, description="LLM temperature setting")
    max_tool_steps: int = Field(default=5, ge=1, le=5, description="Model invocations allowed per user turn")
    provider_models_catalog: Dict[str, List[Dict[str, Any]]] = Field(
        default_factory=lambda: {
            "anthropic": [
                {
                    "id": "claude-sonnet-4-20250514",
                    "label": "Claude Sonnet 4",
                    "description": "Balanced depth and latency for daily use.",
                    "default": True,
                },
                {
                    "id": "claude-3-5-haiku-20241022",
                    "label": "Claude Haiku 3.5",
                    "description": "Fast responses for quick lookups.",
                },
            ],
        },
        description="Provider models metadata surfaced to clients",
    )

    # Tool allow-list
    enable_enhanced_tools: bool = Field(default=True, description="Expose market analysis tools to the model")
    disabled_tools: List[str] = Field(default_factory=list, description="Tool names removed from the allow-list")

    # Solana
    solana_rpc_url: str = Field(default="https://api.mainnet-beta.solana.com", description="Solana JSON-RPC endpoint")
    solana_private_key: str = Field(
        default="",
        description="Base58 secret key of the agent's signing identity",
        validation_alias=AliasChoices("solana_private_key", "SOLANA_PRIVATE_KEY", "AGENT_PRIVATE_KEY"),
    )
    solana_commitment: str = Field(default="confirmed", description="Commitment level for RPC reads")
    rpc_timeout_seconds: float = Field(default=30.0, description="Timeout for RPC requests")

    # Jupiter
    jupiter_quote_url: str = Field(default="https://quote-api.jup.ag/v6", description="Jupiter swap API base URL")
    jupiter_price_url: str = Field(default="https://api.jup.ag/price/v2", description="Jupiter price API")
    jupiter_token_list_url: str = Field(default="https://token.jup.ag/strict", description="Jupiter verified token list")
    jupiter_cache_ttl_seconds: int = Field(default=3600, description="TTL for the Jupiter token list cache")
    default_slippage_bps: int = Field(default=50, description="Slippage used when the caller gives none")

    # PumpPortal
    pumpportal_url: str = Field(default="https://pumpportal.fun/api", description="PumpPortal local trade API")
    pumpfun_ipfs_url: str = Field(default="https://pump.fun/api/ipfs", description="pump.fun metadata upload endpoint")
    pump_launch_dev_buy_sol: float = Field(default=0.0001, description="Initial dev buy for launched tokens")

    # Market data providers
    birdeye_api_key: str = Field(default="", description="Birdeye API key")
    birdeye_base_url: str = Field(default="https://public-api.birdeye.so", description="Birdeye REST API")
    birdeye_ws_url: str = Field(default="wss://public-api.birdeye.so/socket/solana", description="Birdeye price socket")
    lunarcrush_api_key: str = Field(default="", description="LunarCrush API key")
    lunarcrush_base_url: str = Field(default="https://lunarcrush.com/api4/public", description="LunarCrush API")
    dexscreener_base_url: str = Field(default="https://api.dexscreener.com/latest/dex", description="DexScreener API")

    # Enrichment
    enrichment_cache_ttl_seconds: int = Field(default=60, description="TTL of cached enrichment snapshots")
    enrichment_cache_size: int = Field(default=1000, description="Maximum cached enrichment snapshots")
    liquidity_min_usd: float = Field(default=100_000.0, description="Pools below this liquidity are ignored")
    whale_trade_min_usd: float = Field(default=10_000.0, description="Trades above this volume count as whale activity")

    # MEV protection defaults
    protection_enabled: bool = Field(default=True, description="Apply MEV protection to outgoing transactions")
    protection_strategy: str = Field(default="bundle", description="bundle, private-submission or time-delay")
    protection_max_priority_fee: int = Field(default=1000, ge=0, description="Compute unit price cap (micro-lamports)")
    protection_bundle_size: int = Field(default=3, ge=1, le=5, description="Maximum transactions per Jito bundle")
    protection_delay_ms: int = Field(default=2000, ge=0, description="Hold time for the time-delay strategy")
    protection_bundle_flush_ms: int = Field(default=1500, ge=0, description="Release a partial bundle after this long")
    jito_block_engine_url: str = Field(
        default="https://mainnet.block-engine.jito.wtf",
        description="Jito block engine used for private submission and bundles",
    )

    # Confirmation
    required_confirmations: int = Field(default=2, ge=0, description="Confirmations before a transaction is confirmed")
    confirmation_timeout_ms: int = Field(default=60000, ge=0, description="Time to wait for confirmation")
    confirmation_poll_interval_ms: int = Field(default=1000, ge=10, description="Initial confirmation poll interval")
    transaction_retention_seconds: int = Field(default=3600, ge=0, description="How long finished transactions stay queryable")
    max_retained_transactions: int = Field(default=10000, ge=1, description="Finished transactions kept for queries")

    # Persistence
    persistence_backend: str = Field(default="memory", description="memory or redis")
    redis_url: str = Field(default="", description="Redis connection string for the redis backend")

    # Auth
    auth_jwt_secret: str = Field(
        default="",
        description="Secret used to verify session tokens",
        validation_alias=AliasChoices("auth_jwt_secret", "AUTH_SECRET", "JWT_SECRET"),
    )
    auth_jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    auth_token_ttl_seconds: int = Field(default=86400, description="Lifetime of tokens issued for wallet sign-in")

    # Live market feed
    enable_price_feed: bool = Field(default=False, description="Start the background price feed publisher")
    price_feed_symbols: List[str] = Field(default_factory=list, description="Token mints relayed on /market/stream")

    @property
    def has_anthropic_key(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def has_birdeye_key(self) -> bool:
        return bool(self.birdeye_api_key)

    @property
    def protection_config(self):
        """Operator defaults for MEV protection as an immutable config."""
        from .core.transactions.models import ProtectionConfig, ProtectionStrategy

        return ProtectionConfig(
            enabled=self.protection_enabled,
            strategy=ProtectionStrategy(self.protection_strategy),
            max_priority_fee=self.protection_max_priority_fee,
            bundle_size=self.protection_bundle_size,
            delay_ms=self.protection_delay_ms,
        )

    def resolve_default_model(self, provider: str) -> str:
        """Catalog entry flagged ``default`` for ``provider``, else its first entry, else ``llm_model``."""
        options = self.provider_models_catalog.get(provider.lower(), [])
        flagged = [o for o in options if str(o.get("default", "")).lower() in {"true", "1", "yes"}]
        chosen = (flagged or options or [{}])[0]
        return chosen.get("id") or self.llm_model

    def resolve_provider_for_model(self, model_id: Optional[str]) -> Optional[str]:
        target = (model_id or "").strip().lower()
        owners = {
            (option.get("id") or "").lower(): provider
            for provider, options in self.provider_models_catalog.items()
            for option in options
        }
        return owners.get(target) if target else None


# Global settings instance
settings = Settings()
