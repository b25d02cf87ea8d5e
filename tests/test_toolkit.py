"""
Tests for the tool handlers wired to the chain agent, the pipeline and the
enrichment services.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import AGENT_IDENTITY, FAST_RETRY, FakeRpc, make_instruction
from sion.core.chain import TokenPrice
from sion.core.errors import DataUnavailable, ErrorTracker, InvalidArguments, ToolExecutionError
from sion.core.tools import ChainToolkit, ToolContext, ToolRegistry
from sion.core.transactions import ConfirmationTracker, ProtectionConfig, ProtectionStrategy, TransactionPipeline
from sion.providers.solana_rpc import RpcSimulation
from sion.services.enrichment import EnrichmentSnapshot

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USER = ToolContext(actor_id="user-1", conversation_id="conv-1")


def build(rpc=None, config=None, relay=None, default_slippage_bps=50):
    rpc = rpc or FakeRpc()
    config = config or ProtectionConfig(
        enabled=True,
        strategy=ProtectionStrategy.PRIVATE_SUBMISSION,
        max_priority_fee=700,
    )
    relay = relay or AsyncMock()
    pipeline = TransactionPipeline(
        rpc=rpc,
        confirmation=ConfirmationTracker(rpc, timeout_ms=50, poll_interval_ms=10, read_retry=FAST_RETRY),
        config=config,
        relay=relay,
        simulation_retry=FAST_RETRY,
    )
    agent = MagicMock()
    agent.identity = AGENT_IDENTITY
    for method in ("get_token_price", "resolve_token", "stake", "swap", "mint_nft", "deploy_token", "launch_token"):
        setattr(agent, method, AsyncMock())
    market = MagicMock()
    market.get_meme_metrics = AsyncMock()
    market.get_market_metrics = AsyncMock()
    market.track_whale_activity = AsyncMock()
    market.watch_token_trades = AsyncMock()
    sentiment = MagicMock()
    sentiment.get_social_metrics = AsyncMock()
    liquidity = MagicMock()
    liquidity.generate_optimal_strategy = AsyncMock()
    toolkit = ChainToolkit(
        agent=agent,
        pipeline=pipeline,
        market=market,
        sentiment=sentiment,
        predictor=MagicMock(),
        liquidity=liquidity,
        default_slippage_bps=default_slippage_bps,
    )
    registry = toolkit.bind(ToolRegistry(error_tracker=ErrorTracker(), read_retry=FAST_RETRY))
    return registry, toolkit, pipeline, rpc


def sol_price() -> TokenPrice:
    return TokenPrice(
        symbol="SOL",
        mint="So11111111111111111111111111111111111111112",
        name="Wrapped SOL",
        decimals=9,
        price_usd=150.25,
    )


class TestBinding:

    def test_every_tool_has_a_handler(self):
        registry, _, _, _ = build()
        assert registry.missing() == frozenset()


class TestMutatingTools:

    @pytest.mark.asyncio
    async def test_swap_goes_through_the_pipeline(self):
        registry, toolkit, pipeline, rpc = build()
        instruction = make_instruction(inputMint="So11111111111111111111111111111111111111112", outputMint=USDC)
        toolkit.agent.swap.return_value = instruction
        rpc.confirm(instruction.signature)

        result = await registry.dispatch(
            "swapTokens",
            {"fromToken": "SOL", "toToken": "USDC", "amount": 1.0},
            context=USER,
        )

        toolkit.agent.swap.assert_awaited_once_with("SOL", "USDC", 1.0, 50, priority_fee=700)
        assert result["status"] == "confirmed"
        assert result["confirmed"] is True
        assert result["signature"] == instruction.signature
        pending = pipeline.get(result["transactionId"])
        assert pending.owner_id == "user-1"
        assert pending.conversation_id == "conv-1"
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_priority_fee_is_zero_when_protection_is_off(self):
        config = ProtectionConfig(enabled=False, strategy=ProtectionStrategy.NONE, max_priority_fee=5000)
        registry, toolkit, pipeline, rpc = build(config=config)
        instruction = make_instruction()
        toolkit.agent.stake.return_value = instruction
        rpc.confirm(instruction.signature)

        await registry.dispatch("stakeSOL", {"amount": 2}, context=USER)

        toolkit.agent.stake.assert_awaited_once_with(2.0, slippage_bps=50, priority_fee=0)
        assert rpc.sent == [instruction.serialized]
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_stake_uses_configured_slippage(self):
        registry, toolkit, pipeline, rpc = build(default_slippage_bps=125)
        instruction = make_instruction()
        toolkit.agent.stake.return_value = instruction
        rpc.confirm(instruction.signature)

        await registry.dispatch("stakeSOL", {"amount": 1}, context=USER)

        assert toolkit.agent.stake.await_args.kwargs["slippage_bps"] == 125
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_failed_simulation_is_reported_and_not_submitted(self):
        rpc = FakeRpc(RpcSimulation(err="InsufficientFundsForRent", logs=["insufficient lamports"]))
        registry, toolkit, pipeline, _ = build(rpc=rpc)
        toolkit.agent.swap.return_value = make_instruction()

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.dispatch("swapTokens", {"fromToken": "SOL", "toToken": "USDC", "amount": 1.0}, context=USER)

        assert exc_info.value.code == "simulation_failed"
        assert exc_info.value.details["logs"] == ["insufficient lamports"]
        assert toolkit.agent.swap.await_count == 1
        assert rpc.sent == []
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_launch_adds_liquidity_strategy_when_asked(self):
        registry, toolkit, pipeline, rpc = build()
        mint = "Mint1111111111111111111111111111111111111111"
        instruction = make_instruction(tokenAddress=mint)
        toolkit.agent.launch_token.return_value = instruction
        toolkit.liquidity.generate_optimal_strategy.return_value = EnrichmentSnapshot(
            source="dexscreener", token=mint, data={"stage": "bonding-curve"}
        )
        rpc.confirm(instruction.signature)

        result = await registry.dispatch(
            "launchPumpFunToken",
            {
                "tokenName": "Sion",
                "tokenTicker": "SION",
                "description": "test token",
                "imageUrl": "https://example.com/logo.png",
                "includeLiquidityStrategy": True,
            },
            context=USER,
        )

        assert result["liquidityStrategy"]["stage"] == "bonding-curve"
        toolkit.liquidity.generate_optimal_strategy.assert_awaited_once_with(mint)
        await pipeline.close()


class TestReadOnlyTools:

    @pytest.mark.asyncio
    async def test_unknown_price_is_unavailable_not_zero(self):
        registry, toolkit, _, _ = build()
        toolkit.agent.get_token_price.side_effect = DataUnavailable("No price for NOPE", source="jupiter")

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.dispatch("checkTokenPrice", {"symbol": "NOPE"}, context=USER)

        error = exc_info.value
        assert error.code == "data_unavailable"
        assert error.details["details"] == {"symbol": "NOPE", "price": "unavailable"}
        assert toolkit.agent.get_token_price.await_count == 1

    @pytest.mark.asyncio
    async def test_unavailable_enrichment_layer_is_marked(self):
        registry, toolkit, _, _ = build()
        toolkit.agent.get_token_price.return_value = sol_price()
        toolkit.market.get_meme_metrics.side_effect = DataUnavailable("Birdeye API key not configured", source="birdeye")
        toolkit.market.get_market_metrics.return_value = EnrichmentSnapshot(
            source="birdeye", token="SOL", data={"marketCap": 7.1e10}
        )

        result = await registry.dispatch(
            "checkTokenPrice",
            {"symbol": "SOL", "includeMemeMetrics": True, "includeMarketMetrics": True},
            context=USER,
        )

        assert result["priceUsd"] == 150.25
        assert result["memeMetrics"]["status"] == "unavailable"
        assert result["memeMetrics"]["source"] == "birdeye"
        assert result["marketMetrics"]["marketCap"] == 7.1e10
        assert "socialMetrics" not in result

    @pytest.mark.asyncio
    async def test_transaction_status_is_owner_scoped(self):
        registry, toolkit, pipeline, rpc = build()
        instruction = make_instruction()
        rpc.confirm(instruction.signature)
        pending = await pipeline.execute(instruction, owner_id="user-2")

        with pytest.raises(ToolExecutionError) as exc_info:
            await registry.dispatch("getTransactionStatus", {"transactionId": pending.id}, context=USER)
        assert exc_info.value.code == "not_found"

        status = await registry.dispatch(
            "getTransactionStatus",
            {"transactionId": pending.id},
            context=ToolContext(actor_id="user-2"),
        )
        assert status["status"] == "confirmed"
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_monitor_watches_token_activity(self):
        registry, toolkit, pipeline, rpc = build()
        toolkit.market.watch_token_trades.return_value = EnrichmentSnapshot(
            source="birdeye",
            token=USDC,
            data={"windowSeconds": 600, "tradeCount": 2, "whaleTrades": [{"txHash": "w1"}]},
        )
        toolkit.market.track_whale_activity.return_value = EnrichmentSnapshot(
            source="birdeye", token=USDC, data={"whaleTrades": [{"txHash": "w1"}]}
        )
        usdc_swap = make_instruction(outputMint=USDC)
        other = make_instruction(outputMint="Other111111111111111111111111111111111111111")
        for instruction in (usdc_swap, other):
            rpc.confirm(instruction.signature)
            await pipeline.execute(instruction, owner_id="user-1")

        result = await registry.dispatch(
            "monitorTransactions",
            {"tokenAddress": "USDC", "duration": 600, "includeWhaleAlerts": True},
            context=USER,
        )

        toolkit.market.watch_token_trades.assert_awaited_once_with("USDC", 600)
        assert result["tokenAddress"] == USDC
        assert result["durationSeconds"] == 600
        assert result["activity"]["tradeCount"] == 2
        assert result["whaleAlerts"]["whaleTrades"] == [{"txHash": "w1"}]
        assert result["agentTransactions"]["count"] == 1
        assert result["agentTransactions"]["transactions"][0]["description"] == usdc_swap.description
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_monitor_keeps_own_transactions_when_trades_are_unavailable(self):
        registry, toolkit, pipeline, rpc = build()
        toolkit.market.watch_token_trades.side_effect = DataUnavailable("no trades", source="birdeye")
        instruction = make_instruction(outputMint=USDC)
        rpc.confirm(instruction.signature)
        await pipeline.execute(instruction, owner_id="user-1")

        result = await registry.dispatch("monitorTransactions", {"tokenAddress": USDC, "duration": 60}, context=USER)

        assert result["activity"]["status"] == "unavailable"
        assert result["agentTransactions"]["count"] == 1
        assert "whaleAlerts" not in result
        toolkit.market.track_whale_activity.assert_not_awaited()
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_monitor_window_is_bounded(self):
        registry, _, pipeline, _ = build()

        with pytest.raises(InvalidArguments) as exc_info:
            await registry.dispatch("monitorTransactions", {"tokenAddress": USDC, "duration": 7 * 86400}, context=USER)

        assert exc_info.value.field == "duration"
        await pipeline.close()
