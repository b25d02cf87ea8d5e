"""
Tests for the streaming turn orchestrator.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FAST_RETRY, FakeRpc, ScriptedProvider, call, make_instruction, text
from sion.core.errors import ErrorTracker
from sion.core.orchestrator import TurnOrchestrator, TurnState, sanitize_messages
from sion.core.tools import ChainToolkit, ToolName, ToolRegistry
from sion.core.tools.schemas import CheckTokenPriceArgs
from sion.core.transactions import (
    ConfirmationTracker,
    ProtectionConfig,
    ProtectionStrategy,
    TransactionPipeline,
    TxStatus,
)
from sion.db import InMemoryConversationStore
from sion.types import Message, MessageRole, TextPart, ToolCallPart, ToolResultPart

ALL_TOOLS = frozenset(ToolName)


def build(provider, handler=None, store=None, max_steps=5):
    tracker = ErrorTracker()
    registry = ToolRegistry(error_tracker=tracker, read_retry=FAST_RETRY)
    handler = handler or AsyncMock(return_value={"symbol": "SOL", "priceUsd": 150.0})
    registry.register(ToolName.CHECK_TOKEN_PRICE.value, CheckTokenPriceArgs, handler, "price")
    store = store or InMemoryConversationStore()
    orchestrator = TurnOrchestrator(registry, store, tracker, max_steps=max_steps)
    turn = orchestrator.start_turn(
        conversation_id="conv-1",
        user_text="what is SOL worth?",
        history=[],
        provider=provider,
        system_prompt="system",
        allowed_tools=ALL_TOOLS,
        actor_id="user-1",
        title="what is SOL worth?",
    )
    return turn, store, handler, tracker


async def collect(turn):
    return [event.to_payload() async for event in turn.stream()]


# =============================================================================
# Streaming
# =============================================================================

class TestTextTurn:

    @pytest.mark.asyncio
    async def test_text_deltas_are_forwarded_in_order(self):
        turn, store, _, _ = build(ScriptedProvider([[text("Hello"), text(" there")]]))

        events = await collect(turn)

        assert [e["type"] for e in events] == ["message-id", "text-delta", "text-delta", "finish"]
        assert [e["textDelta"] for e in events if e["type"] == "text-delta"] == ["Hello", " there"]
        assert events[-1] == {"type": "finish", "finishReason": "stop", "steps": 1}
        assert turn.state == TurnState.DONE

    @pytest.mark.asyncio
    async def test_completed_turn_is_persisted_with_owner_and_title(self):
        turn, store, _, _ = build(ScriptedProvider([[text("Hi")]]))

        await collect(turn)

        conversation = await store.get_conversation("conv-1")
        assert conversation.owner_id == "user-1"
        assert conversation.title == "what is SOL worth?"
        assert [m.role for m in conversation.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert conversation.messages[1].text() == "Hi"

    @pytest.mark.asyncio
    async def test_turn_can_only_stream_once(self):
        turn, _, _, _ = build(ScriptedProvider([[text("Hi")]]))
        await collect(turn)

        with pytest.raises(RuntimeError):
            await collect(turn)


class TestToolSteps:

    @pytest.mark.asyncio
    async def test_tool_result_is_fed_back_before_next_model_call(self):
        provider = ScriptedProvider([
            [text("Checking."), call("checkTokenPrice", {"symbol": "SOL"})],
            [text("SOL is $150.")],
        ])
        turn, store, handler, _ = build(provider)

        events = await collect(turn)

        types = [e["type"] for e in events]
        assert types.index("tool-call") < types.index("tool-result") < types.index("finish")
        result = next(e for e in events if e["type"] == "tool-result")
        assert result["isError"] is False
        assert result["result"]["priceUsd"] == 150.0
        handler.assert_awaited_once()

        # Second invocation sees the tool result
        second_input = provider.invocations[1]
        assert second_input[-1].role == "tool_result"
        assert second_input[-1].tool_results[0].tool_call_id == "call-checkTokenPrice-1"

        conversation = await store.get_conversation("conv-1")
        assert [m.role for m in conversation.messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        assert events[-1]["steps"] == 2

    @pytest.mark.asyncio
    async def test_calls_in_one_step_run_in_call_order(self):
        seen = []

        async def handler(args, context):
            seen.append(args.symbol)
            return {"symbol": args.symbol}

        provider = ScriptedProvider([
            [
                call("checkTokenPrice", {"symbol": "SOL"}, call_id="a"),
                call("checkTokenPrice", {"symbol": "BONK"}, call_id="b"),
            ],
            [text("done")],
        ])
        turn, _, _, _ = build(provider, handler=handler)

        events = await collect(turn)

        assert seen == ["SOL", "BONK"]
        ids = [e["toolCallId"] for e in events if e["type"] == "tool-result"]
        assert ids == ["a-1", "b-1"]

    @pytest.mark.asyncio
    async def test_text_after_tool_call_in_same_step(self):
        provider = ScriptedProvider([
            [call("checkTokenPrice", {"symbol": "SOL"}), text("one moment")],
            [text("done")],
        ])
        turn, _, handler, _ = build(provider)

        events = await collect(turn)

        handler.assert_awaited_once()
        assert events[-1]["finishReason"] == "stop"

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_result_without_running_handler(self):
        provider = ScriptedProvider([
            [call("checkTokenPrice", {"symbol": ""})],
            [text("Sorry, that symbol is empty.")],
        ])
        turn, _, handler, tracker = build(provider)

        events = await collect(turn)

        handler.assert_not_awaited()
        result = next(e for e in events if e["type"] == "tool-result")
        assert result["isError"] is True
        assert result["result"]["error"]["code"] == "invalid_arguments"
        assert result["result"]["error"]["field"] == "symbol"
        assert events[-1]["finishReason"] == "stop"
        assert tracker.snapshot()["scopes"]["tool:checkTokenPrice"]["count"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool_becomes_error_result(self):
        provider = ScriptedProvider([
            [call("transferEverything", {})],
            [text("I can't do that.")],
        ])
        turn, _, _, _ = build(provider)

        events = await collect(turn)

        result = next(e for e in events if e["type"] == "tool-result")
        assert result["result"]["error"]["code"] == "unknown_tool"

    @pytest.mark.asyncio
    async def test_transaction_results_add_an_annotation(self):
        handler = AsyncMock(return_value={"transactionId": "tx-1", "status": "confirmed", "signature": "sig"})
        provider = ScriptedProvider([[call("checkTokenPrice", {"symbol": "SOL"})], [text("ok")]])
        turn, _, _, _ = build(provider, handler=handler)

        events = await collect(turn)

        annotations = [e for e in events if e["type"] == "annotation" and e["kind"] == "transaction"]
        assert annotations == [{
            "type": "annotation",
            "kind": "transaction",
            "transactionId": "tx-1",
            "status": "confirmed",
            "signature": "sig",
        }]


class TestStepBound:

    @pytest.mark.asyncio
    async def test_model_is_invoked_at_most_five_times(self):
        provider = ScriptedProvider([[call("checkTokenPrice", {"symbol": "SOL"})]])
        turn, store, handler, _ = build(provider)

        events = await collect(turn)

        assert len(provider.invocations) == 5
        # The fifth step's call is never executed
        assert handler.await_count == 4
        assert events[-1] == {"type": "finish", "finishReason": "step-limit", "steps": 5}
        limit = next(e for e in events if e["type"] == "annotation" and e["kind"] == "step-limit")
        assert limit["skippedToolCalls"] == ["checkTokenPrice"]

        conversation = await store.get_conversation("conv-1")
        call_ids = [p.tool_call_id for m in conversation.messages for p in m.tool_calls()]
        result_ids = [p.tool_call_id for m in conversation.messages for p in m.tool_results()]
        assert len(call_ids) == len(result_ids) == 4

    @pytest.mark.asyncio
    async def test_configured_step_bound(self):
        provider = ScriptedProvider([[call("checkTokenPrice", {"symbol": "SOL"})]])
        turn, _, handler, _ = build(provider, max_steps=2)

        await collect(turn)

        assert len(provider.invocations) == 2
        assert handler.await_count == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_model_failure_ends_turn_with_error_event(self):
        provider = ScriptedProvider([[text("partial"), RuntimeError("stream reset")]])
        turn, store, _, tracker = build(provider)

        events = await collect(turn)

        error = next(e for e in events if e["type"] == "error")
        assert "stream reset" in error["message"]
        assert events[-1]["finishReason"] == "error"
        assert tracker.snapshot()["scopes"]["model"]["count"] == 1
        conversation = await store.get_conversation("conv-1")
        assert conversation.messages[-1].text() == "partial"

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_reach_the_client(self):
        store = AsyncMock()
        store.save_conversation_turn.side_effect = ConnectionError("redis down")
        turn, _, _, tracker = build(ScriptedProvider([[text("Hi")]]), store=store)

        events = await collect(turn)

        assert events[-1]["type"] == "finish"
        store.save_conversation_turn.assert_awaited_once()
        assert tracker.snapshot()["scopes"]["persistence"]["count"] == 1

    @pytest.mark.asyncio
    async def test_turn_in_someone_elses_conversation_is_not_persisted(self):
        store = InMemoryConversationStore()
        await store.save_conversation_turn(
            "conv-1",
            [Message(id="m-alice", role=MessageRole.USER, content="alice's question")],
            owner_id="alice",
        )
        turn, _, _, tracker = build(ScriptedProvider([[text("Hi")]]), store=store)

        events = await collect(turn)

        assert events[-1]["type"] == "finish"
        assert tracker.snapshot()["scopes"]["persistence"]["by_code"] == {"unauthorized": 1}
        conversation = await store.get_conversation("conv-1")
        assert [m.id for m in conversation.messages] == ["m-alice"]

    @pytest.mark.asyncio
    async def test_aborted_turn_is_not_persisted(self):
        store = AsyncMock()
        turn, _, _, _ = build(ScriptedProvider([[text("Hello"), text(" world")]]), store=store)

        stream = turn.stream()
        first = await stream.__anext__()
        await stream.aclose()

        assert first.type.value == "message-id"
        assert turn.state == TurnState.ABORTED
        assert turn.persisted is False
        store.save_conversation_turn.assert_not_awaited()


# =============================================================================
# Mutating tools through the transaction pipeline
# =============================================================================

def build_swap_turn(rpc, instruction):
    tracker = ErrorTracker()
    pipeline = TransactionPipeline(
        rpc=rpc,
        confirmation=ConfirmationTracker(rpc, timeout_ms=200, poll_interval_ms=10, read_retry=FAST_RETRY),
        config=ProtectionConfig(enabled=False, strategy=ProtectionStrategy.NONE, max_priority_fee=0),
        error_tracker=tracker,
        simulation_retry=FAST_RETRY,
    )
    agent = MagicMock()
    agent.swap = AsyncMock(return_value=instruction)
    toolkit = ChainToolkit(
        agent=agent,
        pipeline=pipeline,
        market=MagicMock(),
        sentiment=MagicMock(),
        predictor=MagicMock(),
        liquidity=MagicMock(),
    )
    registry = toolkit.bind(ToolRegistry(error_tracker=tracker, read_retry=FAST_RETRY))
    store = InMemoryConversationStore()
    provider = ScriptedProvider([
        [call("swapTokens", {"fromToken": "SOL", "toToken": "USDC", "amount": 1})],
        [text("Swapped 1 SOL for USDC.")],
    ])
    turn = TurnOrchestrator(registry, store, tracker).start_turn(
        conversation_id="conv-swap",
        user_text="swap 1 SOL to USDC",
        history=[],
        provider=provider,
        system_prompt="system",
        allowed_tools=ALL_TOOLS,
        actor_id="user-1",
        title="swap",
    )
    return turn, store, pipeline


class TestSwapThroughPipeline:

    @pytest.mark.asyncio
    async def test_confirmed_swap_is_streamed_and_persisted_once(self):
        rpc = FakeRpc()
        instruction = make_instruction()
        rpc.confirm(instruction.signature)
        turn, store, pipeline = build_swap_turn(rpc, instruction)

        events = await collect(turn)

        assert rpc.simulated == [instruction.serialized]
        assert rpc.sent == [instruction.serialized]
        result = next(e for e in events if e["type"] == "tool-result")
        assert result["isError"] is False
        assert result["result"]["status"] == "confirmed"
        [pending] = pipeline.list(owner_id="user-1")
        assert pending.status == TxStatus.CONFIRMED
        assert pending.conversation_id == "conv-swap"
        annotation = next(e for e in events if e["type"] == "annotation" and e["kind"] == "transaction")
        assert annotation["transactionId"] == pending.id
        assert events[-1] == {"type": "finish", "finishReason": "stop", "steps": 2}

        conversation = await store.get_conversation("conv-swap")
        assert [m.role for m in conversation.messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        assert len({m.id for m in conversation.messages}) == 4
        [tool_call] = conversation.messages[1].tool_calls()
        [tool_result] = conversation.messages[2].tool_results()
        assert tool_call.tool_name == "swapTokens"
        assert tool_result.tool_call_id == tool_call.tool_call_id
        assert conversation.messages[3].text() == "Swapped 1 SOL for USDC."
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_unexpected_send_error_reports_failed_swap(self):
        rpc = FakeRpc()
        rpc.send_transaction = AsyncMock(side_effect=RuntimeError("connection reset mid-body"))
        turn, store, pipeline = build_swap_turn(rpc, make_instruction())

        events = await collect(turn)

        result = next(e for e in events if e["type"] == "tool-result")
        assert result["result"]["status"] == "failed"
        assert result["result"]["confirmed"] is False
        assert events[-1]["finishReason"] == "stop"
        [pending] = pipeline.list()
        assert pending.status == TxStatus.FAILED
        assert pending.queue_position is None
        conversation = await store.get_conversation("conv-swap")
        assert len(conversation.messages) == 4
        await pipeline.close()


# =============================================================================
# Sanitization
# =============================================================================

class TestSanitizeMessages:

    def test_drops_calls_without_results_and_empty_messages(self):
        messages = [
            Message(id="u", role=MessageRole.USER, content="hi"),
            Message(id="a", role=MessageRole.ASSISTANT, content=[
                TextPart(text="let me check"),
                ToolCallPart(tool_call_id="c1", tool_name="checkTokenPrice", args={"symbol": "SOL"}),
                ToolCallPart(tool_call_id="c2", tool_name="checkTokenPrice", args={"symbol": "BONK"}),
            ]),
            Message(id="t", role=MessageRole.TOOL, content=[
                ToolResultPart(tool_call_id="c1", tool_name="checkTokenPrice", result={"priceUsd": 1}),
                ToolResultPart(tool_call_id="orphan", tool_name="checkTokenPrice", result={}),
            ]),
            Message(id="b", role=MessageRole.ASSISTANT, content=[
                ToolCallPart(tool_call_id="c3", tool_name="checkTokenPrice", args={}),
            ]),
            Message(id="e", role=MessageRole.ASSISTANT, content="   "),
        ]

        sanitized = sanitize_messages(messages)

        assert [m.id for m in sanitized] == ["u", "a", "t"]
        assert [p.tool_call_id for p in sanitized[1].tool_calls()] == ["c1"]
        assert [p.tool_call_id for p in sanitized[2].tool_results()] == ["c1"]
        assert sanitized[1].text() == "let me check"

    def test_original_messages_are_not_modified(self):
        message = Message(id="a", role=MessageRole.ASSISTANT, content=[
            ToolCallPart(tool_call_id="c1", tool_name="checkTokenPrice", args={}),
            TextPart(text="x"),
        ])

        sanitize_messages([message])

        assert len(message.content) == 2
