"""
Shared fakes for the test suite: a scripted LLM provider, an in-memory RPC
node and instruction factories.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from sion.core.chain.base import ChainInstruction, InstructionKind
from sion.core.errors import RetryPolicy
from sion.providers.llm.base import LLMProvider, LLMStreamChunk, ToolCall
from sion.providers.solana_rpc import RpcSimulation, SignatureStatus

AGENT_IDENTITY = "AgentWa11et1111111111111111111111111111111"

FAST_RETRY = RetryPolicy(max_attempts=3, initial_delay_seconds=0, jitter=False)


def text(value: str) -> LLMStreamChunk:
    return LLMStreamChunk(type="text", text=value)


def call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> LLMStreamChunk:
    return LLMStreamChunk(
        type="tool_call",
        tool_call=ToolCall(id=call_id or f"call-{name}", name=name, arguments=arguments or {}),
    )


class ScriptedProvider(LLMProvider):
    """Replays one list of chunks per model invocation.

    A script entry that is an exception is raised mid-stream. When the script
    runs out the last entry is repeated.
    """

    supports_tools = True

    def __init__(self, script: List[Any]):
        self.script = script
        self.invocations: List[List[Any]] = []
        super().__init__("test-key", "test-model")

    def _setup_client(self, **kwargs) -> None:
        self.client = None

    async def stream_response(self, messages, max_tokens=None, temperature=None, tools=None, **kwargs):
        self.invocations.append(list(messages))
        step = self.script[min(len(self.invocations), len(self.script)) - 1]
        for chunk in step:
            if isinstance(chunk, Exception):
                raise chunk
            if chunk.tool_call is not None:
                # Ids are unique per invocation, as with a real model
                unique = chunk.tool_call.model_copy(update={"id": f"{chunk.tool_call.id}-{len(self.invocations)}"})
                chunk = chunk.model_copy(update={"tool_call": unique})
            yield chunk
        yield LLMStreamChunk(type="finish", finish_reason="end_turn")


class FakeRpc:
    """Records submissions and answers status lookups from a table."""

    def __init__(self, simulation: Optional[RpcSimulation] = None):
        self.simulation = simulation or RpcSimulation(err=None, logs=["Program log: ok"], units_consumed=5000)
        self.sent: List[str] = []
        self.statuses: Dict[str, SignatureStatus] = {}
        self.simulated: List[str] = []

    async def simulate_transaction(self, transaction: str) -> RpcSimulation:
        self.simulated.append(transaction)
        return self.simulation

    async def send_transaction(self, transaction: str) -> str:
        self.sent.append(transaction)
        return f"sig-of-{transaction}"

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[SignatureStatus]]:
        return [self.statuses.get(signature) for signature in signatures]

    def confirm(self, signature: str, confirmations: Optional[int] = 32) -> None:
        self.statuses[signature] = SignatureStatus(
            slot=100,
            confirmations=confirmations,
            err=None,
            confirmation_status="confirmed",
        )

    def fail(self, signature: str) -> None:
        self.statuses[signature] = SignatureStatus(
            slot=100,
            confirmations=1,
            err={"InstructionError": [0, {"Custom": 1}]},
            confirmation_status="confirmed",
        )

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "result": "ok"}

    async def close(self) -> None:
        pass


_counter = itertools.count(1)


def make_instruction(
    identity: str = AGENT_IDENTITY,
    kind: InstructionKind = InstructionKind.SWAP,
    **metadata: Any,
) -> ChainInstruction:
    n = next(_counter)
    return ChainInstruction(
        kind=kind,
        identity=identity,
        serialized=f"tx-{n}",
        signature=f"sig-{n}",
        description=f"test instruction {n}",
        metadata=metadata,
    )


@pytest.fixture
def fake_rpc() -> FakeRpc:
    return FakeRpc()
