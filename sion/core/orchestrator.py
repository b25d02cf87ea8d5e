"""
Streaming turn orchestrator.

Drives one user turn as a bounded loop between the model and the tool
registry:

    awaiting_model -> streaming_text / emitting_tool_call
        -> awaiting_tool_result -> awaiting_model ... -> done | aborted

Text deltas are forwarded as they arrive. Tool calls are dispatched in call
order and their results fed back to the model. A turn that ends ``done`` is
sanitized and persisted exactly once; an aborted turn is not persisted.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional, Set

from ..db.base import ConversationStore
from ..providers.llm.base import LLMMessage, LLMProvider, ToolCall, ToolResult
from ..types import Message, MessageRole, TextPart, ToolCallPart, ToolResultPart, new_id
from ..types.events import (
    StreamEvent,
    annotation_event,
    error_event,
    finish_event,
    message_id_event,
    text_delta_event,
    tool_call_event,
    tool_result_event,
)
from .errors import ErrorTracker, InvalidTurnTransition, SionError
from .tools.registry import ToolContext, ToolRegistry
from .tools.schemas import ToolName

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    STREAMING_TEXT = "streaming_text"
    EMITTING_TOOL_CALL = "emitting_tool_call"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    DONE = "done"
    ABORTED = "aborted"


TURN_TRANSITIONS: Dict[TurnState, Set[TurnState]] = {
    TurnState.AWAITING_MODEL: {
        TurnState.STREAMING_TEXT,
        TurnState.EMITTING_TOOL_CALL,
        TurnState.DONE,
        TurnState.ABORTED,
    },
    TurnState.STREAMING_TEXT: {
        TurnState.EMITTING_TOOL_CALL,
        TurnState.DONE,
        TurnState.ABORTED,
    },
    TurnState.EMITTING_TOOL_CALL: {
        TurnState.STREAMING_TEXT,      # text after a tool-use block
        TurnState.AWAITING_TOOL_RESULT,
        TurnState.DONE,                # step bound reached, calls not executed
        TurnState.ABORTED,
    },
    TurnState.AWAITING_TOOL_RESULT: {
        TurnState.EMITTING_TOOL_CALL,  # next call of the same step
        TurnState.AWAITING_MODEL,
        TurnState.ABORTED,
    },
    TurnState.DONE: set(),
    TurnState.ABORTED: set(),
}


def sanitize_messages(messages: List[Message]) -> List[Message]:
    """Drop tool calls without a result, results without a call, and
    messages left empty by that. Order is preserved."""
    call_ids = {part.tool_call_id for m in messages for part in m.tool_calls()}
    result_ids = {part.tool_call_id for m in messages for part in m.tool_results()}
    complete = call_ids & result_ids

    sanitized: List[Message] = []
    for message in messages:
        if isinstance(message.content, str):
            if message.content.strip():
                sanitized.append(message)
            continue
        parts = [
            part for part in message.content
            if isinstance(part, TextPart) or part.tool_call_id in complete
        ]
        candidate = message.model_copy(update={"content": parts})
        if not candidate.is_empty():
            sanitized.append(candidate)
    return sanitized


def to_llm_messages(messages: List[Message]) -> List[LLMMessage]:
    """Convert stored messages into the provider's message format."""
    converted: List[LLMMessage] = []
    for message in messages:
        if message.role == MessageRole.USER:
            converted.append(LLMMessage(role="user", content=message.text()))
        elif message.role == MessageRole.ASSISTANT:
            calls = [
                ToolCall(id=part.tool_call_id, name=part.tool_name, arguments=part.args or {})
                for part in message.tool_calls()
            ]
            converted.append(LLMMessage(
                role="assistant",
                content=message.text() or None,
                tool_calls=calls or None,
            ))
        else:
            results = []
            for part in message.tool_results():
                if part.is_error:
                    error = part.result.get("error") if isinstance(part.result, dict) else part.result
                    results.append(ToolResult(tool_call_id=part.tool_call_id, error=error or {}))
                else:
                    results.append(ToolResult(tool_call_id=part.tool_call_id, result=part.result))
            if results:
                converted.append(LLMMessage(role="tool_result", tool_results=results))
    return converted


class Turn:
    """One user turn. Iterate ``stream()`` once to run it."""

    def __init__(
        self,
        *,
        conversation_id: str,
        user_message: Message,
        history: List[Message],
        provider: LLMProvider,
        registry: ToolRegistry,
        store: ConversationStore,
        error_tracker: ErrorTracker,
        system_prompt: str,
        allowed_tools: FrozenSet[ToolName],
        actor_id: Optional[str] = None,
        title: Optional[str] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.conversation_id = conversation_id
        self.user_message = user_message
        self.history = list(history)
        self.provider = provider
        self.registry = registry
        self.store = store
        self.errors = error_tracker
        self.system_prompt = system_prompt
        self.allowed_tools = allowed_tools
        self.actor_id = actor_id
        self.title = title
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.temperature = temperature

        self.state = TurnState.AWAITING_MODEL
        self.steps = 0
        self.messages: List[Message] = []     # produced during this turn
        self.finish_reason: Optional[str] = None
        self.persisted = False
        self._started = False

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: TurnState) -> None:
        if target not in TURN_TRANSITIONS[self.state]:
            raise InvalidTurnTransition(self.state, target)
        logger.debug("Turn %s: %s -> %s", self.conversation_id, self.state.value, target.value)
        self.state = target

    @property
    def context(self) -> ToolContext:
        return ToolContext(actor_id=self.actor_id, conversation_id=self.conversation_id)

    def _llm_input(self) -> List[LLMMessage]:
        seed = [LLMMessage(role="system", content=self.system_prompt)]
        return seed + to_llm_messages(self.history + [self.user_message] + self.messages)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def stream(self) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise RuntimeError("A turn can only be streamed once")
        self._started = True

        events = self._run()
        try:
            async for event in events:
                yield event
        except (asyncio.CancelledError, GeneratorExit):
            if self.state not in (TurnState.DONE, TurnState.ABORTED):
                self._transition(TurnState.ABORTED)
                logger.info(
                    "Turn for %s aborted by client after %d step(s)",
                    self.conversation_id,
                    self.steps,
                )
            raise
        finally:
            await events.aclose()

    async def _run(self) -> AsyncIterator[StreamEvent]:
        tool_definitions = self.registry.definitions(self.allowed_tools)

        while True:
            self.steps += 1
            assistant = Message(id=new_id(), chat_id=self.conversation_id, role=MessageRole.ASSISTANT, content=[])
            yield message_id_event(assistant.id)

            text_parts: List[str] = []
            calls: List[ToolCall] = []
            model_error: Optional[BaseException] = None

            try:
                async for chunk in self.provider.stream_response(
                    self._llm_input(),
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    tools=tool_definitions,
                ):
                    if chunk.type == "text" and chunk.text:
                        if self.state != TurnState.STREAMING_TEXT:
                            self._transition(TurnState.STREAMING_TEXT)
                        text_parts.append(chunk.text)
                        yield text_delta_event(chunk.text)
                    elif chunk.type == "tool_call" and chunk.tool_call is not None:
                        if self.state != TurnState.EMITTING_TOOL_CALL:
                            self._transition(TurnState.EMITTING_TOOL_CALL)
                        calls.append(chunk.tool_call)
            except Exception as exc:
                model_error = exc

            assistant.content = self._assistant_parts("".join(text_parts), calls)
            self.messages.append(assistant)

            if model_error is not None:
                self.errors.log_error("model", model_error, conversation_id=self.conversation_id, step=self.steps)
                code = getattr(model_error, "code", "model_error")
                yield error_event(code, f"The model stopped responding: {model_error}")
                async for event in self._finish("error"):
                    yield event
                return

            if not calls:
                async for event in self._finish("stop"):
                    yield event
                return

            if self.steps >= self.max_steps:
                # Calls requested on the last step never run; sanitize drops them
                yield annotation_event(
                    "step-limit",
                    steps=self.steps,
                    maxSteps=self.max_steps,
                    skippedToolCalls=[call.name for call in calls],
                )
                async for event in self._finish("step-limit"):
                    yield event
                return

            results: List[ToolResultPart] = []
            for call in calls:
                if self.state != TurnState.EMITTING_TOOL_CALL:
                    self._transition(TurnState.EMITTING_TOOL_CALL)
                yield tool_call_event(call.id, call.name, call.arguments)

                self._transition(TurnState.AWAITING_TOOL_RESULT)
                part = await self._execute(call)
                results.append(part)
                yield tool_result_event(part.tool_call_id, part.tool_name, part.result, part.is_error)

                annotation = self._transaction_annotation(part)
                if annotation is not None:
                    yield annotation

            self.messages.append(Message(
                id=new_id(),
                chat_id=self.conversation_id,
                role=MessageRole.TOOL,
                content=results,
            ))
            self._transition(TurnState.AWAITING_MODEL)
            yield annotation_event("step", step=self.steps, maxSteps=self.max_steps)

    @staticmethod
    def _assistant_parts(text: str, calls: List[ToolCall]) -> List[Any]:
        parts: List[Any] = []
        if text:
            parts.append(TextPart(text=text))
        for call in calls:
            parts.append(ToolCallPart(tool_call_id=call.id, tool_name=call.name, args=call.arguments))
        return parts

    async def _execute(self, call: ToolCall) -> ToolResultPart:
        """Dispatch one call; failures become error results for the model."""
        try:
            result = await self.registry.dispatch(
                call.name,
                call.arguments,
                context=self.context,
                allowed=self.allowed_tools,
            )
        except SionError as exc:
            self.errors.log_error(
                f"tool:{call.name}",
                exc,
                conversation_id=self.conversation_id,
                tool_call_id=call.id,
            )
            return ToolResultPart(
                tool_call_id=call.id,
                tool_name=call.name,
                result={"error": exc.to_payload()},
                is_error=True,
            )
        return ToolResultPart(tool_call_id=call.id, tool_name=call.name, result=result)

    @staticmethod
    def _transaction_annotation(part: ToolResultPart) -> Optional[StreamEvent]:
        if part.is_error or not isinstance(part.result, dict) or "transactionId" not in part.result:
            return None
        return annotation_event(
            "transaction",
            transactionId=part.result["transactionId"],
            status=part.result.get("status"),
            signature=part.result.get("signature"),
        )

    async def _finish(self, reason: str) -> AsyncIterator[StreamEvent]:
        self._transition(TurnState.DONE)
        self.finish_reason = reason
        await self._persist()
        yield finish_event(reason, self.steps)

    async def _persist(self) -> None:
        """Save the sanitized turn once. Storage failures never reach the client."""
        if self.persisted:
            return
        self.persisted = True
        batch = sanitize_messages([self.user_message] + self.messages)
        try:
            await self.store.save_conversation_turn(
                self.conversation_id,
                batch,
                owner_id=self.actor_id,
                title=self.title,
            )
        except Exception as exc:
            self.errors.log_error("persistence", exc, conversation_id=self.conversation_id)


class TurnOrchestrator:
    """Builds turns with the process-wide registry, store and tracker."""

    def __init__(
        self,
        registry: ToolRegistry,
        store: ConversationStore,
        error_tracker: ErrorTracker,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.registry = registry
        self.store = store
        self.errors = error_tracker
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.temperature = temperature

    def start_turn(
        self,
        *,
        conversation_id: str,
        user_text: str,
        history: List[Message],
        provider: LLMProvider,
        system_prompt: str,
        allowed_tools: FrozenSet[ToolName],
        actor_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Turn:
        user_message = Message(
            id=new_id(),
            chat_id=conversation_id,
            role=MessageRole.USER,
            content=user_text,
        )
        return Turn(
            conversation_id=conversation_id,
            user_message=user_message,
            history=history,
            provider=provider,
            registry=self.registry,
            store=self.store,
            error_tracker=self.errors,
            system_prompt=system_prompt,
            allowed_tools=allowed_tools,
            actor_id=actor_id,
            title=title,
            max_steps=self.max_steps,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
