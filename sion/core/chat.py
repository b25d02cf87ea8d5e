"""
Chat service: turns an HTTP chat request into a streamed turn.

Ownership and model availability are checked before anything is streamed,
so those failures surface as plain HTTP errors. Everything after that is
reported inside the event stream.
"""

import json
import logging
from typing import Any, AsyncGenerator, Callable, Dict, FrozenSet, List, Optional

from fastapi.encoders import jsonable_encoder

from ..auth.models import Actor
from ..db.base import ConversationStore
from ..providers.llm import get_llm_provider
from ..types import ChatRequest, ClientMessage, Conversation, ConversationSummary, derive_title
from ..types.events import error_event
from .chain.base import ChainAgent
from .errors import ErrorTracker, InvalidArguments, NotFound, Unauthorized
from .orchestrator import Turn, TurnOrchestrator, sanitize_messages
from .prompts import build_system_prompt
from .tools.schemas import ToolName
from .transactions.pipeline import TransactionPipeline

_logger = logging.getLogger(__name__)


def _sse_event(payload: Dict[str, Any]) -> str:
    encoded = jsonable_encoder(payload)
    return f"data: {json.dumps(encoded, ensure_ascii=False)}\n\n"


def _sse_done() -> str:
    return "data: [DONE]\n\n"


def client_message_text(message: ClientMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    texts = [
        part.get("text", "")
        for part in message.content
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "".join(texts)


class ChatService:

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        store: ConversationStore,
        agent: ChainAgent,
        pipeline: TransactionPipeline,
        allowed_tools: FrozenSet[ToolName],
        error_tracker: ErrorTracker,
        settings: Any,
        provider_factory: Callable[..., Any] = get_llm_provider,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.agent = agent
        self.pipeline = pipeline
        self.allowed_tools = allowed_tools
        self.errors = error_tracker
        self.settings = settings
        self._provider_factory = provider_factory

    async def _owned(self, conversation_id: str, actor: Actor) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if conversation.owner_id != actor.id:
            raise Unauthorized("You do not own this conversation")
        return conversation

    async def prepare_turn(self, request: ChatRequest, actor: Actor) -> Turn:
        """Validate the request and build the turn, before any streaming.

        Raises ``Unauthorized`` for someone else's conversation and
        ``ModelUnavailableError`` when no provider can serve the model.
        """
        latest = request.latest_user_message()
        user_text = client_message_text(latest).strip() if latest else ""
        if not user_text:
            raise InvalidArguments("The request has no user message", field="messages")

        conversation = await self.store.get_conversation(request.conversation_id)
        if conversation is not None and conversation.owner_id != actor.id:
            raise Unauthorized("You do not own this conversation")

        provider = self._provider_factory(model=request.model_id, settings=self.settings)

        system_prompt = build_system_prompt(
            self.allowed_tools,
            identity=self.agent.identity,
            protection=self.pipeline.config,
        )
        return self.orchestrator.start_turn(
            conversation_id=request.conversation_id,
            user_text=user_text,
            history=sanitize_messages(conversation.messages) if conversation else [],
            provider=provider,
            system_prompt=system_prompt,
            allowed_tools=self.allowed_tools,
            actor_id=actor.id,
            title=None if conversation else derive_title(user_text),
        )

    async def stream(self, turn: Turn) -> AsyncGenerator[str, None]:
        """SSE frames for ``turn``, ending with ``[DONE]``."""
        try:
            async for event in turn.stream():
                yield _sse_event(event.to_payload())
        except Exception as exc:
            self.errors.log_error("chat", exc, conversation_id=turn.conversation_id)
            _logger.error("Streaming chat error: %s", exc, exc_info=True)
            yield _sse_event(error_event(getattr(exc, "code", "internal_error"), str(exc)).to_payload())
        yield _sse_done()

    async def get_conversation(self, conversation_id: str, actor: Actor) -> Conversation:
        return await self._owned(conversation_id, actor)

    async def list_conversations(self, actor: Actor) -> List[ConversationSummary]:
        return await self.store.list_conversations(actor.id)

    async def delete_conversation(self, conversation_id: str, actor: Actor) -> None:
        await self._owned(conversation_id, actor)
        await self.store.delete_conversation(conversation_id)
        _logger.info("Deleted conversation %s for %s", conversation_id, actor.id)
