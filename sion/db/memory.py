"""
In-process conversation store. Default backend and the one used in tests.
"""

import asyncio
from typing import Dict, List, Optional

from ..core.errors import Unauthorized
from ..types import Conversation, ConversationSummary, Message
from .base import ConversationStore


class InMemoryConversationStore(ConversationStore):

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    async def save_conversation_turn(
        self,
        conversation_id: str,
        messages: List[Message],
        owner_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> int:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id, owner_id=owner_id, title=title)
                self._conversations[conversation_id] = conversation
            elif (conversation.owner_id or None) != (owner_id or None):
                raise Unauthorized(
                    f"Conversation {conversation_id} belongs to another user",
                    {"conversationId": conversation_id},
                )

            known = {message.id for message in conversation.messages}
            added = 0
            for message in messages:
                if message.id in known:
                    continue
                conversation.messages.append(message.model_copy(update={"chat_id": conversation_id}, deep=True))
                known.add(message.id)
                added += 1
            return added

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    async def list_conversations(self, owner_id: str) -> List[ConversationSummary]:
        async with self._lock:
            owned = [c for c in self._conversations.values() if c.owner_id == owner_id]
        return [
            ConversationSummary(
                id=c.id,
                title=c.title,
                created_at=c.created_at,
                message_count=len(c.messages),
            )
            for c in sorted(owned, key=lambda c: c.created_at, reverse=True)
        ]

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._lock:
            return self._conversations.pop(conversation_id, None) is not None
