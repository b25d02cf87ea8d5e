"""
Redis conversation store.

Layout per conversation:
    sion:conv:{id}:meta       hash   owner_id, title, created_at
    sion:conv:{id}:messages   hash   message id -> message JSON
    sion:conv:{id}:order      list   message ids in conversation order
    sion:owner:{owner}        set    conversation ids

``HSETNX`` on the messages hash decides whether a message is new, which
keeps repeated saves of the same message id idempotent. The owner is
claimed with ``HSETNX`` inside a MULTI block, so concurrent creators agree
on a single owner and every later save is checked against it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import redis.asyncio as redis

from ..core.errors import Unauthorized
from ..types import Conversation, ConversationSummary, Message
from .base import ConversationStore

logger = logging.getLogger(__name__)

PREFIX = "sion"


def _meta_key(conversation_id: str) -> str:
    return f"{PREFIX}:conv:{conversation_id}:meta"


def _messages_key(conversation_id: str) -> str:
    return f"{PREFIX}:conv:{conversation_id}:messages"


def _order_key(conversation_id: str) -> str:
    return f"{PREFIX}:conv:{conversation_id}:order"


def _owner_key(owner_id: str) -> str:
    return f"{PREFIX}:owner:{owner_id}"


class RedisConversationStore(ConversationStore):

    def __init__(self, redis_url: str = "", client: Optional[Any] = None):
        if client is None and not redis_url:
            raise ValueError("RedisConversationStore needs a redis_url or a client")
        self._client = client or redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    async def save_conversation_turn(
        self,
        conversation_id: str,
        messages: List[Message],
        owner_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> int:
        meta_key = _meta_key(conversation_id)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hsetnx(meta_key, "owner_id", owner_id or "")
            pipe.hsetnx(meta_key, "created_at", datetime.now(timezone.utc).isoformat())
            pipe.hget(meta_key, "owner_id")
            created, _, stored_owner = await pipe.execute()

        if (stored_owner or None) != (owner_id or None):
            raise Unauthorized(
                f"Conversation {conversation_id} belongs to another user",
                {"conversationId": conversation_id},
            )
        if created:
            if owner_id:
                await self._client.sadd(_owner_key(owner_id), conversation_id)
            if title:
                await self._client.hset(meta_key, "title", title)

        added = 0
        for message in messages:
            stored = message.model_copy(update={"chat_id": conversation_id})
            is_new = await self._client.hsetnx(
                _messages_key(conversation_id),
                stored.id,
                stored.model_dump_json(by_alias=True),
            )
            if is_new:
                await self._client.rpush(_order_key(conversation_id), stored.id)
                added += 1
        return added

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        meta = await self._client.hgetall(_meta_key(conversation_id))
        if not meta:
            return None
        ids = await self._client.lrange(_order_key(conversation_id), 0, -1)
        raw_messages = await self._client.hmget(_messages_key(conversation_id), ids) if ids else []
        messages = [Message.model_validate_json(raw) for raw in raw_messages if raw]
        return Conversation(
            id=conversation_id,
            owner_id=meta.get("owner_id") or None,
            title=meta.get("title") or None,
            created_at=datetime.fromisoformat(meta["created_at"]),
            messages=messages,
        )

    async def list_conversations(self, owner_id: str) -> List[ConversationSummary]:
        summaries = []
        for conversation_id in await self._client.smembers(_owner_key(owner_id)):
            meta = await self._client.hgetall(_meta_key(conversation_id))
            if not meta:
                continue
            summaries.append(ConversationSummary(
                id=conversation_id,
                title=meta.get("title") or None,
                created_at=datetime.fromisoformat(meta["created_at"]),
                message_count=await self._client.llen(_order_key(conversation_id)),
            ))
        return sorted(summaries, key=lambda s: s.created_at, reverse=True)

    async def delete_conversation(self, conversation_id: str) -> bool:
        meta = await self._client.hgetall(_meta_key(conversation_id))
        if not meta:
            return False
        owner_id = meta.get("owner_id")
        await self._client.delete(
            _meta_key(conversation_id),
            _messages_key(conversation_id),
            _order_key(conversation_id),
        )
        if owner_id:
            await self._client.srem(_owner_key(owner_id), conversation_id)
        return True

    async def close(self) -> None:
        await self._client.aclose()

    async def health_check(self) -> dict:
        try:
            await self._client.ping()
            return {"status": "healthy", "backend": "redis"}
        except redis.RedisError as e:
            return {"status": "error", "backend": "redis", "reason": str(e)}
