from typing import Any

from .base import ConversationStore
from .memory import InMemoryConversationStore
from .redis_store import RedisConversationStore


def build_conversation_store(settings: Any) -> ConversationStore:
    backend = (settings.persistence_backend or "memory").lower()
    if backend == "memory":
        return InMemoryConversationStore()
    if backend == "redis":
        return RedisConversationStore(settings.redis_url)
    raise ValueError(f"Unknown persistence backend: {settings.persistence_backend}")


__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "RedisConversationStore",
    "build_conversation_store",
]
