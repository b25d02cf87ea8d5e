"""
Conversation persistence interface.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import Conversation, ConversationSummary, Message


class ConversationStore(ABC):
    """Append-only conversation storage.

    ``save_conversation_turn`` is idempotent per message id: saving a
    message whose id is already stored leaves the stored copy untouched.
    """

    @abstractmethod
    async def save_conversation_turn(
        self,
        conversation_id: str,
        messages: List[Message],
        owner_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> int:
        """Append ``messages``; returns how many were newly stored.

        Raises ``Unauthorized`` when the conversation already exists under
        a different owner.
        """

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_conversations(self, owner_id: str) -> List[ConversationSummary]:
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool:
        """Returns False when there was nothing to delete."""

    async def close(self) -> None:
        return None

    async def health_check(self) -> dict:
        return {"status": "healthy", "backend": type(self).__name__}
