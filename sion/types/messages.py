"""
Conversation and message models.

Message content is either plain text or a list of parts. Field aliases are
camelCase so persisted and streamed payloads look the same to clients.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class _Part(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TextPart(_Part):
    type: Literal["text"] = "text"
    text: str


class ToolCallPart(_Part):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: Any = Field(default_factory=dict)


class ToolResultPart(_Part):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    result: Any = None
    is_error: bool = Field(default=False, alias="isError")


MessagePart = Annotated[Union[TextPart, ToolCallPart, ToolResultPart], Field(discriminator="type")]


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    role: MessageRole
    content: Union[str, List[MessagePart]]
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")

    def text(self) -> str:
        """Concatenated text content, ignoring tool parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    def tool_calls(self) -> List[ToolCallPart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ToolCallPart)]

    def tool_results(self) -> List[ToolResultPart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ToolResultPart)]

    def is_empty(self) -> bool:
        if isinstance(self.content, str):
            return not self.content.strip()
        return not any(
            not isinstance(part, TextPart) or part.text.strip() for part in self.content
        )


class Conversation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    messages: List[Message] = Field(default_factory=list)


class ConversationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")
    message_count: int = Field(default=0, alias="messageCount")


TITLE_MAX_LENGTH = 80


def derive_title(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= TITLE_MAX_LENGTH:
        return collapsed
    return collapsed[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
