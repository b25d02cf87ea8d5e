from .messages import (
    Conversation,
    ConversationSummary,
    Message,
    MessagePart,
    MessageRole,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    derive_title,
    new_id,
)
from .requests import ChatRequest, ClientMessage, WalletSignInRequest, WalletSignInResponse
from .events import StreamEvent, StreamEventType

__all__ = [
    "Conversation",
    "ConversationSummary",
    "Message",
    "MessagePart",
    "MessageRole",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "derive_title",
    "new_id",
    "ChatRequest",
    "ClientMessage",
    "WalletSignInRequest",
    "WalletSignInResponse",
    "StreamEvent",
    "StreamEventType",
]
