from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ClientMessage(BaseModel):
    """A message as sent by the client. Its id is never used for persistence."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, description="Client-side id, ignored for storage")
    role: str = Field(description="Message role: user, assistant or tool")
    content: Union[str, List[Any]] = Field(description="Text or structured parts")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(
        alias="conversationId",
        min_length=1,
        description="Conversation identifier, created on first use",
    )
    messages: List[ClientMessage] = Field(min_length=1, description="Client view of the conversation")
    model_id: Optional[str] = Field(default=None, alias="modelId", description="Model override for this turn")

    def latest_user_message(self) -> Optional[ClientMessage]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message
        return None


class WalletSignInRequest(BaseModel):
    message: str = Field(description="Sign-In-With-Solana message")
    signature: str = Field(description="Base58 or base64 signature over the message")


class WalletSignInResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    actor_id: str
