from typing import Any, AsyncGenerator, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from .base import (
    LLMMessage,
    LLMProvider,
    LLMProviderAPIError,
    LLMProviderAuthError,
    LLMProviderError,
    LLMProviderRateLimitError,
    LLMStreamChunk,
    ToolCall,
    ToolDefinition,
)

DEFAULT_MAX_TOKENS = 4000


class AnthropicProvider(LLMProvider):
    """Claude over the Messages streaming API with native tool use."""

    name = "anthropic"
    supports_tools: bool = True

    def __init__(self, api_key: str, model: Optional[str] = None, **kwargs):
        if not model:
            raise ValueError("AnthropicProvider requires a model to be specified")
        super().__init__(api_key, model, **kwargs)

    def _setup_client(self, **kwargs) -> None:
        client = kwargs.get("client")
        self.client = client if client is not None else AsyncAnthropic(api_key=self.api_key)

    @staticmethod
    def _convert_message(msg: LLMMessage) -> Optional[Dict[str, Any]]:
        if msg.role == "tool_result":
            if not msg.tool_results:
                return None
            # all results answering one assistant turn travel in one user message
            return {"role": "user", "content": [tr.to_anthropic_format() for tr in msg.tool_results]}

        if msg.role == "assistant" and msg.tool_calls:
            content: List[Dict[str, Any]] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            content.extend(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
                for tc in msg.tool_calls
            )
            return {"role": "assistant", "content": content}

        if not msg.content:
            return None
        return {"role": msg.role, "content": msg.content}

    def _build_request(
        self,
        messages: List[LLMMessage],
        max_tokens: Optional[int],
        temperature: Optional[float],
        tools: Optional[List[ToolDefinition]],
        extra: Dict[str, Any],
    ) -> Dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system" and m.content)
        converted = [self._convert_message(m) for m in messages if m.role != "system"]

        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [m for m in converted if m is not None],
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            request["system"] = system
        if temperature is not None:
            request["temperature"] = temperature
        if tools:
            request["tools"] = [t.to_anthropic_format() for t in tools]
        request.update({k: v for k, v in extra.items() if k != "tools"})
        return request

    @staticmethod
    def _tool_calls(blocks: Any) -> List[ToolCall]:
        return [
            ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
            for block in blocks or []
            if getattr(block, "type", None) == "tool_use"
        ]

    @staticmethod
    def _translate_error(error: Exception) -> LLMProviderError:
        if isinstance(error, anthropic.AuthenticationError):
            return LLMProviderAuthError(f"Authentication failed: {error}")
        if isinstance(error, anthropic.RateLimitError):
            return LLMProviderRateLimitError(f"Rate limit exceeded: {error}")
        if isinstance(error, anthropic.APIError):
            return LLMProviderAPIError(f"API error: {error}")
        return LLMProviderError(f"Unexpected error: {error}")

    async def stream_response(
        self,
        messages: List[LLMMessage],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        tools: Optional[List[ToolDefinition]] = None,
        **kwargs
    ) -> AsyncGenerator[LLMStreamChunk, None]:
        """Text is forwarded as it arrives. Tool-use blocks are only complete
        once the message is, so they follow the final message."""
        request = self._build_request(messages, max_tokens, temperature, tools, kwargs)

        try:
            async with self.client.messages.stream(**request) as stream:
                async for event in stream:
                    if getattr(event, "type", None) == "text" and event.text:
                        yield LLMStreamChunk(type="text", text=event.text)
                final_message = await stream.get_final_message()
        except anthropic.AnthropicError as e:
            raise self._translate_error(e) from e

        for tool_call in self._tool_calls(final_message.content):
            yield LLMStreamChunk(type="tool_call", tool_call=tool_call)
        yield LLMStreamChunk(type="finish", finish_reason=final_message.stop_reason)
