"""
Model provider interface.

The orchestrator only ever streams: a provider turns a message history and a
set of tool definitions into text deltas, complete tool calls and one finish
chunk. Provider failures surface as ``LLMProviderError`` subclasses.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Dict, List, Optional, Type

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """A tool as the model sees it: name, description and JSON schema."""
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_model(cls, name: str, description: str, schema: Type[BaseModel]) -> "ToolDefinition":
        input_schema = schema.model_json_schema()
        input_schema.pop("title", None)
        return cls(name=name, description=description, input_schema=input_schema)

    def to_anthropic_format(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one tool call as fed back to the model. Exactly one of
    ``result`` / ``error`` is meaningful."""
    tool_call_id: str
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_anthropic_format(self) -> Dict[str, Any]:
        content = {"error": self.error} if self.is_error else self.result
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": content if isinstance(content, str) else json.dumps(content, default=str),
            "is_error": self.is_error,
        }


class LLMMessage(BaseModel):
    role: str  # system | user | assistant | tool_result
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_results: Optional[List[ToolResult]] = None


class LLMStreamChunk(BaseModel):
    """One increment of a streamed response.

    ``text`` chunks arrive as the provider produces them, ``tool_call``
    chunks carry a complete parsed call and a single ``finish`` chunk ends
    the stream.
    """
    type: str  # text | tool_call | finish
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    name: str = ""
    supports_tools: bool = False

    def __init__(self, api_key: str, model: str, **kwargs):
        self.api_key = api_key
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._setup_client(**kwargs)

    @abstractmethod
    def _setup_client(self, **kwargs) -> None:
        ...

    @abstractmethod
    def stream_response(
        self,
        messages: List[LLMMessage],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        tools: Optional[List[ToolDefinition]] = None,
        **kwargs
    ) -> AsyncGenerator[LLMStreamChunk, None]:
        """Stream text deltas, then any tool calls, then a finish chunk."""


class LLMProviderError(Exception):
    code = "model_error"


class LLMProviderRateLimitError(LLMProviderError):
    code = "model_rate_limited"


class LLMProviderAuthError(LLMProviderError):
    code = "model_auth_failed"


class LLMProviderAPIError(LLMProviderError):
    code = "model_api_error"
