"""
Tool registry: validates and dispatches tool calls.

A call is checked against the session allow-list, then against the tool's
argument schema, and only then handed to the handler. Handlers of
read-only tools are retried on recoverable failures; mutating tools run
exactly once.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from ..errors import (
    ErrorTracker,
    InvalidArguments,
    NO_RETRY,
    RetryPolicy,
    SionError,
    ToolExecutionError,
    UnknownTool,
    mark_logged,
)
from ...providers.llm.base import ToolDefinition
from .schemas import CORE_TOOLS, ENHANCED_TOOLS, MUTATING_TOOLS, ToolName

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Who a tool call runs for."""
    actor_id: Optional[str] = None
    conversation_id: Optional[str] = None


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass
class RegisteredTool:
    name: ToolName
    schema: Type[BaseModel]
    handler: ToolHandler
    description: str
    mutating: bool

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition.from_model(self.name.value, self.description, self.schema)


def parse_tool_name(name: str) -> Optional[ToolName]:
    try:
        return ToolName(name)
    except ValueError:
        return None


def allowed_tools(settings: Any) -> FrozenSet[ToolName]:
    """Active tool set for a deployment.

    Core tools always, enhanced tools when enabled, minus anything listed in
    ``disabled_tools``. Unknown names in ``disabled_tools`` are a
    configuration error.
    """
    allowed = set(CORE_TOOLS)
    if settings.enable_enhanced_tools:
        allowed |= ENHANCED_TOOLS

    disabled = set()
    for raw in settings.disabled_tools or []:
        name = parse_tool_name(raw)
        if name is None:
            raise ValueError(f"disabled_tools names an unknown tool: {raw}")
        disabled.add(name)
    return frozenset(allowed - disabled)


def _violating_field(error: ValidationError) -> Optional[str]:
    for detail in error.errors():
        loc = [str(part) for part in detail.get("loc", ())]
        if loc:
            return ".".join(loc)
    return None


class ToolRegistry:
    """Name to {schema, description, handler} map with validated dispatch."""

    def __init__(
        self,
        error_tracker: Optional[ErrorTracker] = None,
        read_retry: Optional[RetryPolicy] = None,
    ):
        self._tools: Dict[ToolName, RegisteredTool] = {}
        self._errors = error_tracker or ErrorTracker()
        self._read_retry = read_retry or RetryPolicy()

    def register(
        self,
        name: str,
        schema: Type[BaseModel],
        handler: ToolHandler,
        description: str,
    ) -> None:
        tool_name = parse_tool_name(name)
        if tool_name is None:
            raise ValueError(f"Cannot register unknown tool {name!r}")
        if tool_name in self._tools:
            raise ValueError(f"Tool {tool_name.value} is already registered")
        self._tools[tool_name] = RegisteredTool(
            name=tool_name,
            schema=schema,
            handler=handler,
            description=description,
            mutating=tool_name in MUTATING_TOOLS,
        )

    def has_tool(self, name: str) -> bool:
        tool_name = parse_tool_name(name)
        return tool_name is not None and tool_name in self._tools

    def missing(self) -> FrozenSet[ToolName]:
        return frozenset(set(ToolName) - set(self._tools))

    def is_mutating(self, name: str) -> bool:
        tool_name = parse_tool_name(name)
        return tool_name in MUTATING_TOOLS if tool_name else False

    def definitions(self, allowed: Optional[Iterable[ToolName]] = None) -> List[ToolDefinition]:
        """Definitions handed to the model, in enum order."""
        allowed_set = set(allowed) if allowed is not None else set(ToolName)
        return [
            self._tools[name].definition
            for name in ToolName
            if name in allowed_set and name in self._tools
        ]

    def validate(self, name: str, raw_args: Optional[Mapping[str, Any]], allowed: Optional[Iterable[ToolName]] = None) -> BaseModel:
        """Resolve and validate a call without running it."""
        tool = self._resolve(name, allowed)
        try:
            return tool.schema.model_validate(dict(raw_args or {}))
        except ValidationError as exc:
            field = _violating_field(exc)
            raise InvalidArguments(
                f"Invalid arguments for {tool.name.value}: {exc.errors()[0].get('msg', 'invalid value')}"
                + (f" ({field})" if field else ""),
                field=field,
                details={"tool": tool.name.value, "errors": exc.errors(include_url=False, include_context=False)},
            ) from None

    def _resolve(self, name: str, allowed: Optional[Iterable[ToolName]]) -> RegisteredTool:
        tool_name = parse_tool_name(name)
        if tool_name is None or tool_name not in self._tools:
            raise UnknownTool(name)
        if allowed is not None and tool_name not in set(allowed):
            raise UnknownTool(name)
        return self._tools[tool_name]

    async def dispatch(
        self,
        name: str,
        raw_args: Optional[Mapping[str, Any]],
        context: Optional[ToolContext] = None,
        allowed: Optional[Iterable[ToolName]] = None,
    ) -> Any:
        """Validate and run one tool call.

        Raises ``UnknownTool`` or ``InvalidArguments`` before the handler is
        touched, and ``ToolExecutionError`` when the handler fails.
        """
        tool = self._resolve(name, allowed)
        args = self.validate(name, raw_args, allowed)
        context = context or ToolContext()
        policy = NO_RETRY if tool.mutating else self._read_retry

        try:
            return await policy.run(
                lambda: tool.handler(args, context),
                description=f"tool {tool.name.value}",
            )
        except Exception as exc:
            raise self._wrap(tool, exc, context) from exc

    def _wrap(self, tool: RegisteredTool, exc: Exception, context: ToolContext) -> ToolExecutionError:
        classification = self._errors.log_error(
            f"tool:{tool.name.value}",
            exc,
            conversation_id=context.conversation_id,
            mutating=tool.mutating,
        )
        if isinstance(exc, SionError):
            code, message, details = exc.code, exc.message, exc.to_payload()
        else:
            code, message, details = None, f"{tool.name.value} failed: {exc}", {}
        wrapped = ToolExecutionError(
            tool.name.value,
            message,
            code=code,
            retryable=False if tool.mutating else classification.recoverable,
            details=details,
        )
        mark_logged(wrapped)
        return wrapped
