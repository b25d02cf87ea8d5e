from .schemas import CORE_TOOLS, ENHANCED_TOOLS, MUTATING_TOOLS, TOOL_SCHEMAS, ToolName
from .registry import RegisteredTool, ToolContext, ToolRegistry, allowed_tools, parse_tool_name
from .toolkit import ChainToolkit

__all__ = [
    "CORE_TOOLS",
    "ENHANCED_TOOLS",
    "MUTATING_TOOLS",
    "TOOL_SCHEMAS",
    "ToolName",
    "RegisteredTool",
    "ToolContext",
    "ToolRegistry",
    "allowed_tools",
    "parse_tool_name",
    "ChainToolkit",
]
