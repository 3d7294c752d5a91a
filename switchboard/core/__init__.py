"""Agent and tool definitions."""

from .types import JSON, RunContext
from .tools import FunctionTool, ToolSpec, function_tool
from .agent import (
    Agent,
    ComputedInstructions,
    StaticInstructions,
    as_instructions,
    handoff_tool_name,
)

__all__ = [
    "JSON",
    "RunContext",
    "FunctionTool",
    "ToolSpec",
    "function_tool",
    "Agent",
    "ComputedInstructions",
    "StaticInstructions",
    "as_instructions",
    "handoff_tool_name",
]
