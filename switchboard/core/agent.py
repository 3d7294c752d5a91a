"""Agent definitions: identity, instructions, model configuration, tools and handoffs."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Tuple, Union

from .tools import FunctionTool
from .types import RunContext
from ..utils.constants import HANDOFF_TOOL_PREFIX
from ..utils.exceptions import AgentConfigError
from ..utils.helpers import maybe_await, slugify

if TYPE_CHECKING:
    from ..services.mcp import MCPServer
    from ..services.model import Model, ModelSettings

InstructionsFn = Callable[[RunContext], Union[str, Awaitable[str]]]


@dataclass(frozen=True)
class StaticInstructions:
    text: str

    async def render(self, run_context: RunContext) -> str:
        return self.text


@dataclass(frozen=True)
class ComputedInstructions:
    """Instructions computed from the run context on every model call."""
    fn: InstructionsFn

    async def render(self, run_context: RunContext) -> str:
        return str(await maybe_await(self.fn(run_context)))


Instructions = Union[StaticInstructions, ComputedInstructions]


def as_instructions(value: Union[str, InstructionsFn, Instructions, None]) -> Instructions:
    if isinstance(value, (StaticInstructions, ComputedInstructions)):
        return value
    if value is None:
        return StaticInstructions("")
    if isinstance(value, str):
        return StaticInstructions(value)
    if callable(value):
        return ComputedInstructions(value)
    raise AgentConfigError(f"Unsupported instructions type: {type(value).__name__}")


def _default_settings() -> "ModelSettings":
    from ..services.model import ModelSettings

    return ModelSettings()


@dataclass(frozen=True, eq=False)
class Agent:
    """Immutable agent descriptor.

    Many agents may share the same capability server; the agent never owns
    its servers' connections.
    """
    name: str
    instructions: Any = None
    model: Union[str, "Model", None] = None
    model_settings: "ModelSettings" = field(default_factory=_default_settings)
    tools: Tuple[FunctionTool, ...] = ()
    mcp_servers: Tuple["MCPServer", ...] = ()
    handoffs: Tuple["Agent", ...] = ()
    handoff_description: str = ""
    allow_self_handoff: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise AgentConfigError("Agent name must be a non-empty string")
        object.__setattr__(self, "instructions", as_instructions(self.instructions))
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "mcp_servers", tuple(self.mcp_servers))
        object.__setattr__(self, "handoffs", tuple(self.handoffs))

        seen = set()
        for tool in self.tools:
            if not isinstance(tool, FunctionTool):
                raise AgentConfigError(f"Agent '{self.name}': tools must be FunctionTool instances")
            if tool.name in seen:
                raise AgentConfigError(f"Agent '{self.name}': duplicate tool name '{tool.name}'")
            seen.add(tool.name)
        for target in self.handoffs:
            if not isinstance(target, Agent):
                raise AgentConfigError(f"Agent '{self.name}': handoffs must be Agent instances")

    async def render_instructions(self, run_context: RunContext) -> str:
        return await self.instructions.render(run_context)

    def handoff_targets(self) -> Tuple["Agent", ...]:
        """Permitted handoff targets, including this agent when it is a re-entry point."""
        if self.allow_self_handoff and self not in self.handoffs:
            return self.handoffs + (self,)
        return self.handoffs

    def find_handoff(self, target: str) -> Optional["Agent"]:
        """Return the handoff target matching an agent name or handoff tool name."""
        for agent in self.handoff_targets():
            if target in (agent.name, handoff_tool_name(agent), slugify(agent.name)):
                return agent
        return None

    def clone(self, **changes: Any) -> "Agent":
        return dataclasses.replace(self, **changes)

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r})"


def handoff_tool_name(agent: Agent) -> str:
    return f"{HANDOFF_TOOL_PREFIX}{slugify(agent.name)}"


def handoff_tool_description(agent: Agent) -> str:
    description = f"Handoff to the {agent.name} agent to handle the request."
    if agent.handoff_description:
        description = f"{description} {agent.handoff_description}"
    return description
