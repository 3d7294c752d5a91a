"""Switchboard - multi-agent orchestration with tools, approvals, handoffs and MCP servers."""

from .config import RunConfig, Settings
from .core import Agent, FunctionTool, RunContext, function_tool
from .services.approvals import (
    ApprovalChannel,
    ApprovalRecord,
    ApprovalRequest,
    ConsoleApprovalChannel,
    PolicyApprovalChannel,
)
from .services.mcp import (
    ConnectionState,
    MCPServer,
    MCPServerStdio,
    MCPServerStreamableHttp,
    connect_servers,
    create_static_tool_filter,
)
from .services.model import (
    Model,
    ModelRequest,
    ModelResponse,
    ModelSettings,
    OpenAIChatCompletionsModel,
    OpenAIProvider,
)
from .services.runner import Runner, RunResult, RunState
from .stores.history import History, dumps_transcript, user
from .utils.exceptions import (
    AgentError,
    ApprovalDeniedError,
    CapabilityServerError,
    CapabilityServerTimeout,
    InvalidHandoffError,
    MaxTurnsExceeded,
    ModelBackendError,
    RemoteToolError,
    UnknownToolError,
)

__all__ = [
    # Configuration
    "RunConfig",
    "Settings",
    # Agents and tools
    "Agent",
    "FunctionTool",
    "RunContext",
    "function_tool",
    # Approvals
    "ApprovalChannel",
    "ApprovalRecord",
    "ApprovalRequest",
    "ConsoleApprovalChannel",
    "PolicyApprovalChannel",
    # Capability servers
    "ConnectionState",
    "MCPServer",
    "MCPServerStdio",
    "MCPServerStreamableHttp",
    "connect_servers",
    "create_static_tool_filter",
    # Model backend
    "Model",
    "ModelRequest",
    "ModelResponse",
    "ModelSettings",
    "OpenAIChatCompletionsModel",
    "OpenAIProvider",
    # Runner
    "Runner",
    "RunResult",
    "RunState",
    # History
    "History",
    "dumps_transcript",
    "user",
    # Errors
    "AgentError",
    "ApprovalDeniedError",
    "CapabilityServerError",
    "CapabilityServerTimeout",
    "InvalidHandoffError",
    "MaxTurnsExceeded",
    "ModelBackendError",
    "RemoteToolError",
    "UnknownToolError",
]
