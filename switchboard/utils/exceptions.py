"""Custom exceptions for the orchestration runtime."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AgentError(Exception):
    """Base exception for agent-related errors."""
    pass


class AgentConfigError(AgentError):
    """Raised when agent configuration is invalid."""
    pass


class ModelBackendError(AgentError):
    """Raised when the model backend fails or returns a malformed response."""
    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)


class MaxTurnsExceeded(AgentError):
    """Raised when a run exceeds its turn budget. Carries the partial history."""
    def __init__(self, max_turns: int, history: List[Any], last_agent: Any = None):
        self.max_turns = max_turns
        self.history = history
        self.last_agent = last_agent
        super().__init__(f"Max turns ({max_turns}) exceeded")


# ============================================================================
# Recoverable errors, folded into history as tool results
# ============================================================================

class RecoverableError(AgentError):
    """Error the model can be told about instead of aborting the run."""
    code = "error"

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class ToolExecutionError(RecoverableError):
    """Raised when tool execution fails."""
    code = "tool_execution_failed"

    def __init__(self, tool_name: str, message: str, original_error: Exception | None = None):
        self.tool_name = tool_name
        self.original_error = original_error
        super().__init__(f"Tool '{tool_name}' execution failed: {message}")


class UnknownToolError(RecoverableError):
    """Raised when a requested tool is not in the active agent's namespace."""
    code = "unknown_tool"

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' not found")


class InvalidToolArgumentsError(RecoverableError):
    """Raised when tool arguments cannot be parsed or validated."""
    code = "invalid_tool_arguments"

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Invalid arguments for tool '{tool_name}': {message}")


class ApprovalDeniedError(RecoverableError):
    """Raised when a tool call requiring approval was rejected."""
    code = "approval_denied"

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' execution was rejected")


class HandoffError(RecoverableError):
    """Raised when agent handoff fails."""
    code = "handoff_failed"

    def __init__(self, target_agent: str, message: str):
        self.target_agent = target_agent
        super().__init__(f"Handoff to '{target_agent}' failed: {message}")


class InvalidHandoffError(HandoffError):
    """Raised when the target is not a permitted handoff of the active agent."""
    code = "invalid_handoff"

    def __init__(self, source_agent: str, target_agent: str):
        self.source_agent = source_agent
        super().__init__(target_agent, f"not a handoff target of '{source_agent}'")


class RemoteToolError(RecoverableError):
    """Raised when a capability server tool call fails.

    ``kind`` is one of ``transport``, ``timeout`` or ``application``.
    """
    code = "remote_tool_error"

    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    APPLICATION = "application"

    def __init__(self, server: str, tool_name: str, kind: str, message: str,
                 original_error: Optional[Exception] = None):
        self.server = server
        self.tool_name = tool_name
        self.kind = kind
        self.original_error = original_error
        super().__init__(f"Remote tool '{tool_name}' on '{server}' failed ({kind}): {message}")

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["kind"] = self.kind
        return payload


# ============================================================================
# Capability servers
# ============================================================================

class CapabilityServerError(AgentError):
    """Raised when a capability server cannot be connected or used."""
    def __init__(self, server: str, message: str, original_error: Exception | None = None):
        self.server = server
        self.original_error = original_error
        super().__init__(f"Capability server '{server}': {message}")


class CapabilityServerTimeout(CapabilityServerError):
    """Raised when a capability server handshake exceeds its startup timeout."""
    def __init__(self, server: str, timeout: float):
        self.timeout = timeout
        super().__init__(server, f"startup timed out after {timeout}s")
