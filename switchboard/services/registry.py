"""Per-agent tool namespace and the invoker that applies the approval gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, MutableSequence, Optional, Union

from switchboard.core.agent import Agent
from switchboard.core.tools import FunctionTool, ToolSpec
from switchboard.core.types import RunContext
from switchboard.services.approvals import ApprovalChannel, ApprovalRecord, ApprovalRequest
from switchboard.services.mcp import MCPServer, RemoteToolInfo
from switchboard.services.model import ToolCallRequest
from switchboard.utils.exceptions import (
    ApprovalDeniedError,
    InvalidToolArgumentsError,
    RecoverableError,
    ToolExecutionError,
    UnknownToolError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalTool:
    tool: FunctionTool

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def spec(self) -> ToolSpec:
        return self.tool.spec


@dataclass(frozen=True)
class RemoteToolProxy:
    server: MCPServer
    info: RemoteToolInfo

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(self.info.name, self.info.description, self.info.input_schema)


ToolEntry = Union[LocalTool, RemoteToolProxy]


class ToolRegistry:
    """Explicit name -> tool mapping for one agent, local tools first."""

    def __init__(self, entries: Optional[Dict[str, ToolEntry]] = None):
        self._entries: Dict[str, ToolEntry] = dict(entries or {})

    @classmethod
    async def for_agent(cls, agent: Agent) -> "ToolRegistry":
        """Build the namespace from the agent's local tools and available servers.

        Remote tools whose name is already taken are skipped with a warning.
        Servers that are not connected or have failed contribute nothing.
        """
        entries: Dict[str, ToolEntry] = {t.name: LocalTool(t) for t in agent.tools}
        for server in agent.mcp_servers:
            if not server.is_available:
                logger.debug("Skipping unavailable capability server %s for %s", server.name, agent.name)
                continue
            for info in await server.list_tools():
                if info.name in entries:
                    logger.warning("Agent %s: tool %s from %s shadowed by an existing tool",
                                   agent.name, info.name, server.name)
                    continue
                entries[info.name] = RemoteToolProxy(server, info)
        return cls(entries)

    def specs(self) -> List[ToolSpec]:
        return [entry.spec for entry in self._entries.values()]

    def names(self) -> List[str]:
        return list(self._entries)

    def resolve(self, name: str) -> ToolEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class ToolOutcome:
    """Result of dispatching one tool call. ``pending`` is set while awaiting approval."""
    call: ToolCallRequest
    output: Any = None
    is_error: bool = False
    pending: Optional[ApprovalRequest] = None


class ToolInvoker:
    """Executes tool calls for one agent turn.

    Recoverable failures come back as error outcomes, never as exceptions.
    An approved call executes exactly once.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        run_context: RunContext,
        agent_name: str,
        approvals: Optional[ApprovalChannel] = None,
        decisions: Optional[Dict[str, bool]] = None,
        records: Optional[MutableSequence[ApprovalRecord]] = None,
    ):
        """
        Args:
            registry: Namespace of the active agent
            run_context: Context passed to predicates and tool functions
            agent_name: Name of the active agent
            approvals: Channel asked when a call needs approval and no decision exists
            decisions: Decisions already made, keyed by call id
            records: Sequence that every decision taken is appended to
        """
        self.registry = registry
        self.run_context = run_context
        self.agent_name = agent_name
        self.approvals = approvals
        self.decisions = decisions if decisions is not None else {}
        self.records = records if records is not None else []

    async def invoke(self, call: ToolCallRequest) -> ToolOutcome:
        try:
            entry = self.registry.resolve(call.name)
            if call.arguments is None:
                raise InvalidToolArgumentsError(call.name, f"not a JSON object: {call.raw_arguments!r}")

            if await self._needs_approval(entry, call.arguments):
                request = ApprovalRequest(call.call_id, call.name, dict(call.arguments), self.agent_name)
                approved = await self._decide(request)
                if approved is None:
                    logger.info("Tool call %s (%s) is pending approval", call.call_id, call.name)
                    return ToolOutcome(call, pending=request)
                if not approved:
                    raise ApprovalDeniedError(call.name)

            output = await self._execute(entry, call.arguments)
            return ToolOutcome(call, output=output)
        except RecoverableError as e:
            logger.debug("Tool call %s (%s) failed: %s", call.call_id, call.name, e)
            return ToolOutcome(call, output=e.to_payload(), is_error=True)

    async def _needs_approval(self, entry: ToolEntry, arguments: Dict[str, Any]) -> bool:
        if isinstance(entry, LocalTool):
            try:
                return await entry.tool.requires_approval(self.run_context, arguments)
            except Exception as e:
                logger.exception("Approval predicate of tool %s raised", entry.name)
                raise ToolExecutionError(entry.name, f"approval check failed: {e}", original_error=e) from e
        return entry.server.tool_needs_approval(entry.name)

    async def _decide(self, request: ApprovalRequest) -> Optional[bool]:
        if request.call_id in self.decisions:
            approved = self.decisions[request.call_id]
        elif self.approvals is not None:
            approved = await self.approvals.decide(request)
        else:
            return None
        self.records.append(ApprovalRecord(request.call_id, request.tool_name, approved))
        return approved

    async def _execute(self, entry: ToolEntry, arguments: Dict[str, Any]) -> Any:
        if isinstance(entry, RemoteToolProxy):
            return await entry.server.invoke(entry.name, arguments)
        try:
            return await entry.tool.invoke(self.run_context, arguments)
        except RecoverableError:
            raise
        except Exception as e:
            logger.exception("Tool %s raised", entry.name)
            raise ToolExecutionError(entry.name, str(e), original_error=e) from e
