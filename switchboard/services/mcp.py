"""Capability server clients: MCP servers reached over streamable HTTP or a stdio subprocess."""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import shlex
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence

import anyio
import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED

from switchboard.utils.constants import DEFAULT_MCP_CALL_TIMEOUT, DEFAULT_MCP_STARTUP_TIMEOUT
from switchboard.utils.exceptions import CapabilityServerError, CapabilityServerTimeout, RemoteToolError

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    httpx.HTTPError,
    OSError,
)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True)
class RemoteToolInfo:
    """One entry of a capability server's tool catalogue."""
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolFilter:
    """Static allow/deny list applied when a server's catalogue is fetched."""
    allowed: Optional[frozenset] = None
    blocked: frozenset = frozenset()

    def __call__(self, tool_name: str) -> bool:
        if self.allowed is not None and tool_name not in self.allowed:
            return False
        return tool_name not in self.blocked


def create_static_tool_filter(
    allowed: Optional[Iterable[str]] = None,
    blocked: Optional[Iterable[str]] = None,
) -> ToolFilter:
    return ToolFilter(
        allowed=frozenset(allowed) if allowed is not None else None,
        blocked=frozenset(blocked or ()),
    )


class MCPServer(ABC):
    """Client for one MCP capability server.

    Owns exactly one transport. ``connect`` and ``close`` are serialized by a
    lock; ``close`` is idempotent and never raises.
    """

    def __init__(
        self,
        name: str,
        tool_filter: Optional[Callable[[str], bool]] = None,
        require_approval: Optional[Dict[str, Sequence[str]]] = None,
        startup_timeout: Optional[float] = None,
        call_timeout: Optional[float] = DEFAULT_MCP_CALL_TIMEOUT,
    ):
        """
        Args:
            name: Readable server name, used in logs and errors
            tool_filter: Predicate on tool names; evaluated once per connection
            require_approval: Tool names that need approval, e.g.
                ``{"always": ["write_file"], "never": ["read_file"]}``
            startup_timeout: Seconds allowed for transport start plus handshake
            call_timeout: Seconds allowed for one tool call round trip
        """
        self.name = name
        self.tool_filter = tool_filter
        self.require_approval = require_approval or {}
        self.startup_timeout = startup_timeout
        self.call_timeout = call_timeout
        self.state = ConnectionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._exit_stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None
        self._tools: List[RemoteToolInfo] = []
        self._failed: Optional[str] = None

    @abstractmethod
    def _transport(self) -> Any:
        """Return an async context manager yielding ``(read_stream, write_stream, ...)``."""

    @property
    def is_available(self) -> bool:
        """Connected and not degraded by an earlier transport failure."""
        return self.state is ConnectionState.CONNECTED and self._failed is None

    async def connect(self) -> None:
        """Start the transport, run the handshake and fetch the tool catalogue.

        Raises:
            CapabilityServerTimeout: If the handshake exceeds ``startup_timeout``
            CapabilityServerError: If the server can't be reached or was closed
        """
        async with self._lock:
            if self.state is ConnectionState.CONNECTED:
                return
            if self.state is ConnectionState.CLOSED:
                raise CapabilityServerError(self.name, "connection already closed")

            self.state = ConnectionState.CONNECTING
            self._exit_stack = AsyncExitStack()
            try:
                async with asyncio.timeout(self.startup_timeout):
                    await self._open_session(self._exit_stack)
            except TimeoutError as e:
                await self._teardown()
                self.state = ConnectionState.DISCONNECTED
                raise CapabilityServerTimeout(self.name, self.startup_timeout) from e
            except Exception as e:
                await self._teardown()
                self.state = ConnectionState.DISCONNECTED
                raise CapabilityServerError(self.name, f"connection failed: {e}", original_error=e) from e

            self.state = ConnectionState.CONNECTED
            self._failed = None
            logger.info("Connected to capability server %s (%d tools)", self.name, len(self._tools))

    async def _open_session(self, stack: AsyncExitStack) -> None:
        streams = await stack.enter_async_context(self._transport())
        read_stream, write_stream = streams[0], streams[1]
        read_timeout = timedelta(seconds=self.call_timeout) if self.call_timeout else None
        session = await stack.enter_async_context(
            ClientSession(read_stream, write_stream, read_timeout_seconds=read_timeout)
        )
        await session.initialize()
        listed = await session.list_tools()
        self._session = session
        self._tools = [
            RemoteToolInfo(
                name=t.name,
                description=t.description or "",
                input_schema=dict(t.inputSchema or {"type": "object", "properties": {}}),
            )
            for t in listed.tools
            if self.tool_filter is None or self.tool_filter(t.name)
        ]

    async def list_tools(self) -> List[RemoteToolInfo]:
        """Return the (filtered) catalogue fetched at connect time."""
        if self.state is not ConnectionState.CONNECTED:
            raise CapabilityServerError(self.name, f"not connected (state: {self.state.value})")
        return list(self._tools)

    def tool_needs_approval(self, tool_name: str) -> bool:
        if tool_name in self.require_approval.get("never", ()):
            return False
        return tool_name in self.require_approval.get("always", ())

    async def invoke(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """Call a remote tool and return its text content.

        Transport failures and timeouts mark the server unavailable for the
        rest of the session.

        Raises:
            RemoteToolError: With ``kind`` transport, timeout or application
        """
        if not self.is_available or self._session is None:
            raise RemoteToolError(self.name, tool_name, RemoteToolError.TRANSPORT, "server is not available")

        logger.debug("Calling remote tool %s on %s", tool_name, self.name)
        try:
            async with asyncio.timeout(self.call_timeout):
                result = await self._session.call_tool(tool_name, arguments)
        except TimeoutError as e:
            self._mark_failed("timeout")
            raise RemoteToolError(self.name, tool_name, RemoteToolError.TIMEOUT,
                                  f"no response within {self.call_timeout}s", e) from e
        except McpError as e:
            if e.error.code == httpx.codes.REQUEST_TIMEOUT:
                self._mark_failed("timeout")
                raise RemoteToolError(self.name, tool_name, RemoteToolError.TIMEOUT, str(e), e) from e
            if e.error.code == CONNECTION_CLOSED:
                self._mark_failed(str(e))
                raise RemoteToolError(self.name, tool_name, RemoteToolError.TRANSPORT, str(e), e) from e
            raise RemoteToolError(self.name, tool_name, RemoteToolError.APPLICATION, str(e), e) from e
        except _TRANSPORT_ERRORS as e:
            self._mark_failed(str(e))
            raise RemoteToolError(self.name, tool_name, RemoteToolError.TRANSPORT, str(e) or type(e).__name__, e) from e

        text = "\n".join(item.text for item in result.content if hasattr(item, "text"))
        if result.isError:
            raise RemoteToolError(self.name, tool_name, RemoteToolError.APPLICATION, text or "tool reported an error")
        return text

    def _mark_failed(self, reason: str) -> None:
        if self._failed is None:
            logger.warning("Capability server %s is unavailable for the rest of the session: %s", self.name, reason)
            self._failed = reason

    async def close(self) -> None:
        """Tear down the transport. Safe to call any number of times."""
        async with self._lock:
            if self.state is ConnectionState.CLOSED:
                return
            await self._teardown()
            self.state = ConnectionState.CLOSED
            logger.debug("Closed capability server %s", self.name)

    async def _teardown(self) -> None:
        stack, self._exit_stack = self._exit_stack, None
        self._session = None
        self._tools = []
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as e:
            logger.warning("Error closing capability server %s: %s", self.name, e)

    async def __aenter__(self) -> "MCPServer":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self.state.value})"


class MCPServerStreamableHttp(MCPServer):
    """MCP server reached over a persistent streamable-HTTP connection."""

    def __init__(
        self,
        url: str,
        name: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        **kwargs: Any,
    ):
        super().__init__(name or url, **kwargs)
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout

    def _transport(self) -> Any:
        return streamablehttp_client(self.url, headers=self.headers, timeout=timedelta(seconds=self.timeout))


class MCPServerStdio(MCPServer):
    """MCP server run as a local subprocess, spoken to over stdin/stdout."""

    def __init__(
        self,
        command: Optional[str] = None,
        args: Optional[Sequence[str]] = None,
        full_command: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        name: Optional[str] = None,
        timeout: float = DEFAULT_MCP_STARTUP_TIMEOUT,
        **kwargs: Any,
    ):
        if full_command:
            parts = shlex.split(full_command)
            command, args = parts[0], parts[1:] + list(args or ())
        if not command:
            raise ValueError("MCPServerStdio requires either command or full_command")
        kwargs.setdefault("startup_timeout", timeout)
        super().__init__(name or command, **kwargs)
        self.command = command
        self.args = list(args or ())
        self.cwd = cwd
        self.env = env

    def _transport(self) -> Any:
        env = None
        if self.env is not None:
            env = {**os.environ, **self.env}
        params = StdioServerParameters(command=self.command, args=self.args, env=env, cwd=self.cwd)
        return stdio_client(params)


@asynccontextmanager
async def connect_servers(
    servers: Iterable[MCPServer],
    required: Iterable[str] = (),
) -> AsyncIterator[List[MCPServer]]:
    """Connect every server, yield the ones that came up, close all on exit.

    A failed server only costs its own tools, unless its name is in
    ``required``, in which case the error is raised after closing everything.
    """
    servers = list(servers)
    required = set(required)
    connected: List[MCPServer] = []
    try:
        for server in servers:
            try:
                await server.connect()
            except CapabilityServerError as e:
                if server.name in required:
                    raise
                logger.warning("Continuing without capability server %s: %s", server.name, e)
                continue
            connected.append(server)
        yield connected
    finally:
        for server in reversed(servers):
            await server.close()

