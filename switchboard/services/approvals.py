"""Human-in-the-loop approval for tool calls."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

from switchboard.utils.helpers import maybe_await

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalRequest:
    """A tool call waiting for an approve/deny decision."""
    call_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    agent: Optional[str] = None

    def describe(self) -> str:
        args = json.dumps(self.arguments, ensure_ascii=False)
        return f"Agent '{self.agent}' wants to call {self.tool_name}({args})"


@dataclass(frozen=True)
class ApprovalRecord:
    call_id: str
    tool_name: str
    approved: bool


@runtime_checkable
class ApprovalChannel(Protocol):
    """Source of approval decisions. Suspends only the call it is asked about."""

    async def decide(self, request: ApprovalRequest) -> bool:
        ...


class ConsoleApprovalChannel:
    """Ask on the terminal. Blocks until answered with y/yes or n/no."""

    def __init__(self, prompt_suffix: str = "\nApprove? (y/n): "):
        self.prompt_suffix = prompt_suffix
        self._lock = asyncio.Lock()

    async def decide(self, request: ApprovalRequest) -> bool:
        # Concurrent tool calls share one terminal; ask one at a time
        async with self._lock:
            prompt = f"{request.describe()}{self.prompt_suffix}"
            event_loop = asyncio.get_running_loop()
            while True:
                try:
                    answer = await event_loop.run_in_executor(None, input, prompt)
                except EOFError:
                    logger.info("No answer for call %s (%s), stdin closed; denying", request.call_id, request.tool_name)
                    return False
                answer = answer.strip().lower()
                if answer in ("y", "yes"):
                    return True
                if answer in ("n", "no"):
                    return False


class PolicyApprovalChannel:
    """Decide with a (sync or async) policy function."""

    def __init__(self, policy: Callable[[ApprovalRequest], Union[bool, Awaitable[bool]]]):
        self.policy = policy

    async def decide(self, request: ApprovalRequest) -> bool:
        approved = bool(await maybe_await(self.policy(request)))
        logger.debug("Policy %s call %s (%s)", "approved" if approved else "denied",
                     request.call_id, request.tool_name)
        return approved


__all__ = [
    "ApprovalChannel",
    "ApprovalRecord",
    "ApprovalRequest",
    "ConsoleApprovalChannel",
    "PolicyApprovalChannel",
]
