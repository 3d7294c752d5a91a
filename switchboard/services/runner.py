"""The orchestration loop: model calls, tool fan-out, approvals and handoffs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from switchboard.config import RunConfig
from switchboard.core.agent import Agent, handoff_tool_description, handoff_tool_name
from switchboard.core.types import RunContext
from switchboard.observability.tracing import get_tracer
from switchboard.services.approvals import ApprovalChannel, ApprovalRecord, ApprovalRequest
from switchboard.services.model import (
    HandoffRequest,
    HandoffSpec,
    Model,
    ModelRequest,
    ModelResponse,
    Usage,
)
from switchboard.services.registry import ToolInvoker, ToolOutcome, ToolRegistry
from switchboard.stores.history import (
    AssistantMessage,
    HandoffEvent,
    History,
    HistoryItem,
    ToolCall,
    ToolResult,
    UserMessage,
)
from switchboard.utils.constants import HANDOFF_TOOL_PREFIX, RESPONSE_MESSAGE
from switchboard.utils.exceptions import (
    AgentError,
    HandoffError,
    InvalidHandoffError,
    MaxTurnsExceeded,
    ModelBackendError,
)
from switchboard.utils.helpers import slugify

logger = logging.getLogger(__name__)

RunInput = Union[str, Sequence[HistoryItem], History]


@dataclass
class RunState:
    """Everything needed to continue a run that stopped for approvals.

    Decide each interruption with ``approve`` or ``reject``, then pass the
    state to ``Runner.resume``. Undecided calls interrupt again.
    """
    current_agent: Agent
    history: History
    run_context: RunContext
    max_turns: int
    turn: int = 0
    usage: Usage = field(default_factory=Usage)
    approvals: List[ApprovalRecord] = field(default_factory=list)
    decisions: Dict[str, bool] = field(default_factory=dict)
    interruptions: List[ApprovalRequest] = field(default_factory=list)
    pending_response: Optional[ModelResponse] = None
    completed: Dict[str, ToolOutcome] = field(default_factory=dict)

    def approve(self, item: ApprovalRequest) -> None:
        self.decisions[item.call_id] = True

    def reject(self, item: ApprovalRequest) -> None:
        self.decisions[item.call_id] = False

    def discard_pending_turn(self) -> None:
        self.pending_response = None
        self.completed = {}
        self.interruptions = []


@dataclass
class RunResult:
    """Outcome of one ``run`` or ``resume`` call.

    ``final_output`` is None when the run was interrupted for approval or
    cancelled.
    """
    final_output: Optional[str]
    history: List[HistoryItem]
    last_agent: Agent
    interruptions: List[ApprovalRequest] = field(default_factory=list)
    approvals: List[ApprovalRecord] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    cancelled: bool = False
    state: Optional[RunState] = None

    def to_state(self) -> RunState:
        if self.state is None:
            raise AgentError("Run result carries no resumable state")
        return self.state


def _initial_items(run_input: RunInput) -> List[HistoryItem]:
    if isinstance(run_input, str):
        return [UserMessage(run_input)]
    if isinstance(run_input, History):
        return list(run_input.items)
    return list(run_input)


class Runner:
    """Runs agents against a model backend until a final answer.

    One coordinating task per run; tool calls of a turn fan out concurrently
    and are joined before the next model call.
    """

    def __init__(self, config: RunConfig):
        self.config = config
        self._tracer = get_tracer(config.tracing_disabled)

    async def run(
        self,
        starting_agent: Agent,
        run_input: RunInput,
        *,
        context: Any = None,
        max_turns: Optional[int] = None,
        approvals: Optional[ApprovalChannel] = None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """Run ``starting_agent`` on ``run_input``.

        Args:
            starting_agent: Agent active at the first model call
            run_input: A user message, or the history to continue
            context: Caller data, exposed to tools as ``RunContext.context``
            max_turns: Model-call budget for this run (defaults to the config)
            approvals: Channel deciding calls that need approval; without one
                such calls interrupt the run
            timeout: Seconds before the run is cancelled

        Raises:
            MaxTurnsExceeded: If the turn budget runs out; carries the partial history
            ModelBackendError: If the model backend fails
        """
        run_context = context if isinstance(context, RunContext) else RunContext(context)
        state = RunState(
            current_agent=starting_agent,
            history=History(_initial_items(run_input)),
            run_context=run_context,
            max_turns=self.config.max_turns if max_turns is None else max_turns,
        )
        return await self._execute(state, approvals, timeout)

    async def resume(
        self,
        state: RunState,
        *,
        approvals: Optional[ApprovalChannel] = None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """Continue a run that was interrupted for approvals."""
        if state.pending_response is None:
            raise AgentError("Run state has no interrupted turn to resume")
        return await self._execute(state, approvals, timeout)

    async def _execute(
        self,
        state: RunState,
        approvals: Optional[ApprovalChannel],
        timeout: Optional[float],
    ) -> RunResult:
        try:
            async with asyncio.timeout(timeout) as deadline:
                return await self._loop(state, approvals)
        except TimeoutError:
            if not deadline.expired():
                raise
            logger.warning("Run cancelled after %ss with agent %s", timeout, state.current_agent.name)
            state.discard_pending_turn()
            return RunResult(
                final_output=None,
                history=list(state.history.items),
                last_agent=state.current_agent,
                approvals=list(state.approvals),
                usage=state.usage,
                cancelled=True,
            )

    async def _loop(self, state: RunState, approvals: Optional[ApprovalChannel]) -> RunResult:
        while True:
            agent = state.current_agent
            registry = await ToolRegistry.for_agent(agent)

            response = state.pending_response
            if response is None:
                if state.turn >= state.max_turns:
                    logger.warning("Max turns (%d) exceeded with agent %s", state.max_turns, agent.name)
                    raise MaxTurnsExceeded(state.max_turns, list(state.history.items), agent)
                state.turn += 1

                with self._tracer.start_as_current_span(
                    "agent.turn", attributes={"agent.name": agent.name, "agent.turn": state.turn}
                ):
                    response = await self._call_model(agent, registry, state)
                state.usage.add(response.usage)

                if response.type == RESPONSE_MESSAGE:
                    state.history.append(AssistantMessage(response.text, agent.name))
                    logger.debug("Agent %s produced a final answer on turn %d", agent.name, state.turn)
                    return self._result(state, final_output=response.text)

            outcomes = await self._run_tools(agent, registry, response, state, approvals)
            pending = [o.pending for o in outcomes if o.pending is not None]
            if pending:
                state.pending_response = response
                state.completed = {o.call.call_id: o for o in outcomes if o.pending is None}
                state.interruptions = pending
                return self._result(state, final_output=None, interrupted=True)

            state.discard_pending_turn()
            self._append_turn(agent, response, outcomes, state.history)
            if response.handoffs:
                self._apply_handoffs(agent, response, state)

    async def _call_model(self, agent: Agent, registry: ToolRegistry, state: RunState) -> ModelResponse:
        unresolved = state.history.unresolved_calls()
        if unresolved:
            raise AgentError(f"History has tool calls without results: {', '.join(unresolved)}")

        request = ModelRequest(
            instructions=await agent.render_instructions(state.run_context),
            tools=registry.specs(),
            history=state.history.items,
            settings=agent.model_settings.resolve(self.config.model_settings),
            handoffs=[
                HandoffSpec(handoff_tool_name(a), handoff_tool_description(a), a.name)
                for a in agent.handoff_targets()
            ],
        )
        model = self._resolve_model(agent)
        logger.debug("Turn %d: calling model for agent %s", state.turn, agent.name)
        try:
            return await model.respond(request)
        except ModelBackendError:
            logger.error("Model backend failed on turn %d for agent %s", state.turn, agent.name)
            raise

    def _resolve_model(self, agent: Agent) -> Model:
        if agent.model is None:
            return self.config.model_provider.get_model(self.config.default_model)
        if isinstance(agent.model, str):
            return self.config.model_provider.get_model(agent.model)
        return agent.model

    async def _run_tools(
        self,
        agent: Agent,
        registry: ToolRegistry,
        response: ModelResponse,
        state: RunState,
        approvals: Optional[ApprovalChannel],
    ) -> List[ToolOutcome]:
        invoker = ToolInvoker(
            registry,
            state.run_context,
            agent.name,
            approvals=approvals,
            decisions=state.decisions,
            records=state.approvals,
        )

        async def dispatch(call) -> ToolOutcome:
            if call.call_id in state.completed:
                return state.completed[call.call_id]
            with self._tracer.start_as_current_span(
                "tool.call", attributes={"tool.name": call.name, "tool.call_id": call.call_id}
            ):
                return await invoker.invoke(call)

        return list(await asyncio.gather(*(dispatch(c) for c in response.tool_calls)))

    @staticmethod
    def _append_turn(
        agent: Agent,
        response: ModelResponse,
        outcomes: List[ToolOutcome],
        history: History,
    ) -> None:
        if response.text:
            history.append(AssistantMessage(response.text, agent.name))
        for outcome in outcomes:
            call = outcome.call
            history.append(ToolCall(call.call_id, call.name, call.arguments or {}, agent.name, response.response_id))
            history.append(ToolResult(call.call_id, outcome.output, call.name, outcome.is_error))

    def _apply_handoffs(self, agent: Agent, response: ModelResponse, state: RunState) -> None:
        first, *extra = response.handoffs
        target = agent.find_handoff(first.target)
        if target is None:
            logger.info("Agent %s requested invalid handoff to %s", agent.name, first.target)
            self._append_handoff_error(agent, response, first, InvalidHandoffError(agent.name, first.target), state)
        else:
            with self._tracer.start_as_current_span(
                "agent.handoff", attributes={"handoff.source": agent.name, "handoff.target": target.name}
            ):
                state.history.append(HandoffEvent(agent.name, target.name, first.call_id, response.response_id))
            logger.info("Handoff from %s to %s", agent.name, target.name)
            state.current_agent = target

        for request in extra:
            error = HandoffError(request.target, "only one handoff per turn is allowed")
            self._append_handoff_error(agent, response, request, error, state)

    @staticmethod
    def _append_handoff_error(
        agent: Agent,
        response: ModelResponse,
        request: HandoffRequest,
        error: HandoffError,
        state: RunState,
    ) -> None:
        tool_name = f"{HANDOFF_TOOL_PREFIX}{slugify(request.target)}"
        state.history.append(ToolCall(request.call_id, tool_name, {}, agent.name, response.response_id))
        state.history.append(ToolResult(request.call_id, error.to_payload(), tool_name, is_error=True))

    @staticmethod
    def _result(state: RunState, final_output: Optional[str], interrupted: bool = False) -> RunResult:
        return RunResult(
            final_output=final_output,
            history=list(state.history.items),
            last_agent=state.current_agent,
            interruptions=list(state.interruptions) if interrupted else [],
            approvals=list(state.approvals),
            usage=state.usage,
            state=state if interrupted else None,
        )
