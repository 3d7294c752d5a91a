"""Model backend contract and the OpenAI-compatible chat-completions adapter."""

from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import openai
from openai import AsyncOpenAI

from switchboard.core.tools import ToolSpec
from switchboard.stores.history import (
    AssistantMessage,
    HandoffEvent,
    HistoryItem,
    ToolCall,
    ToolResult,
    UserMessage,
)
from switchboard.utils.constants import (
    HANDOFF_TOOL_PREFIX,
    RESPONSE_HANDOFF,
    RESPONSE_MESSAGE,
    RESPONSE_TOOL_CALLS,
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
)
from switchboard.utils.exceptions import ModelBackendError
from switchboard.utils.helpers import parse_tool_call_arguments, slugify, stringify_output

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSettings:
    """Sampling options sent with each model call. ``None`` means backend default."""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    tool_choice: Optional[str] = None
    parallel_tool_calls: Optional[bool] = None

    def resolve(self, override: Optional["ModelSettings"]) -> "ModelSettings":
        """Return these settings with every non-None field of ``override`` applied."""
        if override is None:
            return self
        changes = {
            f.name: getattr(override, f.name)
            for f in dataclasses.fields(override)
            if getattr(override, f.name) is not None
        }
        return dataclasses.replace(self, **changes)

    def to_request_kwargs(self) -> Dict[str, Any]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}


@dataclass(frozen=True)
class HandoffSpec:
    tool_name: str
    description: str
    agent_name: str


@dataclass(frozen=True)
class ModelRequest:
    instructions: str
    tools: Sequence[ToolSpec]
    history: Sequence[HistoryItem]
    settings: ModelSettings = field(default_factory=ModelSettings)
    handoffs: Sequence[HandoffSpec] = ()


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call as returned by the model. ``arguments`` is None if they didn't parse."""
    call_id: str
    name: str
    arguments: Optional[Dict[str, Any]]
    raw_arguments: str = "{}"


@dataclass(frozen=True)
class HandoffRequest:
    call_id: str
    target: str


@dataclass
class Usage:
    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "Usage") -> None:
        self.requests += other.requests
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens


@dataclass
class ModelResponse:
    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    handoffs: List[HandoffRequest] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    response_id: str = field(default_factory=lambda: f"resp_{uuid.uuid4().hex[:12]}")

    @property
    def type(self) -> str:
        if self.tool_calls:
            return RESPONSE_TOOL_CALLS
        if self.handoffs:
            return RESPONSE_HANDOFF
        return RESPONSE_MESSAGE


@runtime_checkable
class Model(Protocol):
    """A language-model backend."""

    async def respond(self, request: ModelRequest) -> ModelResponse:
        ...


# ============================================================================
# Chat-completions wire format
# ============================================================================

def tool_spec_to_openai(spec: ToolSpec) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


def handoff_spec_to_openai(spec: HandoffSpec) -> Dict[str, Any]:
    return tool_spec_to_openai(ToolSpec(spec.tool_name, spec.description, {"type": "object", "properties": {}}))


def _tool_call_dict(call_id: str, name: str, arguments: Any) -> Dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(arguments or {}, ensure_ascii=False)},
    }


def convert_history_to_openai_format(instructions: str, history: Sequence[HistoryItem]) -> List[Dict[str, Any]]:
    """Convert history items into chat-completions messages.

    Tool calls (and handoffs) from the same model response become one
    assistant message carrying ``tool_calls``, followed by their tool messages.
    Assistant text that directly precedes the calls becomes that message's
    content.
    """
    messages: List[Dict[str, Any]] = []
    if instructions:
        messages.append({"role": ROLE_SYSTEM, "content": instructions})

    group: Optional[Dict[str, Any]] = None
    group_id: Optional[str] = None
    results: List[Dict[str, Any]] = []

    def flush() -> None:
        nonlocal group, group_id, results
        if group is not None:
            messages.append(group)
            messages.extend(results)
        group, group_id, results = None, None, []

    def open_group(response_id: Optional[str]) -> Dict[str, Any]:
        nonlocal group, group_id
        if group is None or response_id is None or response_id != group_id:
            carried = None
            if group is None and messages and messages[-1]["role"] == ROLE_ASSISTANT and "tool_calls" not in messages[-1]:
                carried = messages.pop()["content"]
            flush()
            group = {"role": ROLE_ASSISTANT, "content": carried, "tool_calls": []}
            group_id = response_id
        return group

    for item in history:
        if isinstance(item, ToolCall):
            open_group(item.response_id)["tool_calls"].append(
                _tool_call_dict(item.call_id, item.tool_name, item.arguments)
            )
        elif isinstance(item, HandoffEvent):
            call_id = item.call_id or f"call_{uuid.uuid4().hex[:12]}"
            open_group(item.response_id)["tool_calls"].append(
                _tool_call_dict(call_id, f"{HANDOFF_TOOL_PREFIX}{slugify(item.target)}", {})
            )
            results.append({
                "role": ROLE_TOOL,
                "tool_call_id": call_id,
                "content": json.dumps({"assistant": item.target}),
            })
        elif isinstance(item, ToolResult):
            results.append({
                "role": ROLE_TOOL,
                "tool_call_id": item.call_id,
                "content": stringify_output(item.output),
            })
        elif isinstance(item, UserMessage):
            flush()
            messages.append({"role": ROLE_USER, "content": item.content})
        elif isinstance(item, AssistantMessage):
            flush()
            messages.append({"role": ROLE_ASSISTANT, "content": item.content})
    flush()
    return messages


def parse_chat_completion(completion: Any, handoffs: Sequence[HandoffSpec]) -> ModelResponse:
    """Interpret a chat-completions response.

    Calls to ``transfer_to_*`` functions become handoff requests; the runner
    checks them against the active agent's handoff targets.

    Raises:
        ModelBackendError: If the completion has no choices or no message
    """
    choices = getattr(completion, "choices", None)
    if not choices:
        raise ModelBackendError("Model response contained no choices")
    message = getattr(choices[0], "message", None)
    if message is None:
        raise ModelBackendError("Model response contained no message")

    handoff_targets = {h.tool_name: h.agent_name for h in handoffs}
    response = ModelResponse(text=message.content or "")
    if getattr(completion, "id", None):
        response.response_id = completion.id

    for tc in message.tool_calls or []:
        function = getattr(tc, "function", None)
        if function is None or not function.name:
            raise ModelBackendError("Model returned a tool call without a function name")
        call_id = tc.id or f"call_{uuid.uuid4().hex[:12]}"
        if function.name in handoff_targets:
            response.handoffs.append(HandoffRequest(call_id, handoff_targets[function.name]))
        elif function.name.startswith(HANDOFF_TOOL_PREFIX):
            response.handoffs.append(HandoffRequest(call_id, function.name[len(HANDOFF_TOOL_PREFIX):]))
        else:
            raw = function.arguments or "{}"
            try:
                arguments: Optional[Dict[str, Any]] = parse_tool_call_arguments(raw)
            except ValueError:
                arguments = None
            response.tool_calls.append(ToolCallRequest(call_id, function.name, arguments, raw))

    usage = getattr(completion, "usage", None)
    response.usage = Usage(
        requests=1,
        input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
    )
    return response


class OpenAIChatCompletionsModel:
    """Model backed by any OpenAI-compatible chat-completions endpoint."""

    def __init__(self, model: str, openai_client: AsyncOpenAI):
        self.model = model
        self._client = openai_client

    async def respond(self, request: ModelRequest) -> ModelResponse:
        tools = [tool_spec_to_openai(t) for t in request.tools]
        tools.extend(handoff_spec_to_openai(h) for h in request.handoffs)
        kwargs = request.settings.to_request_kwargs()
        if tools:
            kwargs["tools"] = tools
        else:
            kwargs.pop("tool_choice", None)
            kwargs.pop("parallel_tool_calls", None)

        logger.debug("Calling model %s with %d history items and %d tools",
                     self.model, len(request.history), len(tools))
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=convert_history_to_openai_format(request.instructions, request.history),
                stream=False,
                **kwargs,
            )
        except openai.APIError as e:
            raise ModelBackendError(f"Model backend request failed: {e}", original_error=e) from e
        return parse_chat_completion(completion, request.handoffs)


@runtime_checkable
class ModelProvider(Protocol):
    """Maps model names to backends."""

    def get_model(self, model_name: str) -> Model:
        ...


class OpenAIProvider:
    """Resolves model names to ``OpenAIChatCompletionsModel`` sharing one client."""

    def __init__(self, openai_client: AsyncOpenAI):
        self._client = openai_client

    def get_model(self, model_name: str) -> Model:
        return OpenAIChatCompletionsModel(model=model_name, openai_client=self._client)
