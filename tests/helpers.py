"""Scripted model backend and helpers for driving the runner in tests."""

import itertools
from typing import Any, Callable, List, Sequence, Union

from switchboard.config import RunConfig
from switchboard.services.model import (
    HandoffRequest,
    ModelRequest,
    ModelResponse,
    ToolCallRequest,
    Usage,
)
from switchboard.services.runner import Runner
from switchboard.stores.history import ToolResult

_ids = itertools.count(1)

Step = Union[ModelResponse, Callable[[ModelRequest], ModelResponse]]


def text(content: str) -> ModelResponse:
    return ModelResponse(text=content, usage=Usage(requests=1, input_tokens=10, output_tokens=5, total_tokens=15))


def calls(*specs: Sequence[Any], content: str = "") -> ModelResponse:
    """Tool-call response from ``(name, args)`` or ``(call_id, name, args)`` tuples."""
    requests = []
    for spec in specs:
        if len(spec) == 2:
            call_id, (name, args) = f"call_{next(_ids)}", spec
        else:
            call_id, name, args = spec
        requests.append(ToolCallRequest(call_id, name, args, "{}"))
    return ModelResponse(text=content, tool_calls=requests, usage=Usage(requests=1))


def handoff(*targets: str) -> ModelResponse:
    return ModelResponse(
        handoffs=[HandoffRequest(f"call_{next(_ids)}", t) for t in targets],
        usage=Usage(requests=1),
    )


def last_tool_output(request: ModelRequest) -> Any:
    results = [item for item in request.history if isinstance(item, ToolResult)]
    return results[-1].output if results else None


class ScriptedModel:
    """Model backend that replays a fixed script and records every request."""

    def __init__(self, steps: Sequence[Step] = (), repeat_last: bool = False):
        self.steps: List[Step] = list(steps)
        self.repeat_last = repeat_last
        self.requests: List[ModelRequest] = []

    async def respond(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if not self.steps:
            raise AssertionError("ScriptedModel ran out of responses")
        step = self.steps[0] if (self.repeat_last and len(self.steps) == 1) else self.steps.pop(0)
        return step(request) if callable(step) else step


class StaticProvider:
    def __init__(self, model: ScriptedModel):
        self.model = model
        self.requested: List[str] = []

    def get_model(self, model_name: str) -> ScriptedModel:
        self.requested.append(model_name)
        return self.model


def make_runner(model: ScriptedModel, max_turns: int = 10, **kwargs: Any) -> Runner:
    return Runner(RunConfig(model_provider=StaticProvider(model), max_turns=max_turns, **kwargs))
