"""Local tool definitions and the ``function_tool`` decorator."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union, get_origin, get_type_hints

from pydantic import ValidationError, create_model

from .types import JSON, RunContext
from ..utils.exceptions import InvalidToolArgumentsError
from ..utils.helpers import maybe_await

logger = logging.getLogger(__name__)

# (run_context, arguments) -> result
ToolInvokeFn = Callable[[RunContext, JSON], Any]

# (run_context, arguments) -> bool
ApprovalPredicate = Callable[[RunContext, JSON], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class ToolSpec:
    """Tool definition as presented to the model."""
    name: str
    description: str
    parameters: JSON = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True, eq=False)
class FunctionTool:
    """A tool implemented by code in the host program."""
    name: str
    description: str
    params_json_schema: JSON
    on_invoke: ToolInvokeFn
    needs_approval: Union[bool, ApprovalPredicate] = False

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(self.name, self.description, self.params_json_schema)

    async def requires_approval(self, run_context: RunContext, arguments: JSON) -> bool:
        """Evaluate the approval predicate for one call."""
        if callable(self.needs_approval):
            return bool(await maybe_await(self.needs_approval(run_context, arguments)))
        return bool(self.needs_approval)

    async def invoke(self, run_context: RunContext, arguments: JSON) -> Any:
        return await maybe_await(self.on_invoke(run_context, arguments))


def _is_context_annotation(annotation: Any) -> bool:
    if annotation is inspect.Parameter.empty:
        return False
    if isinstance(annotation, str):
        return annotation.split("[", 1)[0].strip().split(".")[-1] == "RunContext"
    return (get_origin(annotation) or annotation) is RunContext


def _resolve_hints(func: Callable[..., Any]) -> Dict[str, Any]:
    try:
        return get_type_hints(func)
    except (NameError, TypeError):
        # Locally defined types can't be resolved from the module globals
        return dict(getattr(func, "__annotations__", {}))


def _description_from_doc(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.split("\n\n", 1)[0].strip()


def _build_tool(
    func: Callable[..., Any],
    name: Optional[str],
    description: Optional[str],
    needs_approval: Union[bool, ApprovalPredicate],
) -> FunctionTool:
    tool_name = name or func.__name__
    hints = _resolve_hints(func)
    params = list(inspect.signature(func).parameters.values())

    takes_context = bool(params) and _is_context_annotation(hints.get(params[0].name, params[0].annotation))
    if takes_context:
        params = params[1:]

    fields: Dict[str, Any] = {}
    for param in params:
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        if isinstance(annotation, str):
            annotation = Any
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)

    args_model = create_model(f"{tool_name}_args", **fields)
    schema = args_model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)

    async def on_invoke(run_context: RunContext, arguments: JSON) -> Any:
        try:
            parsed = args_model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidToolArgumentsError(tool_name, str(e)) from e
        kwargs = {key: getattr(parsed, key) for key in fields}
        if takes_context:
            return await maybe_await(func(run_context, **kwargs))
        return await maybe_await(func(**kwargs))

    return FunctionTool(
        name=tool_name,
        description=description if description is not None else _description_from_doc(func),
        params_json_schema=schema,
        on_invoke=on_invoke,
        needs_approval=needs_approval,
    )


def function_tool(
    func: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    needs_approval: Union[bool, ApprovalPredicate] = False,
) -> Any:
    """Turn a plain (sync or async) function into a ``FunctionTool``.

    The parameter schema is generated from the signature. A first parameter
    annotated ``RunContext`` receives the run context and is hidden from the
    model.

    Can be used bare (``@function_tool``) or with options
    (``@function_tool(needs_approval=...)``).
    """
    if func is not None:
        return _build_tool(func, name, description, needs_approval)

    def decorator(f: Callable[..., Any]) -> FunctionTool:
        return _build_tool(f, name, description, needs_approval)

    return decorator
