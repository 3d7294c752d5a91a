"""Utility functions for tool calls and callables."""

from __future__ import annotations

import inspect
import json
import re
from typing import Any, Dict


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def parse_tool_call_arguments(arguments: str | Dict[str, Any] | None) -> Dict[str, Any]:
    """Parse tool call arguments from their JSON string form.

    Args:
        arguments: JSON-encoded arguments, an already decoded dict, or None

    Returns:
        Parsed arguments dictionary

    Raises:
        ValueError: If arguments are not valid JSON or not a JSON object
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse tool call arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Tool call arguments must be a JSON object")
    return parsed


def slugify(name: str) -> str:
    """Lowercase ``name`` and collapse anything that isn't [a-z0-9_] into underscores."""
    return re.sub(r"[^a-z0-9_]+", "_", name.lower()).strip("_")


def stringify_output(output: Any) -> str:
    """Render a tool output as the text content sent back to the model."""
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)
