"""Shared helpers, constants and exceptions."""

from .helpers import maybe_await, parse_tool_call_arguments, slugify, stringify_output

__all__ = [
    "maybe_await",
    "parse_tool_call_arguments",
    "slugify",
    "stringify_output",
]
