"""Core types shared by agents, tools and the runner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, TypeVar

TContext = TypeVar("TContext")

JSON = Dict[str, Any]


@dataclass(frozen=True)
class RunContext(Generic[TContext]):
    """Caller-supplied data threaded through a run.

    Instruction builders, tool functions and approval predicates receive the
    same instance for the whole run. The runner never replaces or mutates it.
    """
    context: TContext = None


__all__ = ["JSON", "RunContext", "TContext"]
