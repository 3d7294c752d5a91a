"""Append-only conversation history shared by the runner and the front end."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from switchboard.utils.constants import (
    ITEM_ASSISTANT_MESSAGE,
    ITEM_HANDOFF,
    ITEM_TOOL_CALL,
    ITEM_TOOL_RESULT,
    ITEM_USER_MESSAGE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserMessage:
    content: str
    type: ClassVar[str] = ITEM_USER_MESSAGE


@dataclass(frozen=True)
class AssistantMessage:
    content: str
    agent: Optional[str] = None
    type: ClassVar[str] = ITEM_ASSISTANT_MESSAGE


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``response_id`` groups the calls that came from the same model response.
    """
    call_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    agent: Optional[str] = None
    response_id: Optional[str] = None
    type: ClassVar[str] = ITEM_TOOL_CALL


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    output: Any
    tool_name: Optional[str] = None
    is_error: bool = False
    type: ClassVar[str] = ITEM_TOOL_RESULT


@dataclass(frozen=True)
class HandoffEvent:
    source: str
    target: str
    call_id: Optional[str] = None
    response_id: Optional[str] = None
    type: ClassVar[str] = ITEM_HANDOFF


HistoryItem = Union[UserMessage, AssistantMessage, ToolCall, ToolResult, HandoffEvent]

_ITEM_TYPES = {
    cls.type: cls
    for cls in (UserMessage, AssistantMessage, ToolCall, ToolResult, HandoffEvent)
}


def user(content: str) -> UserMessage:
    return UserMessage(content)


def item_to_dict(item: HistoryItem) -> Dict[str, Any]:
    return {"type": item.type, **asdict(item)}


def item_from_dict(data: Dict[str, Any]) -> HistoryItem:
    """Restore a history item from its ``item_to_dict`` form."""
    fields = dict(data)
    item_type = fields.pop("type", None)
    cls = _ITEM_TYPES.get(item_type)
    if cls is None:
        raise ValueError(f"Unknown history item type: {item_type!r}")
    return cls(**fields)


class History:
    """Ordered, append-only log of conversation items.

    Insertion order is the causal order of the conversation. Only the runner
    appends while a run is active; readers get immutable snapshots.
    """

    def __init__(self, items: Iterable[HistoryItem] = ()):
        self._items: List[HistoryItem] = []
        self.extend(items)

    def append(self, item: HistoryItem) -> None:
        if type(item) not in _ITEM_TYPES.values():
            raise TypeError(f"Not a history item: {item!r}")
        self._items.append(item)

    def extend(self, items: Iterable[HistoryItem]) -> None:
        for item in items:
            self.append(item)

    @property
    def items(self) -> Tuple[HistoryItem, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[HistoryItem]:
        return iter(tuple(self._items))

    def unresolved_calls(self) -> List[str]:
        """Call ids of tool calls that have no matching tool result yet."""
        resolved = {i.call_id for i in self._items if isinstance(i, ToolResult)}
        return [i.call_id for i in self._items if isinstance(i, ToolCall) and i.call_id not in resolved]

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [item_to_dict(i) for i in self._items]

    @classmethod
    def from_dicts(cls, rows: Iterable[Dict[str, Any]]) -> "History":
        return cls(item_from_dict(r) for r in rows)


def dumps_transcript(history: Union[History, Iterable[HistoryItem]]) -> str:
    """Serialize a history as the JSON array printed at session end."""
    items = history.items if isinstance(history, History) else tuple(history)
    return json.dumps([item_to_dict(i) for i in items], ensure_ascii=False, default=str)


def write_transcript(path: Path, history: History) -> None:
    """Persist a session transcript as JSONL, one history item per line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(row, ensure_ascii=False, default=str) for row in history.to_dicts()]
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    logger.debug("Wrote %d history items to %s", len(history), path)


def load_transcript(path: Path) -> History:
    """Read a transcript written by ``write_transcript``.

    Raises:
        ValueError: If a line is not valid JSON or not a known history item
    """
    history = History()
    for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            history.append(item_from_dict(json.loads(line)))
        except json.JSONDecodeError as e:
            raise ValueError(f"{path}: line {line_no} is not valid JSON: {e}") from e
    return history
