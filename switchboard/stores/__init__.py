"""Conversation history storage."""

from .history import (
    AssistantMessage,
    HandoffEvent,
    History,
    HistoryItem,
    ToolCall,
    ToolResult,
    UserMessage,
    dumps_transcript,
    item_from_dict,
    item_to_dict,
    load_transcript,
    user,
    write_transcript,
)

__all__ = [
    "AssistantMessage",
    "HandoffEvent",
    "History",
    "HistoryItem",
    "ToolCall",
    "ToolResult",
    "UserMessage",
    "dumps_transcript",
    "item_from_dict",
    "item_to_dict",
    "load_transcript",
    "user",
    "write_transcript",
]
