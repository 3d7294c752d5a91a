"""Constants for the orchestration runtime."""

# History item type tags
ITEM_USER_MESSAGE = "user_message"
ITEM_ASSISTANT_MESSAGE = "assistant_message"
ITEM_TOOL_CALL = "tool_call"
ITEM_TOOL_RESULT = "tool_result"
ITEM_HANDOFF = "handoff"

# Message roles
ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

# Model response types
RESPONSE_MESSAGE = "message"
RESPONSE_TOOL_CALLS = "tool_calls"
RESPONSE_HANDOFF = "handoff"

HANDOFF_TOOL_PREFIX = "transfer_to_"

# Default values
DEFAULT_MAX_TURNS = 10
DEFAULT_MODEL = "qwen3:4b"
DEFAULT_BASE_URL = "http://localhost:11434/v1/"
DEFAULT_API_KEY = "ollama"
DEFAULT_MCP_STARTUP_TIMEOUT = 20.0
DEFAULT_MCP_CALL_TIMEOUT = 60.0

SESSION_END_SENTINEL = "/bye"
