"""Demo agents: a triage agent handing off to tutors, a weather bot and MCP-backed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from switchboard.core.agent import Agent
from switchboard.core.tools import function_tool
from switchboard.core.types import RunContext
from switchboard.services.mcp import MCPServer, MCPServerStdio, MCPServerStreamableHttp
from switchboard.services.model import ModelSettings

DOCS_SERVER_URL = "https://gitmcp.io/openai/codex"
SAMPLES_DIR = Path.cwd() / "sample_files"

RECOMMENDED_PROMPT_PREFIX = (
    "# System context\nYou are part of a multi-agent system. An agent can hand off the "
    "conversation to another agent by calling a function named `transfer_to_<agent_name>`. "
    "Do not mention transfers to the user.\n"
)


@dataclass(frozen=True)
class UserInfo:
    name: str
    uid: int


DEFAULT_USER = UserInfo(name="John", uid=123)


def build_instructions(run_context: RunContext) -> str:
    name = getattr(run_context.context, "name", None)
    if name:
        return f"The user's name is {name}. Be extra friendly!"
    return "You are a helpful assistant"


@function_tool
def fetch_user_age(run_context: RunContext[UserInfo]) -> str:
    """Return the age of the current user"""
    return f"User {run_context.context.name} is 47 years old"


@function_tool
def history_fun_fact() -> str:
    """Give a fun fact about a historical event"""
    return "Sharks are older than trees."


def weather_needs_approval(run_context: RunContext, args: Dict[str, Any]) -> bool:
    # Looking up San Francisco always needs a human decision
    return args.get("city") == "San Francisco"


@function_tool(needs_approval=weather_needs_approval)
def get_weather(city: str) -> str:
    """Return the weather for a given city."""
    return f"The weather in {city} is sunny."


def build_servers(samples_dir: Optional[Path] = None, startup_timeout: float = 20.0) -> Tuple[MCPServer, MCPServer]:
    """Documentation server over streamable HTTP and a filesystem server via npx."""
    docs = MCPServerStreamableHttp(url=DOCS_SERVER_URL, name="GitMCP Documentation Server")
    filesystem = MCPServerStdio(
        full_command=f"npx -y @modelcontextprotocol/server-filesystem {samples_dir or SAMPLES_DIR}",
        name="Filesystem MCP Server, via npx",
        timeout=startup_timeout,
    )
    return docs, filesystem


def build_triage_agent(
    model: Any = None,
    docs_server: Optional[MCPServer] = None,
    filesystem_server: Optional[MCPServer] = None,
) -> Agent:
    """Wire up the demo agents. ``model`` is a model name or ``Model`` shared by all of them."""
    user_age_agent = Agent(
        name="User Age Assistant",
        instructions="You provide assistance with questions to the user's age.",
        model=model,
        tools=[fetch_user_age],
    )
    weather_agent = Agent(
        name="Weather bot",
        instructions="You are a helpful weather bot.",
        model=model,
        model_settings=ModelSettings(temperature=0),
        mcp_servers=[docs_server] if docs_server else [],
        tools=[get_weather],
    )
    history_tutor_agent = Agent(
        name="History Tutor",
        model=model,
        instructions="You provide assistance with historical queries. Explain important events and context clearly.",
        tools=[history_fun_fact],
    )
    math_tutor_agent = Agent(
        name="Math Tutor",
        model=model,
        instructions="You provide help with math problems. Explain your reasoning at each step and include examples",
    )
    file_system_agent = Agent(
        name="FS MCP Assistant",
        model=model,
        instructions=(
            "Use the tools to read the filesystem and answer questions based on those files. "
            "If you are unable to find any files, you can say so instead of assuming they exist."
        ),
        mcp_servers=[filesystem_server] if filesystem_server else [],
    )
    handoffs: List[Agent] = [
        file_system_agent,
        history_tutor_agent,
        math_tutor_agent,
        user_age_agent,
        weather_agent,
    ]
    return Agent(
        name="Triage Agent",
        model=model,
        instructions=f"{RECOMMENDED_PROMPT_PREFIX}You determine which agent to use based on the user's homework question",
        handoffs=handoffs,
    )


def build_assistant_agent(model: Any = None) -> Agent:
    """Single friendly assistant whose instructions depend on the user."""
    return Agent(name="Assistant", model=model, instructions=build_instructions)
