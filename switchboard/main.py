"""Command-line chat front end."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from switchboard.config import Settings
from switchboard.demo import DEFAULT_USER, build_assistant_agent, build_servers, build_triage_agent
from switchboard.observability import configure_tracing, shutdown_tracing
from switchboard.services.approvals import ConsoleApprovalChannel
from switchboard.services.mcp import connect_servers
from switchboard.services.runner import Runner
from switchboard.stores.history import History, HistoryItem, dumps_transcript, user, write_transcript
from switchboard.utils.constants import SESSION_END_SENTINEL
from switchboard.utils.exceptions import CapabilityServerError, MaxTurnsExceeded, ModelBackendError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_PROMPT = 1
EXIT_SERVER_UNREACHABLE = 2
EXIT_MODEL_FAILURE = 3

SEPARATOR = "\n\n----------\n\n"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Chat with a team of agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--base-url", type=str, help="OpenAI-compatible endpoint (default: $OPENAI_BASE_URL or local Ollama)")
    parser.add_argument("--model", type=str, help="Model name (default: $MODEL_ID or qwen3:4b)")
    parser.add_argument("--max-turns", type=int, help="Model calls allowed per user message")
    parser.add_argument("--agent", choices=["triage", "assistant"], default="triage", help="Starting agent")
    parser.add_argument("--samples-dir", type=Path, help="Directory exposed by the filesystem MCP server")
    parser.add_argument("--no-mcp", action="store_true", help="Don't start any capability servers")
    parser.add_argument("--require-server", action="append", default=[], metavar="NAME",
                        help="Fail at startup if this capability server can't be reached")
    parser.add_argument("--transcript", type=Path, help="Also write the session transcript to this JSONL file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    return parser


def read_initial_prompt(stdin: TextIO) -> str:
    if stdin.isatty():
        try:
            return input("What can I do for you?\n\n").strip()
        except EOFError:
            return ""
    return stdin.read().strip()


async def read_next_line() -> Optional[str]:
    """Next interactive line, or None once stdin is closed."""
    try:
        return await asyncio.get_running_loop().run_in_executor(None, input, "")
    except EOFError:
        return None


async def chat(args: argparse.Namespace, settings: Settings, prompt: str, interactive: bool) -> int:
    runner = Runner(settings.run_config())
    servers = [] if args.no_mcp else list(build_servers(args.samples_dir, settings.mcp_startup_timeout))

    try:
        async with connect_servers(servers, required=args.require_server):
            if args.agent == "assistant":
                agent = build_assistant_agent(settings.model)
            else:
                docs, filesystem = servers if servers else (None, None)
                agent = build_triage_agent(settings.model, docs, filesystem)

            approvals = ConsoleApprovalChannel() if interactive else None
            history: List[HistoryItem] = [user(prompt)]
            while True:
                try:
                    result = await runner.run(agent, history, context=DEFAULT_USER, approvals=approvals)
                    while result.interruptions:
                        state = result.to_state()
                        for item in result.interruptions:
                            print(f"[approval required, no approver available] {item.describe()}", file=sys.stderr)
                            state.reject(item)
                        result = await runner.resume(state)
                except MaxTurnsExceeded as e:
                    history = list(e.history)
                    print(f"[aborted] {e}", file=sys.stderr)
                else:
                    history = result.history
                    print(f"{result.final_output or ''}{SEPARATOR}", end="", flush=True)

                if not interactive:
                    break
                next_line = await read_next_line()
                if next_line is None or next_line.strip() == SESSION_END_SENTINEL:
                    break
                history.append(user(next_line))
    except CapabilityServerError as e:
        print(f"[fatal] {e}", file=sys.stderr)
        return EXIT_SERVER_UNREACHABLE
    except ModelBackendError as e:
        print(f"[fatal] {e}", file=sys.stderr)
        return EXIT_MODEL_FAILURE

    transcript = History(history)
    logger.info("Session ended with %d history items", len(transcript))
    if args.transcript:
        write_transcript(args.transcript, transcript)
    sys.stdout.write(dumps_transcript(transcript))
    sys.stdout.flush()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper()))

    settings = Settings.from_env()
    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.model:
        overrides["model"] = args.model
    if args.max_turns is not None:
        overrides["max_turns"] = args.max_turns
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    interactive = sys.stdin.isatty()
    prompt = read_initial_prompt(sys.stdin)
    if not prompt:
        print("No input prompt provided", file=sys.stderr)
        return EXIT_NO_PROMPT

    configure_tracing(disabled=settings.tracing_disabled)
    try:
        return asyncio.run(chat(args, settings, prompt, interactive))
    finally:
        shutdown_tracing()


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
