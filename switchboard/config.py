"""Process-wide configuration, built once at startup and passed explicitly."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from openai import AsyncOpenAI

from switchboard.services.model import ModelProvider, ModelSettings, OpenAIProvider
from switchboard.utils.constants import (
    DEFAULT_API_KEY,
    DEFAULT_BASE_URL,
    DEFAULT_MAX_TURNS,
    DEFAULT_MCP_STARTUP_TIMEOUT,
    DEFAULT_MODEL,
)


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Model backend and runtime settings."""
    base_url: str = DEFAULT_BASE_URL
    api_key: str = DEFAULT_API_KEY
    model: str = DEFAULT_MODEL
    max_turns: int = DEFAULT_MAX_TURNS
    tracing_disabled: bool = True
    mcp_startup_timeout: float = DEFAULT_MCP_STARTUP_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            base_url=env.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
            api_key=env.get("OPENAI_API_KEY") or DEFAULT_API_KEY,
            model=env.get("MODEL_ID") or DEFAULT_MODEL,
            max_turns=int(env.get("MAX_TURNS") or DEFAULT_MAX_TURNS),
            tracing_disabled=_env_flag(env.get("TRACING_DISABLED"), True),
            mcp_startup_timeout=float(env.get("MCP_STARTUP_TIMEOUT") or DEFAULT_MCP_STARTUP_TIMEOUT),
        )

    def openai_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(base_url=self.base_url, api_key=self.api_key)

    def model_provider(self) -> OpenAIProvider:
        return OpenAIProvider(self.openai_client())

    def run_config(self) -> "RunConfig":
        return RunConfig(
            model_provider=self.model_provider(),
            default_model=self.model,
            max_turns=self.max_turns,
            tracing_disabled=self.tracing_disabled,
        )


@dataclass(frozen=True)
class RunConfig:
    """Everything the runner needs that isn't part of an agent."""
    model_provider: ModelProvider
    default_model: str = DEFAULT_MODEL
    max_turns: int = DEFAULT_MAX_TURNS
    model_settings: Optional[ModelSettings] = None
    tracing_disabled: bool = True
