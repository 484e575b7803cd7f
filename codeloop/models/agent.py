"""Conversation loop configuration, trace events and responses."""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from codeloop.models.llm import LLMUsage
from codeloop.models.tools import ToolInvocationReport

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_ITERATIONS = 10

DEFAULT_SYSTEM_PROMPT = """You are a coding assistant working in the user's terminal.

You can read, write and edit files, list directories, run shell commands and analyze the
project structure through the provided tools. Paths are relative to the workspace root.

Guidelines:
- Inspect the project before changing it; read a file before editing it.
- Prefer small, targeted edits with update_file over rewriting whole files.
- When a tool fails, read the error and adjust instead of repeating the same call.
- Keep answers concise and explain what you changed."""


@dataclass
class AgentConfig:
    """Configuration for the conversation loop."""

    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_tokens: int = 4096
    temperature: float = 0.1
    request_timeout: float | None = None  # Seconds per model request
    retain_history: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "AgentConfig":
        """Build a config from CODELOOP_* environment variables; explicit overrides win."""
        values: dict[str, Any] = {}
        if model := os.getenv("CODELOOP_MODEL"):
            values["model"] = model
        if max_iterations := os.getenv("CODELOOP_MAX_ITERATIONS"):
            try:
                values["max_iterations"] = int(max_iterations)
            except ValueError as e:
                raise ValueError(f"CODELOOP_MAX_ITERATIONS must be an integer, got {max_iterations!r}") from e
        if request_timeout := os.getenv("CODELOOP_REQUEST_TIMEOUT"):
            try:
                values["request_timeout"] = float(request_timeout)
            except ValueError as e:
                raise ValueError(f"CODELOOP_REQUEST_TIMEOUT must be a number, got {request_timeout!r}") from e

        values.update({key: value for key, value in overrides.items() if value is not None})
        config = cls(**values)
        if config.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        return config


LoopEventKind = Literal["dispatch", "tool_start", "tool_end", "iteration_limit", "complete", "error"]


@dataclass(frozen=True)
class LoopEvent:
    """Trace record emitted on a loop state transition."""

    kind: LoopEventKind
    iteration: int
    detail: dict[str, Any] = field(default_factory=dict)


LoopEventHandler = Callable[[LoopEvent], None]


@dataclass
class AgentResponse:
    """Caller-facing result of processing one user message."""

    success: bool
    content: str
    tool_invocations: list[ToolInvocationReport] = field(default_factory=list)
    usage: LLMUsage = field(default_factory=LLMUsage)
    response_time_ms: int = 0
    iterations: int = 0
    model: str = DEFAULT_MODEL
    stop_reason: str | None = None
