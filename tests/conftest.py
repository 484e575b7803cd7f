"""Shared fixtures: scripted model backends and event builders."""

import json
from collections.abc import AsyncIterator
from typing import Any

import pytest
from pydantic import BaseModel

from codeloop.models.llm import LLMMessage, LLMToolDefinition
from codeloop.models.stream import (
    BlockStart,
    BlockStop,
    InputJsonDelta,
    MessageEnd,
    StreamEvent,
    TextDelta,
    UsageUpdate,
)
from codeloop.models.tools import ToolFailure, ToolSuccess
from codeloop.tools.base import ToolDefinition
from codeloop.tools.registry import ToolsRegistry


def text_response(*fragments: str, input_tokens: int = 10, output_tokens: int = 5) -> list[StreamEvent]:
    """Events for a plain text answer."""
    events: list[StreamEvent] = [
        UsageUpdate(input_tokens=input_tokens, output_tokens=1),
        BlockStart(index=0, block_type="text"),
    ]
    events.extend(TextDelta(index=0, text=fragment) for fragment in fragments)
    events.extend(
        [
            BlockStop(index=0),
            UsageUpdate(output_tokens=output_tokens),
            MessageEnd(stop_reason="end_turn"),
        ]
    )
    return events


def tool_response(
    calls: list[tuple[str, str, Any]],
    text: str = "",
    input_tokens: int = 20,
    output_tokens: int = 8,
    chunk_size: int = 7,
) -> list[StreamEvent]:
    """Events for a response that requests tools.

    ``calls`` holds ``(tool_id, name, input)``; a string input is streamed
    verbatim so tests can send malformed JSON.
    """
    events: list[StreamEvent] = [UsageUpdate(input_tokens=input_tokens, output_tokens=1)]
    index = 0
    if text:
        events.extend([BlockStart(index=0, block_type="text"), TextDelta(index=0, text=text), BlockStop(index=0)])
        index = 1

    for offset, (tool_id, name, tool_input) in enumerate(calls):
        block_index = index + offset
        raw = tool_input if isinstance(tool_input, str) else json.dumps(tool_input)
        events.append(BlockStart(index=block_index, block_type="tool_use", tool_id=tool_id, tool_name=name))
        events.extend(
            InputJsonDelta(index=block_index, partial_json=raw[i : i + chunk_size])
            for i in range(0, len(raw), chunk_size)
        )
        events.append(BlockStop(index=block_index))

    events.extend([UsageUpdate(output_tokens=output_tokens), MessageEnd(stop_reason="tool_use")])
    return events


class ScriptedBackend:
    """Model backend that replays scripted responses.

    Each request consumes the next script; once the scripts run out the last
    one repeats. A script that is an exception is raised instead of streamed;
    a ``(events, exception)`` pair streams the events and then raises.
    """

    def __init__(self, scripts: list[Any]):
        self.scripts = scripts
        self.requests: list[list[LLMMessage]] = []
        self.tools: list[list[LLMToolDefinition]] = []
        self.kwargs: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        script = self.scripts[min(len(self.requests), len(self.scripts) - 1)]
        self.requests.append(list(messages))
        self.tools.append(tools)
        self.kwargs.append(kwargs)

        if isinstance(script, Exception):
            raise script

        failure = None
        if isinstance(script, tuple):
            script, failure = script
        for event in script:
            yield event
        if failure is not None:
            raise failure


class PathInput(BaseModel):
    path: str


class EmptyInput(BaseModel):
    pass


def make_tool(name: str, handler, schema: type[BaseModel] = PathInput) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"Test tool {name}", input_schema_class=schema, handler=handler)


@pytest.fixture
def read_calls() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def registry(read_calls) -> ToolsRegistry:
    """Registry with a fake read_file and a tool that always raises."""

    async def read_file(params: PathInput):
        read_calls.append(params.model_dump())
        if params.path == "missing.txt":
            return ToolFailure(error=f"File not found: {params.path}")
        return ToolSuccess(content="hello")

    async def explode(params: EmptyInput):
        raise RuntimeError("kaboom")

    return ToolsRegistry([make_tool("read_file", read_file), make_tool("explode", explode, EmptyInput)])
