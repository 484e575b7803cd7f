"""Tool invocation, result and outcome models."""

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from codeloop.models.llm import ToolResultBlock, ToolUseBlock


@dataclass(frozen=True)
class ToolSuccess:
    """Successful tool result."""

    content: str
    success: Literal[True] = True


@dataclass(frozen=True)
class ToolFailure:
    """Failed tool result."""

    error: str
    success: Literal[False] = False


ToolResult = ToolSuccess | ToolFailure


@dataclass(frozen=True)
class ToolInputParseError:
    """Marker for tool input that could not be decoded."""

    message: str
    raw: str


@dataclass
class ToolInvocationRequest:
    """A tool call requested by the model, assembled from streamed fragments."""

    id: str
    name: str
    index: int
    input: Any = field(default_factory=dict)
    json_buffer: str = ""
    parse_error: ToolInputParseError | None = None
    finalized: bool = False

    def append_fragment(self, fragment: str) -> None:
        """Append a raw partial-JSON fragment. No parsing happens here."""
        if self.finalized:
            raise RuntimeError(f"Tool input block {self.index} is already closed")
        self.json_buffer += fragment

    def finalize(self) -> None:
        """Parse the accumulated buffer once and merge it onto the initial input."""
        if self.finalized:
            return
        self.finalized = True

        raw = self.json_buffer
        self.json_buffer = ""
        if not raw.strip():
            return

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            self.parse_error = ToolInputParseError(message=f"Invalid JSON in tool input: {e}", raw=raw)
            return

        if isinstance(parsed, dict) and isinstance(self.input, dict):
            self.input = {**self.input, **parsed}
        else:
            self.input = parsed

    def mark_unterminated(self) -> None:
        """Flag a block the stream never closed."""
        self.finalized = True
        self.parse_error = ToolInputParseError(
            message=f"Tool input block {self.index} ended before it was closed",
            raw=self.json_buffer,
        )
        self.json_buffer = ""

    def to_block(self) -> ToolUseBlock:
        """History representation. Non-object or unparsed input is sent as an empty object."""
        block_input = self.input if isinstance(self.input, dict) and self.parse_error is None else {}
        return ToolUseBlock(id=self.id, name=self.name, input=block_input)


@dataclass
class ToolExecutionOutcome:
    """Result of executing one tool invocation."""

    invocation_id: str
    tool_name: str
    success: bool
    output: str | None = None
    error: str | None = None
    duration_ms: int = 0

    def to_block(self) -> ToolResultBlock:
        if self.success:
            return ToolResultBlock(tool_use_id=self.invocation_id, content=self.output or "", is_error=False)
        return ToolResultBlock(tool_use_id=self.invocation_id, content=f"Error: {self.error}", is_error=True)


@dataclass
class ToolInvocationReport:
    """Caller-facing summary of one tool invocation and its outcome."""

    id: str
    name: str
    input: Any
    success: bool
    output: str | None = None
    error: str | None = None
    duration_ms: int = 0

    @classmethod
    def from_outcome(cls, request: ToolInvocationRequest, outcome: ToolExecutionOutcome) -> "ToolInvocationReport":
        return cls(
            id=request.id,
            name=request.name,
            input=request.input,
            success=outcome.success,
            output=outcome.output,
            error=outcome.error,
            duration_ms=outcome.duration_ms,
        )
