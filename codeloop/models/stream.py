"""Stream events produced by a model backend.

Each event kind is its own frozen dataclass so consumers can match on the
type instead of probing attribute shapes. Block indices are the positional
indices the API assigns to content blocks within one response.
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class BlockStart:
    """A content block opened at ``index``."""

    index: int
    block_type: Literal["text", "tool_use"]
    tool_id: str | None = None
    tool_name: str | None = None
    initial_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextDelta:
    """A fragment of text for the block at ``index``."""

    index: int
    text: str


@dataclass(frozen=True)
class InputJsonDelta:
    """A raw fragment of the JSON-encoded tool input for the block at ``index``."""

    index: int
    partial_json: str


@dataclass(frozen=True)
class BlockStop:
    """The content block at ``index`` is complete."""

    index: int


@dataclass(frozen=True)
class UsageUpdate:
    """Cumulative-so-far token counters. ``None`` means the counter was not reported."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None


@dataclass(frozen=True)
class MessageEnd:
    """The model finished its response."""

    stop_reason: str | None = None


StreamEvent = BlockStart | TextDelta | InputJsonDelta | BlockStop | UsageUpdate | MessageEnd
