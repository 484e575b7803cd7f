"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


class ToolUseBlock(BaseModel):
    """Tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any]

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


class ToolResultBlock(BaseModel):
    """Tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


class LLMMessage(BaseModel):
    """A message in the conversation history.

    ``tool_result`` messages carry one ToolResultBlock per tool invocation of
    the preceding assistant message. The Anthropic wire format has no such
    role, so they are sent as ``user`` turns.
    """

    role: Literal["user", "assistant", "tool_result"]
    content: str | list[ContentBlock]

    def to_api(self) -> dict[str, Any]:
        """Serialize into the Messages API request shape."""
        role = "user" if self.role == "tool_result" else self.role
        if isinstance(self.content, str):
            return {"role": role, "content": self.content}
        return {"role": role, "content": [block.model_dump() for block in self.content]}

    def text(self) -> str:
        """Concatenated text of the message, ignoring tool blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


class LLMToolDefinition(BaseModel):
    """Complete tool definition for LLM."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class LLMUsage:
    """Token usage counters.

    Within one stream the counters are snapshots that get overwritten;
    across loop iterations they are summed with ``add``.
    """

    input_tokens: int = 0
    output_tokens: int = 0

    # Prompt caching: tokens written to and served from the cache. The API
    # reports these separately from (and in addition to) input_tokens.
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_input_tokens(self) -> int:
        return self.input_tokens + self.cache_creation_input_tokens + self.cache_read_input_tokens

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.output_tokens

    def add(self, other: "LLMUsage") -> None:
        """Add another usage snapshot into this one."""
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens

    def copy(self) -> "LLMUsage":
        return LLMUsage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens,
        )
