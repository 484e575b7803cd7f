"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from codeloop.models.llm import LLMToolDefinition
from codeloop.models.tools import ToolResult

ToolHandler = Callable[[Any], Awaitable[ToolResult]]


@dataclass
class ToolContext:
    """Environment shared by the built-in tools."""

    workspace: Path
    default_timeout_ms: int = 30_000

    def resolve(self, path: str) -> Path:
        """Resolve a tool-supplied path against the workspace root."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.workspace / candidate
        return candidate.resolve()


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        schema = self.input_schema_class.model_json_schema()
        schema.pop("title", None)
        return schema

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def to_llm_tool(self) -> LLMToolDefinition:
        return LLMToolDefinition(name=self.name, description=self.description, input_schema=self.get_json_schema())
