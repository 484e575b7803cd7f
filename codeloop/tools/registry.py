"""Tools registry for managing AI assistant tools."""

from typing import Any

from pydantic import ValidationError

from codeloop.models.llm import LLMToolDefinition
from codeloop.models.tools import ToolFailure, ToolResult, ToolSuccess
from codeloop.tools.base import ToolContext, ToolDefinition
from codeloop.tools.file_tools import (
    create_create_directory_tool,
    create_list_directory_tool,
    create_read_file_tool,
    create_update_file_tool,
    create_write_file_tool,
)
from codeloop.tools.project import create_analyze_project_tool
from codeloop.tools.search import create_search_files_tool
from codeloop.tools.shell import create_execute_command_tool
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)


class ToolsRegistry:
    """Registry of tool definitions keyed by name.

    Read-only once the session starts; safe to share across loop iterations.
    """

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get_tool_definitions(self) -> list[LLMToolDefinition]:
        """Descriptors sent to the model with every request."""
        return [tool.to_llm_tool() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def execute(self, name: str, tool_input: Any) -> ToolResult:
        """Run a tool by name. Every failure is returned as a ToolFailure."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolFailure(error=f"Tool not found: {name}")

        if not isinstance(tool_input, dict):
            return ToolFailure(error=f"Tool input for {name} must be a JSON object, got {type(tool_input).__name__}")

        try:
            parsed_input = tool.parse_input(tool_input)
        except ValidationError as e:
            logger.info(f"Invalid input for tool {name}: {e}")
            return ToolFailure(error=f"Invalid input for {name}: {e}")

        try:
            result = await tool.handler(parsed_input)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            return ToolFailure(error=f"Tool execution failed: {e!s}")

        if isinstance(result, ToolSuccess | ToolFailure):
            return result
        # Handlers may return plain text for the success case.
        return ToolSuccess(content=str(result))


def create_default_registry(context: ToolContext) -> ToolsRegistry:
    """Build a registry holding the built-in tool set bound to ``context``."""
    return ToolsRegistry(
        [
            create_read_file_tool(context),
            create_write_file_tool(context),
            create_update_file_tool(context),
            create_list_directory_tool(context),
            create_create_directory_tool(context),
            create_search_files_tool(context),
            create_execute_command_tool(context),
            create_analyze_project_tool(context),
        ]
    )
