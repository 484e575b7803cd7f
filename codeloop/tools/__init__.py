"""Tools for the coding assistant."""

from codeloop.tools.base import ToolContext, ToolDefinition
from codeloop.tools.registry import ToolsRegistry, create_default_registry

__all__ = ["ToolContext", "ToolDefinition", "ToolsRegistry", "create_default_registry"]
