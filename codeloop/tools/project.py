"""Project structure analysis tool."""

import ast
import asyncio
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from codeloop.models.tools import ToolFailure, ToolResult, ToolSuccess
from codeloop.tools.base import ToolContext, ToolDefinition
from codeloop.tools.file_tools import IGNORED_DIRECTORIES
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)

LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".rb": "ruby",
    ".md": "markdown",
    ".json": "json",
    ".toml": "toml",
    ".yaml": "yaml",
    ".yml": "yaml",
}

JS_IMPORT_PATTERN = re.compile(r"""(?:import\s[^'"]*?from\s*|import\s*\(?\s*|require\s*\(\s*)['"]([^'"]+)['"]""")

MAX_TREE_LINES = 200


class AnalyzeProjectInput(BaseModel):
    """Input schema for analyze_project."""

    path: str = Field(".", description="Project root to analyze")
    max_depth: int = Field(4, ge=1, le=10, description="How deep to descend into subdirectories")


@dataclass
class ProjectSummary:
    """Structure and dependency overview of a source tree."""

    root: Path
    tree: list[str] = field(default_factory=list)
    total_files: int = 0
    total_bytes: int = 0
    languages: Counter = field(default_factory=Counter)
    imports: dict[str, list[str]] = field(default_factory=dict)
    unreadable: list[str] = field(default_factory=list)

    def render(self) -> str:
        lines = [
            f"Project: {self.root}",
            f"Files: {self.total_files} ({self.total_bytes} bytes)",
        ]
        if self.languages:
            counts = ", ".join(f"{lang}: {count}" for lang, count in self.languages.most_common())
            lines.append(f"Languages: {counts}")

        lines.append("")
        lines.append("Tree:")
        lines.extend(self.tree[:MAX_TREE_LINES])
        if len(self.tree) > MAX_TREE_LINES:
            lines.append(f"... {len(self.tree) - MAX_TREE_LINES} more entries")

        if self.imports:
            lines.append("")
            lines.append("Imports:")
            for path, modules in sorted(self.imports.items()):
                lines.append(f"  {path}: {', '.join(modules)}")

        if self.unreadable:
            lines.append("")
            lines.append(f"Skipped (unreadable): {', '.join(self.unreadable)}")
        return "\n".join(lines)


def python_imports(source: str) -> list[str]:
    """Top-level modules imported by a Python source file."""
    modules: list[str] = []
    for node in ast.walk(ast.parse(source)):
        if isinstance(node, ast.Import):
            modules.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            prefix = "." * node.level
            modules.append(f"{prefix}{node.module or ''}")
    return sorted(set(modules))


def script_imports(source: str) -> list[str]:
    """Modules imported or required by a JavaScript/TypeScript source file."""
    return sorted(set(JS_IMPORT_PATTERN.findall(source)))


def analyze_tree(root: Path, max_depth: int) -> ProjectSummary:
    summary = ProjectSummary(root=root)

    def visit(directory: Path, depth: int) -> None:
        children = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        for child in children:
            if child.name in IGNORED_DIRECTORIES or (child.name.startswith(".") and child.is_dir()):
                continue
            indent = "  " * depth
            relative = child.relative_to(root).as_posix()
            if child.is_dir():
                summary.tree.append(f"{indent}{child.name}/")
                if depth + 1 < max_depth:
                    visit(child, depth + 1)
                continue

            size = child.stat().st_size
            summary.tree.append(f"{indent}{child.name}")
            summary.total_files += 1
            summary.total_bytes += size
            language = LANGUAGES.get(child.suffix.lower())
            if language:
                summary.languages[language] += 1

            if language in ("python", "javascript", "typescript"):
                try:
                    source = child.read_text(encoding="utf-8")
                    modules = python_imports(source) if language == "python" else script_imports(source)
                except (OSError, UnicodeDecodeError, SyntaxError, ValueError):
                    summary.unreadable.append(relative)
                    continue
                if modules:
                    summary.imports[relative] = modules

    visit(root, 0)
    return summary


def create_analyze_project_tool(context: ToolContext) -> ToolDefinition:
    async def analyze_project_handler(params: AnalyzeProjectInput) -> ToolResult:
        root = context.resolve(params.path)
        if not root.is_dir():
            return ToolFailure(error=f"Directory not found: {root}")

        summary = await asyncio.to_thread(analyze_tree, root, params.max_depth)
        logger.debug(f"Analyzed {summary.total_files} files under {root}")
        return ToolSuccess(content=summary.render())

    return ToolDefinition(
        name="analyze_project",
        description=(
            "Summarize a project's structure: a file tree, file counts per language, total size, and "
            "the modules imported by Python, JavaScript and TypeScript files."
        ),
        input_schema_class=AnalyzeProjectInput,
        handler=analyze_project_handler,
    )
