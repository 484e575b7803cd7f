"""Regex search across workspace files."""

import asyncio
import fnmatch
import os
import re
from pathlib import Path

from pydantic import BaseModel, Field

from codeloop.models.tools import ToolFailure, ToolResult, ToolSuccess
from codeloop.tools.base import ToolContext, ToolDefinition
from codeloop.tools.file_tools import IGNORED_DIRECTORIES, MAX_READ_BYTES
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LINE_CHARS = 300


class SearchFilesInput(BaseModel):
    """Input schema for search_files."""

    pattern: str = Field(..., min_length=1, description="Regular expression to search for")
    path: str = Field(".", description="File or directory to search, relative to the workspace")
    file_pattern: str | None = Field(None, description="Only search files whose name matches this glob, e.g. *.py")
    case_sensitive: bool = Field(False, description="Match case exactly")
    max_results: int = Field(200, ge=1, le=2000, description="Stop after this many matching lines")


def _candidate_files(root: Path, file_pattern: str | None):
    if root.is_file():
        yield root
        return
    for directory, subdirectories, filenames in os.walk(root):
        subdirectories[:] = sorted(d for d in subdirectories if d not in IGNORED_DIRECTORIES)
        for filename in sorted(filenames):
            if file_pattern and not fnmatch.fnmatch(filename, file_pattern):
                continue
            yield Path(directory) / filename


def _search(root: Path, workspace: Path, regex: re.Pattern[str], file_pattern: str | None, limit: int):
    matches: list[str] = []
    files_with_matches = 0
    for path in _candidate_files(root, file_pattern):
        try:
            if path.stat().st_size > MAX_READ_BYTES:
                continue
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError):
            logger.debug(f"Skipping unreadable file {path}")
            continue

        shown = path.relative_to(workspace) if path.is_relative_to(workspace) else path
        found = False
        for number, line in enumerate(lines, start=1):
            if not regex.search(line):
                continue
            found = True
            if len(line) > MAX_LINE_CHARS:
                line = line[:MAX_LINE_CHARS] + "..."
            matches.append(f"{shown}:{number}: {line}")
            if len(matches) >= limit:
                return matches, files_with_matches + 1, True
        if found:
            files_with_matches += 1
    return matches, files_with_matches, False


def create_search_files_tool(context: ToolContext) -> ToolDefinition:
    async def search_files_handler(params: SearchFilesInput) -> ToolResult:
        root = context.resolve(params.path)
        if not root.exists():
            return ToolFailure(error=f"Path not found: {root}")

        flags = 0 if params.case_sensitive else re.IGNORECASE
        try:
            regex = re.compile(params.pattern, flags)
        except re.error as e:
            return ToolFailure(error=f"Invalid regular expression {params.pattern!r}: {e}")

        matches, file_count, truncated = await asyncio.to_thread(
            _search, root, context.workspace.resolve(), regex, params.file_pattern, params.max_results
        )
        if not matches:
            return ToolSuccess(content=f"No matches for {params.pattern!r} in {root}")

        header = f"{len(matches)} match(es) in {file_count} file(s)"
        if truncated:
            header += f" (stopped at {params.max_results})"
        return ToolSuccess(content=header + "\n" + "\n".join(matches))

    return ToolDefinition(
        name="search_files",
        description=(
            "Search file contents for a regular expression and return matching lines as path:line: text. "
            "Case-insensitive unless case_sensitive is set; file_pattern restricts which file names are read. "
            "Version control, dependency and build folders are skipped."
        ),
        input_schema_class=SearchFilesInput,
        handler=search_files_handler,
    )
