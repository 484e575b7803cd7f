"""File system tools: read, write, update, list and create directories."""

import asyncio
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from codeloop.models.tools import ToolFailure, ToolResult, ToolSuccess
from codeloop.tools.base import ToolContext, ToolDefinition

IGNORED_DIRECTORIES = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}

MAX_READ_BYTES = 1_000_000


class ReadFileInput(BaseModel):
    """Input schema for read_file."""

    path: str = Field(..., min_length=1, description="Path of the file to read, relative to the workspace")
    start_line: int | None = Field(None, ge=1, description="First line to return (1-based)")
    end_line: int | None = Field(None, ge=1, description="Last line to return (1-based, inclusive)")

    @model_validator(mode="after")
    def check_line_range(self) -> "ReadFileInput":
        if self.start_line and self.end_line and self.end_line < self.start_line:
            raise ValueError("end_line must not be before start_line")
        return self


class WriteFileInput(BaseModel):
    """Input schema for write_file."""

    path: str = Field(..., min_length=1, description="Path of the file to write")
    content: str = Field(..., description="Full text content of the file")
    create_dirs: bool = Field(True, description="Create missing parent directories")


class UpdateFileInput(BaseModel):
    """Input schema for update_file."""

    path: str = Field(..., min_length=1, description="Path of the file to update")
    old_text: str = Field(..., min_length=1, description="Exact text to replace")
    new_text: str = Field(..., description="Replacement text")
    replace_all: bool = Field(False, description="Replace every occurrence instead of the first")


class ListDirectoryInput(BaseModel):
    """Input schema for list_directory."""

    path: str = Field(".", description="Directory to list")
    recursive: bool = Field(False, description="Descend into subdirectories")


class CreateDirectoryInput(BaseModel):
    """Input schema for create_directory."""

    path: str = Field(..., min_length=1, description="Directory to create, including parents")


def _read_text(path: Path, start_line: int | None, end_line: int | None) -> str:
    if path.stat().st_size > MAX_READ_BYTES:
        raise ValueError(f"File is larger than {MAX_READ_BYTES} bytes: {path}")
    content = path.read_text(encoding="utf-8")
    if start_line is None and end_line is None:
        return content

    lines = content.splitlines()
    start = (start_line or 1) - 1
    end = end_line or len(lines)
    return "\n".join(f"{number:>4}: {line}" for number, line in enumerate(lines[start:end], start=start + 1))


def _list_entries(root: Path, recursive: bool) -> list[str]:
    entries: list[str] = []

    def walk(directory: Path, prefix: str) -> None:
        children = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        for child in children:
            relative = f"{prefix}{child.name}"
            if child.is_dir():
                entries.append(f"[dir]  {relative}/")
                if recursive and child.name not in IGNORED_DIRECTORIES:
                    walk(child, f"{relative}/")
            else:
                entries.append(f"[file] {relative}")

    walk(root, "")
    return entries


def create_read_file_tool(context: ToolContext) -> ToolDefinition:
    async def read_file_handler(params: ReadFileInput) -> ToolResult:
        path = context.resolve(params.path)
        if not path.is_file():
            return ToolFailure(error=f"File not found: {path}")
        content = await asyncio.to_thread(_read_text, path, params.start_line, params.end_line)
        return ToolSuccess(content=content)

    return ToolDefinition(
        name="read_file",
        description=(
            "Read the contents of a text file. Optionally restrict the output to a 1-based line range, "
            "in which case each line is prefixed with its line number."
        ),
        input_schema_class=ReadFileInput,
        handler=read_file_handler,
    )


def create_write_file_tool(context: ToolContext) -> ToolDefinition:
    async def write_file_handler(params: WriteFileInput) -> ToolResult:
        path = context.resolve(params.path)
        if params.create_dirs:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        elif not path.parent.is_dir():
            return ToolFailure(error=f"Directory does not exist: {path.parent}")

        await asyncio.to_thread(path.write_text, params.content, encoding="utf-8")
        written = len(params.content.encode("utf-8"))
        return ToolSuccess(content=f"Wrote {written} bytes to {path}")

    return ToolDefinition(
        name="write_file",
        description="Create or overwrite a file with the given content.",
        input_schema_class=WriteFileInput,
        handler=write_file_handler,
    )


def create_update_file_tool(context: ToolContext) -> ToolDefinition:
    async def update_file_handler(params: UpdateFileInput) -> ToolResult:
        path = context.resolve(params.path)
        if not path.is_file():
            return ToolFailure(error=f"File not found: {path}")

        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        occurrences = content.count(params.old_text)
        if occurrences == 0:
            return ToolFailure(error=f"Text not found in {path}")

        if params.replace_all:
            updated = content.replace(params.old_text, params.new_text)
            replaced = occurrences
        else:
            updated = content.replace(params.old_text, params.new_text, 1)
            replaced = 1

        await asyncio.to_thread(path.write_text, updated, encoding="utf-8")
        return ToolSuccess(content=f"Replaced {replaced} occurrence(s) in {path}")

    return ToolDefinition(
        name="update_file",
        description=(
            "Edit a file by replacing an exact piece of text. Fails if the text is not present. "
            "Set replace_all to replace every occurrence."
        ),
        input_schema_class=UpdateFileInput,
        handler=update_file_handler,
    )


def create_list_directory_tool(context: ToolContext) -> ToolDefinition:
    async def list_directory_handler(params: ListDirectoryInput) -> ToolResult:
        path = context.resolve(params.path)
        if not path.is_dir():
            return ToolFailure(error=f"Directory not found: {path}")

        entries = await asyncio.to_thread(_list_entries, path, params.recursive)
        if not entries:
            return ToolSuccess(content=f"{path} is empty")
        return ToolSuccess(content=f"{path} ({len(entries)} entries)\n" + "\n".join(entries))

    return ToolDefinition(
        name="list_directory",
        description=(
            "List the entries of a directory, directories first. With recursive=true, descends into "
            "subdirectories except version control, dependency and build folders."
        ),
        input_schema_class=ListDirectoryInput,
        handler=list_directory_handler,
    )


def create_create_directory_tool(context: ToolContext) -> ToolDefinition:
    async def create_directory_handler(params: CreateDirectoryInput) -> ToolResult:
        path = context.resolve(params.path)
        if path.exists() and not path.is_dir():
            return ToolFailure(error=f"A file already exists at {path}")
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return ToolSuccess(content=f"Created directory {path}")

    return ToolDefinition(
        name="create_directory",
        description="Create a directory and any missing parents.",
        input_schema_class=CreateDirectoryInput,
        handler=create_directory_handler,
    )
