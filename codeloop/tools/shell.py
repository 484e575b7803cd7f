"""Shell command execution tool."""

import asyncio
import os
import signal
import time

from pydantic import BaseModel, Field

from codeloop.models.tools import ToolFailure, ToolResult, ToolSuccess
from codeloop.tools.base import ToolContext, ToolDefinition
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124
MAX_OUTPUT_CHARS = 20_000
POSIX = os.name == "posix"


class ExecuteCommandInput(BaseModel):
    """Input schema for execute_command."""

    command: str = Field(..., min_length=1, description="Shell command to run")
    working_dir: str | None = Field(None, description="Working directory, relative to the workspace")
    timeout_ms: int | None = Field(None, gt=0, le=600_000, description="Timeout in milliseconds (default 30000)")


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started."""
    if not POSIX:
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass  # already exited


def _clip(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + f"\n... [truncated {len(text) - MAX_OUTPUT_CHARS} characters]"


def format_command_report(
    command: str, cwd: str, exit_code: int, elapsed_ms: int, stdout: str, stderr: str, error: str | None = None
) -> str:
    """Render a command run the way it is shown to the model."""
    lines = [
        f"Command: {command}",
        f"Working directory: {cwd}",
        f"Exit code: {exit_code}",
        f"Elapsed: {elapsed_ms}ms",
    ]
    if stdout:
        lines.append(f"STDOUT:\n{_clip(stdout.rstrip())}")
    if stderr:
        lines.append(f"STDERR:\n{_clip(stderr.rstrip())}")
    if error:
        lines.append(f"ERROR: {error}")
    return "\n".join(lines)


def create_execute_command_tool(context: ToolContext) -> ToolDefinition:
    async def execute_command_handler(params: ExecuteCommandInput) -> ToolResult:
        cwd = context.resolve(params.working_dir) if params.working_dir else context.workspace
        if not cwd.is_dir():
            return ToolFailure(error=f"Working directory not found: {cwd}")

        timeout_ms = params.timeout_ms or context.default_timeout_ms
        logger.info(f"Running command in {cwd}: {params.command}")
        started = time.monotonic()

        process = await asyncio.create_subprocess_shell(
            params.command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=POSIX,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            logger.warning(f"Command timed out after {timeout_ms}ms: {params.command}")
            _kill(process)
            await process.wait()
            elapsed = int((time.monotonic() - started) * 1000)
            return ToolFailure(
                error=format_command_report(
                    params.command,
                    str(cwd),
                    TIMEOUT_EXIT_CODE,
                    elapsed,
                    "",
                    "",
                    error=f"Command timed out after {timeout_ms}ms",
                )
            )
        except BaseException:
            # Cancelled or interrupted: take the process group down before propagating.
            if process.returncode is None:
                logger.warning(f"Command interrupted, killing process group: {params.command}")
                _kill(process)
                await asyncio.shield(process.wait())
            raise

        elapsed = int((time.monotonic() - started) * 1000)
        exit_code = process.returncode if process.returncode is not None else 1
        report = format_command_report(
            params.command,
            str(cwd),
            exit_code,
            elapsed,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        if exit_code != 0:
            return ToolFailure(error=report)
        return ToolSuccess(content=report)

    return ToolDefinition(
        name="execute_command",
        description=(
            "Run a shell command and return its exit code, stdout and stderr. Commands run in the "
            "workspace unless working_dir is given and are killed after the timeout."
        ),
        input_schema_class=ExecuteCommandInput,
        handler=execute_command_handler,
    )
