"""Sequential execution of assembled tool invocations."""

import time

from codeloop.models.agent import LoopEvent, LoopEventHandler
from codeloop.models.llm import LLMMessage
from codeloop.models.tools import ToolExecutionOutcome, ToolFailure, ToolInvocationRequest
from codeloop.tools.registry import ToolsRegistry
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)


class ToolExecutionStage:
    """Runs one iteration's tool invocations against a registry.

    Invocations run one at a time in request order, so outcomes come back in
    that same order regardless of how long each handler takes.
    """

    def __init__(self, registry: ToolsRegistry, on_event: LoopEventHandler | None = None):
        self.registry = registry
        self.on_event = on_event

    async def run(self, requests: list[ToolInvocationRequest], iteration: int = 0) -> list[ToolExecutionOutcome]:
        """Execute every request and return exactly one outcome per request."""
        outcomes: list[ToolExecutionOutcome] = []
        for request in requests:
            self._emit(
                LoopEvent("tool_start", iteration, {"id": request.id, "name": request.name, "input": request.input})
            )
            outcome = await self.execute_one(request)
            outcomes.append(outcome)
            self._emit(
                LoopEvent(
                    "tool_end",
                    iteration,
                    {
                        "id": request.id,
                        "name": request.name,
                        "success": outcome.success,
                        "error": outcome.error,
                        "duration_ms": outcome.duration_ms,
                    },
                )
            )
        return outcomes

    async def execute_one(self, request: ToolInvocationRequest) -> ToolExecutionOutcome:
        if request.parse_error is not None:
            logger.warning(f"Skipping {request.name} ({request.id}): {request.parse_error.message}")
            return ToolExecutionOutcome(
                invocation_id=request.id,
                tool_name=request.name,
                success=False,
                error=f"Could not parse tool input: {request.parse_error.message}",
            )

        logger.info(f"Executing tool: {request.name} ({request.id})")
        logger.debug(f"Tool {request.name} input: {request.input}")
        started = time.monotonic()
        result = await self.registry.execute(request.name, request.input)
        duration_ms = int((time.monotonic() - started) * 1000)

        if isinstance(result, ToolFailure):
            logger.info(f"Tool {request.name} failed in {duration_ms}ms: {result.error[:200]}")
            return ToolExecutionOutcome(
                invocation_id=request.id,
                tool_name=request.name,
                success=False,
                error=result.error,
                duration_ms=duration_ms,
            )

        logger.debug(f"Tool {request.name} succeeded in {duration_ms}ms: {result.content[:100]}...")
        return ToolExecutionOutcome(
            invocation_id=request.id,
            tool_name=request.name,
            success=True,
            output=result.content,
            duration_ms=duration_ms,
        )

    @staticmethod
    def to_result_message(outcomes: list[ToolExecutionOutcome]) -> LLMMessage:
        """Build the tool-result turn, one block per outcome in invocation order."""
        return LLMMessage(role="tool_result", content=[outcome.to_block() for outcome in outcomes])

    def _emit(self, event: LoopEvent) -> None:
        if self.on_event:
            self.on_event(event)
