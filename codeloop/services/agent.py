"""Conversation loop: model request, tool execution, repeat."""

import asyncio
import time
from collections.abc import AsyncIterator, Callable

from codeloop.clients.base import ModelBackend
from codeloop.models.agent import AgentConfig, AgentResponse, LoopEvent, LoopEventHandler
from codeloop.models.llm import ContentBlock, LLMMessage, LLMUsage, TextBlock
from codeloop.models.stream import StreamEvent
from codeloop.models.tools import ToolInvocationReport
from codeloop.services.stream import StreamEventInterpreter, StreamResult
from codeloop.services.tool_execution import ToolExecutionStage
from codeloop.tools.registry import ToolsRegistry
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)

ITERATION_LIMIT_NOTICE = (
    "\n\n[Stopped after {limit} tool iterations. The task may be incomplete; "
    "send a follow-up message to let me continue.]"
)


class ConversationLoop:
    """Drives one conversation through model requests and tool executions.

    Each call to ``process_message`` sends the history to the model, runs any
    tools it asks for, appends the assistant turn and the tool results, and
    repeats until the model answers without tool calls or ``max_iterations``
    rounds of tool execution have happened.

    The loop never runs two requests or two tools at once. History changes are
    only committed when a call completes, so a failed or cancelled call leaves
    nothing behind.
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolsRegistry,
        config: AgentConfig | None = None,
        on_text: Callable[[str], None] | None = None,
        on_event: LoopEventHandler | None = None,
    ):
        """Initialize the conversation loop.

        Args:
            backend: Streaming model API
            registry: Tools the model may call
            config: Loop configuration (defaults to AgentConfig())
            on_text: Receives each text fragment as it streams in
            on_event: Receives trace events for state transitions
        """
        self.backend = backend
        self.registry = registry
        self.config = config or AgentConfig()
        self.on_event = on_event
        self.interpreter = StreamEventInterpreter(on_text=on_text)
        self.stage = ToolExecutionStage(registry, on_event=on_event)
        self.history: list[LLMMessage] = []

    def reset(self) -> None:
        """Forget retained history."""
        self.history = []

    async def process_message(self, user_text: str) -> AgentResponse:
        """Process a user message through the tool-calling loop.

        Args:
            user_text: The user's message

        Returns:
            The final answer with usage totals. Transport and API errors are
            returned as an unsuccessful response rather than raised.
        """
        started = time.monotonic()
        usage = LLMUsage()
        iteration = 0
        max_iterations = self.config.max_iterations

        prefix = self.history if self.config.retain_history else []
        messages = [*prefix, LLMMessage(role="user", content=user_text)]
        answer_parts: list[str] = []
        final_reports: list[ToolInvocationReport] = []
        stop_reason: str | None = None

        logger.info(
            f"Processing message with {len(messages)} messages in history, "
            f"{len(self.registry.get_tool_names())} tools, max_iterations: {max_iterations}"
        )

        try:
            while True:
                self._emit(LoopEvent("dispatch", iteration + 1, {"messages": len(messages)}))
                result = await self._dispatch(messages)
                usage.add(result.usage)
                answer_parts.append(result.text)
                stop_reason = result.stop_reason
                logger.debug(
                    f"Iteration {iteration + 1}: stop_reason={result.stop_reason}, "
                    f"{len(result.tool_invocations)} tool calls, usage={result.usage}"
                )

                if not result.tool_invocations:
                    final_reports = []
                    if result.text:
                        messages.append(LLMMessage(role="assistant", content=result.text))
                    break

                outcomes = await self.stage.run(result.tool_invocations, iteration + 1)

                assistant_content: list[ContentBlock] = []
                if result.text:
                    assistant_content.append(TextBlock(text=result.text))
                assistant_content.extend(request.to_block() for request in result.tool_invocations)
                messages.append(LLMMessage(role="assistant", content=assistant_content))
                messages.append(self.stage.to_result_message(outcomes))

                final_reports = [
                    ToolInvocationReport.from_outcome(request, outcome)
                    for request, outcome in zip(result.tool_invocations, outcomes, strict=True)
                ]

                iteration += 1
                if iteration >= max_iterations:
                    logger.warning(f"Conversation loop reached max iterations ({max_iterations})")
                    notice = ITERATION_LIMIT_NOTICE.format(limit=max_iterations)
                    answer_parts.append(notice)
                    messages.append(LLMMessage(role="assistant", content=notice.strip()))
                    stop_reason = "max_iterations"
                    self._emit(LoopEvent("iteration_limit", iteration, {"max_iterations": max_iterations}))
                    break

        except Exception as e:
            message = self._describe_error(e)
            logger.error(f"Conversation loop failed on iteration {iteration + 1}: {message}", exc_info=True)
            self._emit(LoopEvent("error", iteration + 1, {"error": message}))
            return AgentResponse(
                success=False,
                content=f"Error: {message}",
                tool_invocations=[],
                usage=usage,
                response_time_ms=self._elapsed_ms(started),
                iterations=iteration,
                model=self.config.model,
                stop_reason="error",
            )

        if self.config.retain_history:
            self.history = messages

        iterations_run = iteration if stop_reason == "max_iterations" else iteration + 1
        response = AgentResponse(
            success=True,
            content="".join(answer_parts),
            tool_invocations=final_reports,
            usage=usage,
            response_time_ms=self._elapsed_ms(started),
            iterations=iterations_run,
            model=self.config.model,
            stop_reason=stop_reason,
        )
        logger.info(
            f"Conversation loop completed in {iterations_run} iterations, "
            f"input tokens: {usage.input_tokens}, output tokens: {usage.output_tokens}"
        )
        self._emit(
            LoopEvent(
                "complete",
                iterations_run,
                {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens},
            )
        )
        return response

    async def _dispatch(self, messages: list[LLMMessage]) -> StreamResult:
        """Send the history to the model and interpret the streamed reply."""
        events = self.backend.stream_message(
            list(messages),
            self.config.system_prompt,
            self.registry.get_tool_definitions(),
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        try:
            if self.config.request_timeout is None:
                return await self.interpreter.interpret(events)
            async with asyncio.timeout(self.config.request_timeout):
                return await self.interpreter.interpret(events)
        finally:
            await self._close(events)

    @staticmethod
    async def _close(events: AsyncIterator[StreamEvent]) -> None:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()

    def _describe_error(self, error: Exception) -> str:
        if isinstance(error, TimeoutError) and self.config.request_timeout is not None:
            return f"Model request timed out after {self.config.request_timeout}s"
        return str(error) or error.__class__.__name__

    def _emit(self, event: LoopEvent) -> None:
        if self.on_event:
            self.on_event(event)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
