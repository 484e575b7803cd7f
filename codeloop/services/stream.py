"""Turns a model event stream into text, assembled tool calls and usage."""

from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass, field

from codeloop.models.llm import LLMUsage
from codeloop.models.stream import (
    BlockStart,
    BlockStop,
    InputJsonDelta,
    MessageEnd,
    StreamEvent,
    TextDelta,
    UsageUpdate,
)
from codeloop.models.tools import ToolInvocationRequest
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StreamResult:
    """Everything one model response produced."""

    text: str
    tool_invocations: list[ToolInvocationRequest]
    usage: LLMUsage
    stop_reason: str | None = None


@dataclass
class _StreamState:
    text_parts: list[str] = field(default_factory=list)
    # Keyed by block index, never by "most recent block".
    tool_blocks: dict[int, ToolInvocationRequest] = field(default_factory=dict)
    text_blocks: set[int] = field(default_factory=set)
    usage: LLMUsage = field(default_factory=LLMUsage)
    stop_reason: str | None = None


class StreamEventInterpreter:
    """Content-block state machine for one streamed model response.

    Text fragments are handed to ``on_text`` as soon as they arrive. Tool input
    fragments are concatenated per block index and parsed once, when the block
    closes. Usage events overwrite the local snapshot because the API reports
    cumulative counts.

    Use ``interpret`` for an async stream, or ``feed`` / ``finish`` to drive the
    machine one event at a time.
    """

    def __init__(self, on_text: Callable[[str], None] | None = None):
        self.on_text = on_text
        self._state = _StreamState()

    def reset(self) -> None:
        self._state = _StreamState()

    async def interpret(self, events: AsyncIterable[StreamEvent]) -> StreamResult:
        """Consume a whole stream and return its result."""
        self.reset()
        async for event in events:
            self.feed(event)
        return self.finish()

    def feed(self, event: StreamEvent) -> None:
        """Apply one event to the state machine."""
        state = self._state
        match event:
            case BlockStart(index=index, block_type="tool_use"):
                request = ToolInvocationRequest(
                    id=event.tool_id or f"tool_{index}",
                    name=event.tool_name or "",
                    index=index,
                    input=dict(event.initial_input),
                )
                if index in state.tool_blocks:
                    logger.warning(f"Tool block {index} started twice; replacing the earlier one")
                state.tool_blocks[index] = request
                logger.debug(f"Tool block {index} started: {request.name} ({request.id})")

            case BlockStart(index=index, block_type="text"):
                state.text_blocks.add(index)

            case TextDelta(text=text):
                if not text:
                    return
                state.text_parts.append(text)
                if self.on_text:
                    self.on_text(text)

            case InputJsonDelta(index=index, partial_json=fragment):
                request = state.tool_blocks.get(index)
                if request is None or request.finalized:
                    logger.warning(f"Input fragment for block {index} with no open tool block; ignoring")
                    return
                request.append_fragment(fragment)

            case BlockStop(index=index):
                request = state.tool_blocks.get(index)
                if request is not None:
                    request.finalize()
                    if request.parse_error:
                        logger.warning(f"Tool block {index} ({request.name}): {request.parse_error.message}")
                    else:
                        logger.debug(f"Tool block {index} closed with input {request.input}")
                else:
                    state.text_blocks.discard(index)

            case UsageUpdate():
                for counter in (
                    "input_tokens",
                    "output_tokens",
                    "cache_creation_input_tokens",
                    "cache_read_input_tokens",
                ):
                    value = getattr(event, counter)
                    if value is not None:
                        setattr(state.usage, counter, value)

            case MessageEnd(stop_reason=stop_reason):
                state.stop_reason = stop_reason

            case _:
                logger.debug(f"Ignoring stream event: {event!r}")

    def finish(self) -> StreamResult:
        """Close out the stream and return its result."""
        state = self._state
        requests = [state.tool_blocks[index] for index in sorted(state.tool_blocks)]
        for request in requests:
            if not request.finalized:
                request.mark_unterminated()
                logger.warning(f"Stream ended with tool block {request.index} ({request.name}) still open")

        result = StreamResult(
            text="".join(state.text_parts),
            tool_invocations=requests,
            usage=state.usage.copy(),
            stop_reason=state.stop_reason,
        )
        self.reset()
        return result
