"""Anthropic API client with streaming, rate limiting and context truncation."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

import tiktoken
from anthropic import AsyncAnthropic
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from codeloop.models.agent import DEFAULT_MODEL
from codeloop.models.llm import LLMMessage, LLMToolDefinition, TextBlock, ToolResultBlock, ToolUseBlock
from codeloop.models.stream import (
    BlockStart,
    BlockStop,
    InputJsonDelta,
    MessageEnd,
    StreamEvent,
    TextDelta,
    UsageUpdate,
)
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.1
    max_retries: int = 2  # SDK connection retries before the stream starts
    timeout: float = 600.0

    # Token limits for validation and truncation
    max_message_tokens: int = 50_000  # Maximum tokens per individual user message
    max_conversation_tokens: int = 200_000  # Context window
    token_headroom: int = 8_000  # Reserve tokens for response

    requests_per_minute: int = 50
    tokens_per_minute: int = 400_000


class AnthropicRateLimiter:
    """Client-side rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 400_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the rate limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        cost = max(1, min(estimated_tokens, self.token_limit.amount))
        if not self.limiter.hit(self.token_limit, token_identifier, cost=cost):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicEventAdapter:
    """Translates raw Messages API stream events into StreamEvents.

    One adapter per response; it remembers the stop reason from
    ``message_delta`` so it can be reported on ``message_stop``.
    """

    def __init__(self):
        self.stop_reason: str | None = None

    def convert(self, event: Any) -> list[StreamEvent]:
        event_type = getattr(event, "type", None)

        if event_type == "message_start":
            usage = getattr(event.message, "usage", None)
            if usage is None:
                return []
            return [self._usage_update(usage)]

        if event_type == "content_block_start":
            block = event.content_block
            if block.type == "text":
                events: list[StreamEvent] = [BlockStart(index=event.index, block_type="text")]
                if getattr(block, "text", ""):
                    events.append(TextDelta(index=event.index, text=block.text))
                return events
            if block.type == "tool_use":
                initial_input = block.input if isinstance(block.input, dict) else {}
                return [
                    BlockStart(
                        index=event.index,
                        block_type="tool_use",
                        tool_id=block.id,
                        tool_name=block.name,
                        initial_input=initial_input,
                    )
                ]
            logger.debug(f"Skipping content block of type {block.type}")
            return []

        if event_type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return [TextDelta(index=event.index, text=delta.text)]
            if delta.type == "input_json_delta":
                return [InputJsonDelta(index=event.index, partial_json=delta.partial_json)]
            return []

        if event_type == "content_block_stop":
            return [BlockStop(index=event.index)]

        if event_type == "message_delta":
            self.stop_reason = getattr(event.delta, "stop_reason", None) or self.stop_reason
            usage = getattr(event, "usage", None)
            if usage is None:
                return []
            return [self._usage_update(usage)]

        if event_type == "message_stop":
            return [MessageEnd(stop_reason=self.stop_reason)]

        return []

    @staticmethod
    def _usage_update(usage: Any) -> UsageUpdate:
        # message_delta usage may omit input and cache counters; None leaves them unchanged.
        return UsageUpdate(
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            cache_creation_input_tokens=getattr(usage, "cache_creation_input_tokens", None),
            cache_read_input_tokens=getattr(usage, "cache_read_input_tokens", None),
        )


class AnthropicClient:
    """Streaming Anthropic Messages API backend."""

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key
        self.config = config or AnthropicConfig()
        self.client = AsyncAnthropic(
            api_key=self.api_key,
            max_retries=self.config.max_retries,
            timeout=self.config.timeout,
        )
        self.rate_limiter = AnthropicRateLimiter(self.config.requests_per_minute, self.config.tokens_per_minute)

        # Initialize tokenizer for token estimation
        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception:
            self.tokenizer = None

    async def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a message from the Claude API.

        Args:
            messages: Conversation history
            system_prompt: System prompt for Claude
            tools: Available tools for Claude
            **kwargs: model, max_tokens and temperature overrides

        Yields:
            Stream events in the order the API delivers them
        """
        anthropic_tools = self._build_tools(tools)
        truncated_messages = self.truncate_conversation(messages, system_prompt, anthropic_tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": kwargs.get("model") or self.config.model,
            "max_tokens": kwargs.get("max_tokens") or self.config.max_tokens,
            "temperature": kwargs.get("temperature", self.config.temperature),
            "system": system_prompt,
            "messages": [msg.to_api() for msg in truncated_messages],
            "stream": True,
        }
        if anthropic_tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in anthropic_tools]

        logger.debug(
            f"Streaming message with model: {request_params['model']}, "
            f"{len(truncated_messages)} messages, {len(anthropic_tools)} tools"
        )
        stream = await self.client.messages.create(**request_params)

        adapter = AnthropicEventAdapter()
        try:
            async for raw_event in stream:
                for event in adapter.convert(raw_event):
                    yield event
        finally:
            await stream.close()

    def _build_tools(self, tools: list[LLMToolDefinition]) -> list[AnthropicTool]:
        """Convert tool descriptors, caching all definitions via the last one."""
        anthropic_tools = []
        for i, tool in enumerate(tools):
            cache_control = CacheControl() if i == len(tools) - 1 else None
            anthropic_tools.append(
                AnthropicTool(
                    name=tool.name,
                    description=tool.description,
                    input_schema=tool.input_schema,
                    cache_control=cache_control,
                )
            )
        return anthropic_tools

    @staticmethod
    def _message_text(message: LLMMessage) -> str:
        if isinstance(message.content, str):
            return message.content

        parts = []
        for block in message.content:
            if isinstance(block, TextBlock):
                parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                parts.append(block.name + json.dumps(block.input))
            elif isinstance(block, ToolResultBlock):
                parts.append(block.content)
        return "".join(parts)

    def _estimate_tokens(self, messages: list[LLMMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting.

        Args:
            messages: Conversation messages
            system_prompt: System prompt

        Returns:
            Estimated token count
        """
        text_content = system_prompt + "".join(self._message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Args:
            message: Message content

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self, messages: list[LLMMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[LLMMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        The kept history always starts at a plain user text message, so a tool
        result is never separated from the tool call it answers.

        Args:
            messages: Conversation messages
            system_prompt: System prompt
            tools: Available tools

        Returns:
            Truncated message list that fits within limits
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom

        system_tokens = self.estimate_message_tokens(system_prompt)

        tool_tokens = 0
        if tools:
            tool_content = ""
            for tool in tools:
                tool_content += tool.name + tool.description + str(tool.input_schema)
            tool_tokens = self.estimate_message_tokens(tool_content)

        available_tokens -= system_tokens + tool_tokens

        kept = 0
        current_tokens = 0
        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(self._message_text(message))
            if current_tokens + message_tokens > available_tokens:
                # Stop adding messages if we exceed the limit
                break
            current_tokens += message_tokens
            kept += 1

        start = len(messages) - kept
        while start < len(messages) and not self._is_turn_start(messages[start]):
            start += 1

        if start >= len(messages):
            # Nothing fits; send from the latest user turn and let the API decide.
            start = max((i for i, m in enumerate(messages) if self._is_turn_start(m)), default=0)

        truncated_messages = messages[start:]
        if len(truncated_messages) < len(messages):
            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages

    @staticmethod
    def _is_turn_start(message: LLMMessage) -> bool:
        return message.role == "user" and isinstance(message.content, str)
