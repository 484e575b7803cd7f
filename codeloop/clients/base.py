"""Model backend interface."""

from collections.abc import AsyncIterator
from typing import Any, Protocol

from codeloop.models.llm import LLMMessage, LLMToolDefinition
from codeloop.models.stream import StreamEvent


class ModelBackend(Protocol):
    """Interface for streaming model APIs."""

    def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        """Send a request and yield its response as stream events.

        Args:
            messages: Full conversation history for this request
            system_prompt: System prompt for the model
            tools: Tool descriptors the model may call
            **kwargs: model, max_tokens, temperature overrides

        Raises:
            Any transport or API error; the caller treats it as fatal for the request.
        """
        ...
