"""Tests for the terminal chat interface."""

import asyncio
import io
import threading
from unittest.mock import AsyncMock, Mock, patch

import pytest
from conftest import ScriptedBackend, text_response, tool_response
from rich.console import Console

from codeloop.cli import ChatCLI, build_parser, main
from codeloop.clients.anthropic import AnthropicClient
from codeloop.models.agent import AgentConfig
from codeloop.models.stream import UsageUpdate
from codeloop.services.agent import ConversationLoop


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def chat(tmp_path, registry, output):
    """ChatCLI wired to a scripted backend."""
    with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        client = AnthropicClient()
    client.tokenizer = None
    config = AgentConfig(retain_history=True)
    console = Console(file=output, width=120, color_system=None)
    return ChatCLI(client, registry, config, tmp_path, console=console)


def use_backend(chat: ChatCLI, backend: ScriptedBackend) -> None:
    chat.loop = ConversationLoop(
        backend=backend,
        registry=chat.registry,
        config=chat.config,
        on_text=chat._print_text,
        on_event=chat._print_event,
    )


class TestChatCLI:
    """Tests for ChatCLI message handling and commands."""

    @pytest.mark.asyncio
    async def test_send_message_streams_and_records_cost(self, chat, output):
        """Test a full exchange with a tool call."""
        use_backend(
            chat,
            ScriptedBackend(
                [
                    tool_response([("toolu_1", "read_file", {"path": "a.txt"})], input_tokens=1000, output_tokens=100),
                    text_response("It says ", "hello.", input_tokens=1200, output_tokens=50),
                ]
            ),
        )

        await chat._send_message("what is in a.txt?")

        text = output.getvalue()
        assert "It says hello." in text
        assert "> read_file" in text
        assert "Total cost:" in text
        assert chat.session.message_count == 1
        assert chat.session.usage.input_tokens == 2200
        assert chat.session.total_cost > 0
        assert len(chat.loop.history) == 4

    @pytest.mark.asyncio
    async def test_failed_request_is_displayed(self, chat, output):
        """Test that a failed exchange is shown and counted."""
        use_backend(chat, ScriptedBackend([ConnectionError("network down")]))

        await chat._send_message("hello")

        assert "Request failed" in output.getvalue()
        assert "network down" in output.getvalue()
        assert chat.session.failed_messages == 1

    @pytest.mark.asyncio
    async def test_tool_failure_is_shown(self, chat, output):
        """Test that failing tool calls are summarized."""
        use_backend(
            chat,
            ScriptedBackend([tool_response([("toolu_1", "explode", {})]), text_response("Sorry.")]),
        )

        await chat._send_message("blow up")

        assert "explode failed: Tool execution failed: kaboom" in output.getvalue()

    @pytest.mark.asyncio
    async def test_oversized_message_is_rejected(self, chat, output):
        """Test that messages over the token limit never reach the model."""
        backend = ScriptedBackend([text_response("unused")])
        use_backend(chat, backend)
        chat.client.config.max_message_tokens = 10

        await chat._send_message("x" * 100)

        assert "Message exceeds token limit" in output.getvalue()
        assert backend.call_count == 0

    @pytest.mark.asyncio
    async def test_clear_command(self, chat):
        """Test that /clear forgets history and resets the session."""
        use_backend(chat, ScriptedBackend([text_response("hi")]))
        await chat._send_message("hello")
        session_id = chat.session.session_id

        chat._handle_command("/clear")

        assert chat.loop.history == []
        assert chat.session.message_count == 0
        assert chat.session.session_id != session_id

    def test_info_commands(self, chat, output):
        """Test the informational commands."""
        for command in ("/help", "/tools", "/cost", "/status", "/bogus"):
            chat._handle_command(command)

        text = output.getvalue()
        assert "Available Commands" in text
        assert "read_file" in text and "explode" in text
        assert "Session cost" in text
        assert "Max tool iterations: 10" in text
        assert "Unknown command: /bogus" in text

    @pytest.mark.asyncio
    async def test_cache_usage_is_shown_and_priced(self, chat, output):
        """Test that cached prompt tokens count toward the input total and the cost."""
        events = text_response("cached", input_tokens=12, output_tokens=5)
        events[0] = UsageUpdate(
            input_tokens=12, output_tokens=1, cache_creation_input_tokens=3000, cache_read_input_tokens=9000
        )
        use_backend(chat, ScriptedBackend([events]))

        await chat._send_message("hello")

        assert "12.0K tokens in" in output.getvalue()
        assert chat.session.usage.cache_read_input_tokens == 9000
        assert chat.session.total_cost == pytest.approx(0.014061)

        chat._handle_command("/cost")
        assert "Cache: 3.0K tokens written, 9.0K tokens read" in output.getvalue()

    def test_status_flags_unpriced_model(self, tmp_path, registry, output):
        """Test that /status notes when the model has no pricing data."""
        with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
            client = AnthropicClient()
        console = Console(file=output, width=120, color_system=None)
        chat = ChatCLI(client, registry, AgentConfig(model="mystery-model"), tmp_path, console=console)

        chat._handle_command("/status")

        assert "Model: mystery-model (no pricing data)" in output.getvalue()


class TestInteractiveLoop:
    """Tests for the prompt loop and how it ends."""

    @pytest.mark.asyncio
    async def test_end_of_input_exits(self, chat, output):
        """Test that Ctrl+D at the prompt ends the session cleanly."""
        chat.client.client = Mock(close=AsyncMock())
        with patch("codeloop.cli.Prompt.ask", side_effect=["", "/status", EOFError()]) as ask:
            await asyncio.wait_for(chat.run(), timeout=5)

        text = output.getvalue()
        assert "Status" in text
        assert "Goodbye!" in text
        assert ask.call_args.kwargs["console"] is chat.console
        chat.client.client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_quit_command_exits(self, chat, output):
        """Test that /quit leaves the loop."""
        chat.client.client = Mock(close=AsyncMock())
        with patch("codeloop.cli.Prompt.ask", side_effect=["/quit"]):
            await asyncio.wait_for(chat.run(), timeout=5)
        assert "Goodbye!" in output.getvalue()

    @pytest.mark.asyncio
    async def test_interrupt_while_waiting_for_input(self, chat, output):
        """Test that cancelling the session at the prompt returns promptly."""
        chat.client.client = Mock(close=AsyncMock())
        release = threading.Event()

        def blocking_ask(*args, **kwargs):
            release.wait(5)
            return ""

        with patch("codeloop.cli.Prompt.ask", side_effect=blocking_ask):
            task = asyncio.create_task(chat.run())
            await asyncio.sleep(0.1)
            readers = [t for t in threading.enumerate() if t.name == "codeloop-input"]

            task.cancel()
            await asyncio.wait_for(task, timeout=1)

            release.set()
            await asyncio.sleep(0.05)

        assert readers and all(reader.daemon for reader in readers)
        assert "Goodbye!" in output.getvalue()
        chat.client.client.close.assert_awaited_once()


class TestMain:
    """Tests for the command-line entry point."""

    def test_parser(self):
        """Test argument parsing."""
        args = build_parser().parse_args(["--model", "claude-3-5-haiku", "--max-iterations", "3", "--no-history"])
        assert args.model == "claude-3-5-haiku"
        assert args.max_iterations == 3
        assert args.no_history is True
        assert args.workspace == "."

    def test_missing_api_key(self, tmp_path):
        """Test that startup fails cleanly without an API key."""
        with patch.dict("os.environ", {}, clear=True):
            assert main(["--workspace", str(tmp_path)]) == 1

    def test_missing_workspace(self, tmp_path):
        """Test that a missing workspace directory is rejected."""
        assert main(["--workspace", str(tmp_path / "nope")]) == 1

    def test_log_level_choices(self):
        """Test that log levels are case-insensitive and validated."""
        assert build_parser().parse_args(["--log-level", "debug"]).log_level == "DEBUG"
        assert build_parser().parse_args([]).log_level is None
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "bogus"])
