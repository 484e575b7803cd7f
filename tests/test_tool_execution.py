"""Tests for tool execution and the tools registry."""

import asyncio
import random

import pytest
from conftest import EmptyInput, PathInput, make_tool

from codeloop.models.agent import LoopEvent
from codeloop.models.tools import ToolFailure, ToolInvocationRequest, ToolSuccess
from codeloop.services.tool_execution import ToolExecutionStage
from codeloop.tools.registry import ToolsRegistry


def request(tool_id: str, name: str, raw: str, index: int = 0) -> ToolInvocationRequest:
    req = ToolInvocationRequest(id=tool_id, name=name, index=index)
    req.append_fragment(raw)
    req.finalize()
    return req


class TestToolExecutionStage:
    """Tests for ToolExecutionStage."""

    @pytest.mark.asyncio
    async def test_successful_invocation(self, registry, read_calls):
        """Test that a valid call maps to a success outcome."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run([request("toolu_1", "read_file", '{"path": "a.txt"}')])

        assert len(outcomes) == 1
        assert outcomes[0].invocation_id == "toolu_1"
        assert outcomes[0].success is True
        assert outcomes[0].output == "hello"
        assert read_calls == [{"path": "a.txt"}]

    @pytest.mark.asyncio
    async def test_parse_error_short_circuits(self, registry, read_calls):
        """Test that a request with malformed input is never executed."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run([request("toolu_1", "read_file", '{"path": ')])

        assert outcomes[0].success is False
        assert "Could not parse tool input" in outcomes[0].error
        assert read_calls == []

    @pytest.mark.asyncio
    async def test_malformed_input_does_not_affect_siblings(self, registry, read_calls):
        """Test that one malformed request yields one failure and the rest run."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run(
            [
                request("toolu_1", "read_file", '{"path": "a.txt"}', 0),
                request("toolu_2", "read_file", '{"path": "b.txt"', 1),
                request("toolu_3", "read_file", '{"path": "c.txt"}', 2),
            ]
        )

        assert [o.success for o in outcomes] == [True, False, True]
        assert read_calls == [{"path": "a.txt"}, {"path": "c.txt"}]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        """Test that an unknown tool name is a not-found failure."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run([request("toolu_1", "frobnicate", "{}")])

        assert outcomes[0].success is False
        assert "not found" in outcomes[0].error

    @pytest.mark.asyncio
    async def test_handler_exception(self, registry):
        """Test that a raising handler becomes a failure carrying its message."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run([request("toolu_1", "explode", "{}")])

        assert outcomes[0].success is False
        assert "kaboom" in outcomes[0].error

    @pytest.mark.asyncio
    async def test_handler_failure_result(self, registry):
        """Test that a handler's own failure result is passed through."""
        stage = ToolExecutionStage(registry)
        outcomes = await stage.run([request("toolu_1", "read_file", '{"path": "missing.txt"}')])

        assert outcomes[0].success is False
        assert outcomes[0].error == "File not found: missing.txt"

    @pytest.mark.asyncio
    async def test_outcomes_follow_request_order_not_completion_order(self):
        """Test that outcomes keep request order under random handler latencies."""
        rng = random.Random(7)
        delays = {f"toolu_{i}": rng.uniform(0, 0.02) for i in range(8)}
        running = 0
        max_running = 0

        async def slow(params: PathInput):
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(delays[params.path])
            running -= 1
            return ToolSuccess(content=params.path)

        stage = ToolExecutionStage(ToolsRegistry([make_tool("slow", slow)]))
        requests = [request(tool_id, "slow", f'{{"path": "{tool_id}"}}', i) for i, tool_id in enumerate(delays)]

        outcomes = await stage.run(requests)

        assert [o.invocation_id for o in outcomes] == list(delays)
        assert [o.output for o in outcomes] == list(delays)
        assert max_running == 1

        message = stage.to_result_message(outcomes)
        assert message.role == "tool_result"
        assert [block.tool_use_id for block in message.content] == list(delays)

    @pytest.mark.asyncio
    async def test_emits_trace_events(self, registry):
        """Test that tool start and end are reported to the event handler."""
        events: list[LoopEvent] = []
        stage = ToolExecutionStage(registry, on_event=events.append)
        await stage.run([request("toolu_1", "explode", "{}")], iteration=3)

        assert [event.kind for event in events] == ["tool_start", "tool_end"]
        assert all(event.iteration == 3 for event in events)
        assert events[1].detail["success"] is False

    def test_result_message_marks_errors(self):
        """Test the serialized tool-result blocks."""
        from codeloop.models.tools import ToolExecutionOutcome

        message = ToolExecutionStage.to_result_message(
            [
                ToolExecutionOutcome(invocation_id="a", tool_name="x", success=True, output="ok"),
                ToolExecutionOutcome(invocation_id="b", tool_name="y", success=False, error="bad"),
            ]
        )
        assert message.content[0].is_error is False
        assert message.content[0].content == "ok"
        assert message.content[1].is_error is True
        assert message.content[1].content == "Error: bad"
        assert message.to_api()["role"] == "user"


class TestToolsRegistry:
    """Tests for ToolsRegistry."""

    def test_duplicate_registration_rejected(self, registry):
        """Test that tool names are unique."""
        with pytest.raises(ValueError, match="already registered"):
            registry.register_tool(make_tool("read_file", lambda params: None))

    def test_tool_definitions(self, registry):
        """Test descriptor export."""
        definitions = registry.get_tool_definitions()
        assert [d.name for d in definitions] == ["read_file", "explode"]
        assert definitions[0].input_schema["properties"]["path"]["type"] == "string"
        assert registry.has_tool("explode")
        assert not registry.has_tool("frobnicate")

    @pytest.mark.asyncio
    async def test_invalid_input_is_a_failure(self, registry, read_calls):
        """Test that schema validation errors are returned, not raised."""
        result = await registry.execute("read_file", {"wrong": 1})
        assert isinstance(result, ToolFailure)
        assert "Invalid input for read_file" in result.error
        assert read_calls == []

    @pytest.mark.asyncio
    async def test_non_object_input_is_a_failure(self, registry):
        """Test that non-object tool input is rejected."""
        result = await registry.execute("read_file", ["a.txt"])
        assert isinstance(result, ToolFailure)
        assert "must be a JSON object" in result.error

    @pytest.mark.asyncio
    async def test_plain_string_result_is_success(self):
        """Test that handlers returning plain text are treated as success."""

        async def plain(params: EmptyInput):
            return "done"

        result = await ToolsRegistry([make_tool("plain", plain, EmptyInput)]).execute("plain", {})
        assert result == ToolSuccess(content="done")
