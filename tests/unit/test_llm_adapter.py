"""Unit tests for LLMStreamAdapter: deltas, tool call assembly, retries and cleanup."""

import asyncio
import threading

import pytest
from langchain_core.messages import AIMessageChunk, HumanMessage

from ai_jup.conversation.state import ConversationState
from ai_jup.exceptions import UpstreamTransportFailure
from ai_jup.llm.adapter import LLMStreamAdapter, ToolCallAssembler, TurnResult, extract_text
from ai_jup.llm.circuit_breaker import CircuitBreaker
from ai_jup.streaming.events import TextEvent, ToolCallEvent, ToolInputEvent
from tests.helpers.doubles import (
    Pause,
    ScriptedChatModel,
    collect,
    make_adapter,
    make_tool_call_chunk,
    text_chunk,
)

MESSAGES = [HumanMessage(content="hi")]
TOOLS = [{"type": "function", "function": {"name": "add", "parameters": {"type": "object"}}}]


def _split(items):
    *events, result = items
    assert isinstance(result, TurnResult)
    return events, result


async def _turn(adapter, tools=(), state=None):
    state = state or ConversationState()
    stream = adapter.stream_turn(MESSAGES, list(tools), claim_id=state.claim_id)
    return _split(await collect(stream))


class StalledStream:
    """Blocking chunk iterator that hangs after its first chunk until closed."""

    def __init__(self):
        self.closed = threading.Event()
        self.exited = threading.Event()
        self._sent = False

    def __iter__(self):
        return self

    def __next__(self):
        if not self._sent:
            self._sent = True
            return text_chunk("a")
        self.closed.wait(10)
        self.exited.set()
        raise StopIteration

    def close(self):
        self.closed.set()


class StalledChatModel(ScriptedChatModel):
    def __init__(self):
        super().__init__([])
        self.upstream = StalledStream()

    def stream(self, messages):
        return self.upstream


class TestExtractText:
    def test_string(self):
        assert extract_text("abc") == "abc"

    def test_content_blocks(self):
        blocks = [{"type": "text", "text": "a"}, {"type": "tool_use", "id": "x"}, "b"]
        assert extract_text(blocks) == "ab"

    def test_other(self):
        assert extract_text(None) == ""


class TestTextStreaming:
    @pytest.mark.parametrize("mode", ["async", "thread"])
    @pytest.mark.asyncio
    async def test_deltas_forwarded_in_order(self, mode):
        model = ScriptedChatModel([[text_chunk("Hel"), text_chunk(""), text_chunk("lo")]])

        events, result = await _turn(make_adapter(model, mode=mode))

        assert events == [TextEvent(delta="Hel"), TextEvent(delta="lo")]
        assert result.text == "Hello"
        assert result.tool_calls == []
        assert model.bound_tools is None

    @pytest.mark.asyncio
    async def test_tools_are_bound_when_offered(self):
        model = ScriptedChatModel([[text_chunk("ok")]])
        await _turn(make_adapter(model), tools=TOOLS)
        assert model.bound_tools == TOOLS

    @pytest.mark.asyncio
    async def test_content_block_chunks(self):
        model = ScriptedChatModel([[AIMessageChunk(content=[{"type": "text", "text": "hi"}])]])
        events, _ = await _turn(make_adapter(model))
        assert events == [TextEvent(delta="hi")]

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            LLMStreamAdapter(ScriptedChatModel([]), mode="process")  # type: ignore[arg-type]


class TestToolCallAssembly:
    @pytest.mark.parametrize("mode", ["async", "thread"])
    @pytest.mark.asyncio
    async def test_fragments_follow_announcement(self, mode):
        model = ScriptedChatModel(
            [
                [
                    text_chunk("Checking. "),
                    make_tool_call_chunk("add", '{"a": 2, ', "call_x", 0),
                    make_tool_call_chunk(None, '"b": 3}', None, 0),
                ]
            ]
        )

        events, result = await _turn(make_adapter(model, mode=mode), tools=TOOLS)

        assert events == [
            TextEvent(delta="Checking. "),
            ToolCallEvent(id="call_x", name="add"),
            ToolInputEvent(id="call_x", fragment='{"a": 2, '),
            ToolInputEvent(id="call_x", fragment='"b": 3}'),
        ]
        [call] = result.tool_calls
        assert call.complete
        assert call.decode_input() == {"a": 2, "b": 3}
        assert result.text == "Checking. "

    @pytest.mark.asyncio
    async def test_fragments_before_id_are_buffered(self):
        model = ScriptedChatModel(
            [
                [
                    make_tool_call_chunk("add", '{"a"', None, 0),
                    make_tool_call_chunk(None, ": 1}", "call_y", 0),
                ]
            ]
        )

        events, result = await _turn(make_adapter(model), tools=TOOLS)

        assert events == [
            ToolCallEvent(id="call_y", name="add"),
            ToolInputEvent(id="call_y", fragment='{"a"'),
            ToolInputEvent(id="call_y", fragment=": 1}"),
        ]
        assert result.tool_calls[0].raw_input == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_several_calls_in_one_turn(self):
        model = ScriptedChatModel(
            [
                [
                    make_tool_call_chunk("f", "{}", "dup", 0),
                    make_tool_call_chunk("g", "{}", "dup", 1),
                    make_tool_call_chunk("h", "{}", None, 2),
                ]
            ]
        )

        events, result = await _turn(make_adapter(model), tools=TOOLS)

        ids = [call.id for call in result.tool_calls]
        assert [call.name for call in result.tool_calls] == ["f", "g", "h"]
        assert ids[0] == "dup"
        assert len(set(ids)) == 3
        announced = [e.id for e in events if isinstance(e, ToolCallEvent)]
        assert announced == ids

    @pytest.mark.asyncio
    async def test_nameless_call_is_dropped(self):
        model = ScriptedChatModel([[make_tool_call_chunk(None, "{}", "x", 0)]])
        events, result = await _turn(make_adapter(model), tools=TOOLS)
        assert events == []
        assert result.tool_calls == []

    def test_chunks_without_index(self):
        state = ConversationState()
        assembler = ToolCallAssembler(state.claim_id)
        assembler.feed({"name": "f", "id": "a", "args": "{", "index": None})
        assembler.feed({"args": "}", "index": None})
        assembler.feed({"name": "g", "id": "b", "args": "{}", "index": None})

        _, calls = assembler.finish()

        assert [(c.id, c.raw_input) for c in calls] == [("a", "{}"), ("b", "{}")]


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_before_first_chunk(self):
        model = ScriptedChatModel([[RuntimeError("connect failed")], [text_chunk("ok")]])

        events, result = await _turn(make_adapter(model, max_retries=3))

        assert events == [TextEvent(delta="ok")]
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_no_retry_after_output(self):
        model = ScriptedChatModel(
            [[text_chunk("partial"), RuntimeError("reset")], [text_chunk("x")]]
        )
        adapter = make_adapter(model, max_retries=3)
        seen = []

        with pytest.raises(UpstreamTransportFailure, match="Model API error: RuntimeError"):
            async for item in adapter.stream_turn(MESSAGES, [], claim_id=str):
                seen.append(item)

        assert seen == [TextEvent(delta="partial")]
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        model = ScriptedChatModel([[RuntimeError("a")], [RuntimeError("b")]])

        with pytest.raises(UpstreamTransportFailure) as exc_info:
            await _turn(make_adapter(model, max_retries=2))

        assert exc_info.value.provider == "test"
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        breaker.record_failure()
        model = ScriptedChatModel([[text_chunk("never")]])

        with pytest.raises(UpstreamTransportFailure, match="temporarily unavailable"):
            await _turn(make_adapter(model, breaker=breaker))

        assert model.calls == []

    @pytest.mark.asyncio
    async def test_failures_feed_breaker(self):
        breaker = CircuitBreaker("test", failure_threshold=5)
        model = ScriptedChatModel([[RuntimeError("a")], [text_chunk("ok")]])

        await _turn(make_adapter(model, breaker=breaker))

        assert breaker.failure_count == 0


class TestTimeoutsAndCleanup:
    @pytest.mark.parametrize("mode", ["async", "thread"])
    @pytest.mark.asyncio
    async def test_turn_timeout(self, mode):
        model = ScriptedChatModel([[text_chunk("a"), Pause(0.5), text_chunk("b")]])

        with pytest.raises(UpstreamTransportFailure) as exc_info:
            await _turn(make_adapter(model, mode=mode, turn_timeout=0.05, max_retries=1))

        assert exc_info.value.timeout

    @pytest.mark.asyncio
    async def test_abandoned_async_turn_closes_upstream(self):
        model = ScriptedChatModel([[text_chunk("a"), Pause(10), text_chunk("b")]])
        stream = make_adapter(model).stream_turn(MESSAGES, [], claim_id=str)

        assert await anext(stream) == TextEvent(delta="a")
        await stream.aclose()

        assert model.closed == 1

    @pytest.mark.asyncio
    async def test_abandoned_thread_turn_stops_worker(self):
        model = ScriptedChatModel(
            [[text_chunk("a"), Pause(0.05), text_chunk("b"), Pause(0.05), text_chunk("c")]]
        )
        stream = make_adapter(model, mode="thread", queue_size=1).stream_turn(
            MESSAGES, [], claim_id=str
        )

        assert await anext(stream) == TextEvent(delta="a")
        await stream.aclose()

        async with asyncio.timeout(2):
            while model.closed == 0:
                await asyncio.sleep(0.01)
        assert model.closed == 1

    @pytest.mark.asyncio
    async def test_abandoned_thread_turn_closes_stalled_upstream(self):
        model = StalledChatModel()
        stream = make_adapter(model, mode="thread").stream_turn(MESSAGES, [], claim_id=str)

        assert await anext(stream) == TextEvent(delta="a")
        async with asyncio.timeout(1):
            await stream.aclose()

        assert model.upstream.closed.is_set()
        assert model.upstream.exited.is_set()

    @pytest.mark.asyncio
    async def test_interrupt_called_only_when_abandoned(self):
        interrupted = []
        model = ScriptedChatModel([[text_chunk("a")], [text_chunk("b"), Pause(0.3)]])
        adapter = make_adapter(model, mode="thread", interrupt=lambda: interrupted.append(1))

        await _turn(adapter)
        assert interrupted == []

        stream = adapter.stream_turn(MESSAGES, [], claim_id=str)
        assert await anext(stream) == TextEvent(delta="b")
        await stream.aclose()
        assert interrupted == [1]

    @pytest.mark.asyncio
    async def test_thread_mode_error(self):
        model = ScriptedChatModel([[RuntimeError("boom")]])

        with pytest.raises(UpstreamTransportFailure):
            await _turn(make_adapter(model, mode="thread", max_retries=1))
