"""Unit tests for PromptClient against a mocked SSE endpoint."""

import asyncio
import json

import httpx
import pytest

from ai_jup.client.consumer import PromptClient, PromptClientError
from ai_jup.client.render import MarkdownRenderer
from ai_jup.conversation.models import ContextBundle
from ai_jup.streaming.events import (
    DoneEvent,
    TextEvent,
    ToolCallEvent,
    ToolInputEvent,
    ToolResultEvent,
)

SSE_HEADERS = {"content-type": "text/event-stream"}


def _frames(*payloads) -> bytes:
    body = ""
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        body += f"data: {data}\n\n"
    return body.encode()


async def _in_pieces(body: bytes, size: int):
    for start in range(0, len(body), size):
        yield body[start : start + size]


def _client(handler) -> PromptClient:
    return PromptClient("http://ai.test", api_key="k", transport=httpx.MockTransport(handler))


TOOL_CONVERSATION = _frames(
    {"text": "Let me check. "},
    {"tool_call": {"id": "c1", "name": "add"}},
    {"tool_input": '{"a": 2, ', "id": "c1"},
    {"tool_input": '"b": 3}', "id": "c1"},
    {"tool_result": {"id": "c1", "success": True, "result": 5}},
    {"text": "It is 5."},
    {"done": True},
)


class TestStream:
    @pytest.mark.parametrize("piece_size", [1, 7, 4096])
    @pytest.mark.asyncio
    async def test_events_survive_arbitrary_chunking(self, piece_size):
        def handler(request):
            return httpx.Response(
                200, headers=SSE_HEADERS, content=_in_pieces(TOOL_CONVERSATION, piece_size)
            )

        events = [e async for e in _client(handler).stream("q", session_id="s1")]

        assert events == [
            TextEvent(delta="Let me check. "),
            ToolCallEvent(id="c1", name="add"),
            ToolInputEvent(id="c1", fragment='{"a": 2, '),
            ToolInputEvent(id="c1", fragment='"b": 3}'),
            ToolResultEvent(id="c1", success=True, result=5),
            TextEvent(delta="It is 5."),
            DoneEvent(),
        ]

    @pytest.mark.asyncio
    async def test_crlf_and_malformed_frames(self):
        body = b'data: {"text": "a"}\r\n\r\ndata: {not json\r\n\r\ndata: [DONE]\r\n\r\n'
        body += b': keepalive\r\n\r\ndata: {"surprise": 1}\r\n\r\ndata: {"done": true}\r\n\r\n'

        def handler(request):
            return httpx.Response(200, headers=SSE_HEADERS, content=body)

        events = [e async for e in _client(handler).stream("q")]

        assert events == [TextEvent(delta="a"), DoneEvent()]

    @pytest.mark.asyncio
    async def test_stops_at_terminal_event(self):
        def handler(request):
            return httpx.Response(
                200, headers=SSE_HEADERS, content=_frames({"done": True}, {"text": "late"})
            )

        events = [e async for e in _client(handler).stream("q")]

        assert events == [DoneEvent()]

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["api_key"] = request.headers.get("X-API-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, headers=SSE_HEADERS, content=_frames({"done": True}))

        context = ContextBundle(functions={"add": "Add."})
        [_ async for _ in _client(handler).stream("q", session_id="s1", context=context)]

        assert seen["url"] == "http://ai.test/prompt"
        assert seen["api_key"] == "k"
        assert seen["body"]["prompt"] == "q"
        assert seen["body"]["session_id"] == "s1"
        assert seen["body"]["max_steps"] == 5
        assert "add" in seen["body"]["context"]["functions"]

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(
                400, json={"error": "prompt: Field required", "type": "ValidationError"}
            )

        with pytest.raises(PromptClientError) as exc_info:
            [_ async for _ in _client(handler).stream("q")]

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_type == "ValidationError"
        assert exc_info.value.message == "prompt: Field required"

    @pytest.mark.asyncio
    async def test_error_status_without_json(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(PromptClientError, match="HTTP 502"):
            [_ async for _ in _client(handler).stream("q")]


class TestAsk:
    @pytest.mark.asyncio
    async def test_renders_markdown(self):
        def handler(request):
            return httpx.Response(
                200, headers=SSE_HEADERS, content=_in_pieces(TOOL_CONVERSATION, 5)
            )

        text = await _client(handler).ask("q", session_id="s1")

        assert text.startswith("Let me check. ")
        assert "`add`" in text
        assert "```json\n5\n```" in text
        assert text.endswith("It is 5.")

    @pytest.mark.asyncio
    async def test_error_status_is_rendered(self):
        def handler(request):
            return httpx.Response(403, json={"error": "Session not owned", "type": "Unauthorized"})

        text = await _client(handler).ask("q")

        assert text == "**Error:** Failed to connect to AI backend.\n\nSession not owned"

    @pytest.mark.asyncio
    async def test_connection_failure_is_rendered(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        text = await _client(handler).ask("q")

        assert text.startswith("**Error:** Failed to connect to AI backend.")
        assert "refused" in text

    @pytest.mark.asyncio
    async def test_abort_stops_rendering(self):
        abort = asyncio.Event()

        class AbortingRenderer(MarkdownRenderer):
            def handle(self, event, *, open_calls=False):
                super().handle(event, open_calls=open_calls)
                abort.set()

        def handler(request):
            body = _frames({"text": "first"}, {"text": "second"}, {"done": True})
            return httpx.Response(200, headers=SSE_HEADERS, content=body)

        text = await _client(handler).ask("q", renderer=AbortingRenderer(), abort=abort)

        assert text == "first"

    @pytest.mark.asyncio
    async def test_abort_releases_stalled_stream(self):
        abort = asyncio.Event()
        released = asyncio.Event()

        async def stalled_body():
            try:
                yield b'data: {"text": "hi"}\n\n'
                await asyncio.sleep(3600)
            finally:
                released.set()

        def handler(request):
            return httpx.Response(200, headers=SSE_HEADERS, content=stalled_body())

        asyncio.get_running_loop().call_later(0.2, abort.set)
        async with asyncio.timeout(2):
            text = await _client(handler).ask("q", abort=abort)

        assert text == "hi"
        assert released.is_set()

    @pytest.mark.asyncio
    async def test_abort_before_first_frame(self):
        abort = asyncio.Event()
        abort.set()

        def handler(request):
            return httpx.Response(200, headers=SSE_HEADERS, content=_frames({"text": "late"}))

        events = [e async for e in _client(handler).stream("q", abort=abort)]

        assert events == []


class TestConstruction:
    def test_rejects_other_schemes(self):
        with pytest.raises(ValueError, match="Invalid URL scheme"):
            PromptClient("ftp://ai.test")

    def test_bearer_token(self):
        client = PromptClient("https://ai.test/", token="jwt")
        assert client.base_url == "https://ai.test"
        assert client._headers == {"Authorization": "Bearer jwt"}

    def test_build_payload_omits_unset_fields(self):
        assert PromptClient.build_payload("q", max_steps=0) == {"prompt": "q", "max_steps": 0}
