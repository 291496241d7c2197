"""HTTP client for the prompt endpoint.

Sends a prompt request and consumes the SSE response incrementally,
reconstructing tool call state and feeding a renderer as events arrive.

Usage::

    client = PromptClient("http://localhost:8000/api/v1", api_key="...")
    markdown = await client.ask("What is $x?", context=bundle, session_id=sid)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx
from httpx_sse import aconnect_sse

from ai_jup.client.render import MarkdownRenderer
from ai_jup.client.tracker import ToolCallTracker
from ai_jup.streaming.decoder import parse_event_data
from ai_jup.streaming.events import is_terminal

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from httpx_sse import ServerSentEvent

    from ai_jup.client.render import StreamRenderer
    from ai_jup.conversation.models import ContextBundle
    from ai_jup.streaming.events import StreamEvent

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0
_STREAM_TIMEOUT = 900.0
DEFAULT_MAX_STEPS = 5


class PromptClientError(Exception):
    """The server rejected a prompt request before streaming began."""

    def __init__(self, message: str, *, status_code: int, error_type: str | None = None):
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(message)


def _error_message(response: httpx.Response) -> tuple[str, str | None]:
    message = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        return message, None
    if isinstance(body, dict) and body.get("error"):
        error_type = body.get("type")
        return str(body["error"]), error_type if isinstance(error_type, str) else None
    return message, None


class PromptClient:
    """Streams prompt responses from an ai-jup server.

    Args:
        base_url: API root, e.g. ``http://localhost:8000/api/v1``.
        api_key: Sent as ``X-API-Key`` when set.
        token: JWT sent as a bearer token when set.
        timeout: Read timeout for the stream.
        transport: Optional httpx transport (tests).
    """

    _ALLOWED_SCHEMES = {"http", "https"}

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        token: str | None = None,
        timeout: float = _STREAM_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme not in self._ALLOWED_SCHEMES:
            msg = f"Invalid URL scheme '{parsed.scheme}'. Only {self._ALLOWED_SCHEMES} allowed."
            raise ValueError(msg)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers: dict[str, str] = {}
        if api_key:
            self._headers["X-API-Key"] = api_key
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            headers=self._headers,
            transport=self._transport,
        )

    @staticmethod
    def build_payload(
        prompt: str,
        *,
        model: str | None = None,
        session_id: str | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        context: ContextBundle | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": prompt, "max_steps": max_steps}
        if model:
            payload["model"] = model
        if session_id:
            payload["session_id"] = session_id
        if context is not None:
            payload["context"] = context.model_dump(mode="json", exclude_none=True)
        return payload

    async def stream(
        self,
        prompt: str,
        *,
        model: str | None = None,
        session_id: str | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        context: ContextBundle | None = None,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a prompt and yield events as they are decoded.

        Stops after the terminal event, when the server closes the stream,
        or as soon as ``abort`` is set. Aborting releases the connection
        and is not an error.

        Raises:
            PromptClientError: The server answered with an error status.
            httpx.TransportError: The connection failed.
        """
        payload = self.build_payload(
            prompt, model=model, session_id=session_id, max_steps=max_steps, context=context
        )
        async with self._client() as client, aconnect_sse(
            client, "POST", f"{self.base_url}/prompt", json=payload
        ) as event_source:
            response = event_source.response
            if response.status_code != 200:
                await response.aread()
                message, error_type = _error_message(response)
                raise PromptClientError(
                    message, status_code=response.status_code, error_type=error_type
                )

            events = event_source.aiter_sse()
            try:
                while True:
                    sse = await self._next_or_abort(events, abort)
                    if sse is None:
                        return
                    event = parse_event_data(sse.data)
                    if event is None:
                        continue
                    yield event
                    if is_terminal(event):
                        return
            finally:
                await events.aclose()

    @staticmethod
    async def _next_or_abort(
        events: AsyncIterator[ServerSentEvent], abort: asyncio.Event | None
    ) -> ServerSentEvent | None:
        """Wait for the next SSE, or None once the stream ends or ``abort`` is set."""
        if abort is None:
            return await anext(events, None)
        if abort.is_set():
            logger.debug("Prompt stream aborted by caller")
            return None
        read = asyncio.ensure_future(anext(events, None))
        aborted = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({read, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not read.done():
                read.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await read
        if read.cancelled():
            logger.debug("Prompt stream aborted by caller")
            return None
        return read.result()

    async def ask(
        self,
        prompt: str,
        *,
        model: str | None = None,
        session_id: str | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        context: ContextBundle | None = None,
        renderer: StreamRenderer | None = None,
        abort: asyncio.Event | None = None,
    ) -> str:
        """Send a prompt and return the rendered Markdown answer."""
        renderer = renderer or MarkdownRenderer(has_session=session_id is not None)
        tracker = ToolCallTracker()
        events = self.stream(
            prompt,
            model=model,
            session_id=session_id,
            max_steps=max_steps,
            context=context,
            abort=abort,
        )
        try:
            async for event in events:
                tracker.apply(event)
                renderer.handle(event, open_calls=tracker.has_open_calls)
        except PromptClientError as e:
            renderer.fail(e.message)
        except httpx.HTTPError as e:
            logger.warning("Prompt stream failed: %s", e)
            renderer.fail(str(e) or type(e).__name__)
        finally:
            await events.aclose()
        return renderer.finalize()
