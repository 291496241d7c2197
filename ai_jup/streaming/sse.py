"""Server-Sent Events encoding for stream events.

Each event becomes exactly one ``data: <json>\\n\\n`` frame. ``encode_stream``
guarantees that a response carries exactly one terminal frame (``done`` or
``error``) unless the client went away, in which case nothing more is
written and the conversation is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING

from ai_jup.exceptions import AiJupError
from ai_jup.streaming.events import ErrorEvent, StreamEvent, is_terminal, to_wire

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

_module_logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: StreamEvent) -> str:
    """Serialize one event as an SSE frame."""
    return f"data: {json.dumps(to_wire(event), ensure_ascii=False)}\n\n"


def error_frame(exc: BaseException) -> ErrorEvent:
    """Error event for an exception, without leaking internals."""
    if isinstance(exc, AiJupError):
        return ErrorEvent(message=exc.message, error_type=exc.error_type)
    if isinstance(exc, TimeoutError):
        return ErrorEvent(message="Stream timed out", error_type="UpstreamTransportFailure")
    return ErrorEvent(message="Internal error while streaming response", error_type="InternalError")


class _DisconnectWatch:
    """Polls the client connection and cancels the consumer on disconnect.

    The consuming task is only cancelled while it is waiting on the event
    source; a disconnect seen between events is picked up before the next
    frame is written.
    """

    def __init__(
        self,
        is_disconnected: Callable[[], Awaitable[bool]],
        interval: float,
        log: logging.Logger,
    ) -> None:
        self.is_disconnected = is_disconnected
        self.interval = interval
        self.fired = False
        self.busy = False
        self._log = log
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        target = asyncio.current_task()
        if target is not None:
            self._task = asyncio.create_task(self._watch(target))

    async def _watch(self, target: asyncio.Task) -> None:
        while not self.fired:
            await asyncio.sleep(self.interval)
            try:
                gone = await self.is_disconnected()
            except Exception:
                self._log.debug("Disconnect check failed", exc_info=True)
                continue
            if gone:
                self.fired = True
                if self.busy:
                    target.cancel()

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


async def _aclose(events: AsyncIterator[StreamEvent]) -> None:
    aclose = getattr(events, "aclose", None)
    if aclose is not None:
        await aclose()


async def encode_stream(
    events: AsyncIterator[StreamEvent],
    *,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    poll_interval: float = 0.5,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> AsyncIterator[str]:
    """Encode a stream of events as SSE frames.

    Args:
        events: Conversation event source. It is closed when encoding stops
            for any reason, which cancels the conversation behind it.
        is_disconnected: Async check of the client connection, typically
            ``request.is_disconnected``.
        poll_interval: Seconds between disconnect checks.
        timeout: Overall bound on time spent waiting for events.
        logger: Logger for stream lifecycle messages.

    Yields:
        SSE frames, ending with exactly one terminal frame unless the
        client disconnected.
    """
    log = logger or _module_logger
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None
    watch = _DisconnectWatch(is_disconnected, poll_interval, log) if is_disconnected else None
    if watch is not None:
        watch.start()

    terminal: StreamEvent | None = None
    try:
        while True:
            if watch is not None:
                watch.busy = True
            try:
                async with asyncio.timeout_at(deadline):
                    event = await anext(events)
            except StopAsyncIteration:
                break
            finally:
                if watch is not None:
                    watch.busy = False

            if watch is not None and watch.fired:
                log.info("Client disconnected, dropping remaining events")
                return

            if is_terminal(event):
                terminal = event
                yield encode_event(event)
                break
            yield encode_event(event)

        if terminal is None:
            log.warning("Event source ended without a terminal event")
            yield encode_event(
                ErrorEvent(message="Stream ended unexpectedly", error_type="InternalError")
            )
    except asyncio.CancelledError:
        if watch is None or not watch.fired:
            raise
        task = asyncio.current_task()
        if task is not None:
            task.uncancel()
        log.info("Client disconnected, conversation cancelled")
    except TimeoutError as e:
        log.warning("Stream exceeded %.0fs, terminating", timeout or 0)
        yield encode_event(error_frame(e))
    except Exception as e:
        log.exception("Stream failed")
        yield encode_event(error_frame(e))
    finally:
        if watch is not None:
            await watch.stop()
        await _aclose(events)
