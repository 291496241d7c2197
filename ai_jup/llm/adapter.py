"""Model stream adapter: one model turn as a stream of StreamEvents.

Consumes the chat model's chunk stream, forwards text deltas as they
arrive and merges tool call chunks by index into ToolCalls. A tool call is
announced (``ToolCallEvent``) as soon as both its id and name are known;
argument fragments seen before that are buffered and replayed right after
the announcement, so every ``ToolInputEvent`` follows its ``ToolCallEvent``.

Two upstream modes are supported:

- ``async``: the model client's native ``astream``.
- ``thread``: the blocking ``stream`` runs in a worker thread and hands
  chunks over through a bounded queue. Abandoning the turn closes the
  upstream response from the event loop side, which unblocks a worker
  stalled between chunks, and then joins the worker with a bound.

Retries happen only before the first chunk of a turn has been received;
once output has been forwarded a failure is final for the conversation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import httpx

from ai_jup.exceptions import AiJupError, UpstreamTransportFailure
from ai_jup.llm.circuit_breaker import CircuitBreaker, get_circuit_breaker
from ai_jup.streaming.events import StreamEvent, TextEvent, ToolCallEvent, ToolInputEvent
from ai_jup.tools.types import ToolCall

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator, Sequence

    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

    from ai_jup.settings import Settings

_module_logger = logging.getLogger(__name__)

StreamMode = Literal["async", "thread"]


@dataclass
class TurnResult:
    """What one model turn produced once its stream ended.

    Attributes:
        text: All text content of the turn.
        tool_calls: Completed tool calls in index order.
    """

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


def extract_text(content: Any) -> str:
    """Text of a chunk's content, which is a string or a list of blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return ""


@dataclass
class _Slot:
    raw_id: str = ""
    name: str = ""
    pending: list[str] = field(default_factory=list)
    call: ToolCall | None = None


class ToolCallAssembler:
    """Merges streamed tool call chunks by index.

    ``claim_id`` turns the provider's id into the id used for the rest of
    the conversation. It mints a fresh one when the provider's is empty or
    already taken.
    """

    def __init__(self, claim_id: Callable[[str], str], logger: logging.Logger | None = None):
        self._claim_id = claim_id
        self._slots: dict[int, _Slot] = {}
        self._log = logger or _module_logger

    def _index_for(self, chunk: dict[str, Any]) -> int:
        index = chunk.get("index")
        if isinstance(index, int):
            return index
        # No index: a new id starts a new call, anything else continues the last one
        if not self._slots:
            return 0
        last = max(self._slots)
        chunk_id = chunk.get("id")
        if chunk_id and self._slots[last].raw_id and chunk_id != self._slots[last].raw_id:
            return last + 1
        return last

    def feed(self, chunk: dict[str, Any]) -> list[StreamEvent]:
        slot = self._slots.setdefault(self._index_for(chunk), _Slot())
        if chunk.get("name") and slot.call is None:
            slot.name = chunk["name"]
        if chunk.get("id") and not slot.raw_id:
            slot.raw_id = chunk["id"]

        events: list[StreamEvent] = []
        if slot.call is None and slot.name and slot.raw_id:
            events.extend(self._open(slot))

        args = chunk.get("args")
        if args:
            if slot.call is None:
                slot.pending.append(args)
            else:
                slot.call.append(args)
                events.append(ToolInputEvent(id=slot.call.id, fragment=args))
        return events

    def _open(self, slot: _Slot) -> list[StreamEvent]:
        call = ToolCall(id=self._claim_id(slot.raw_id), name=slot.name)
        slot.call = call
        events: list[StreamEvent] = [ToolCallEvent(id=call.id, name=call.name)]
        for fragment in slot.pending:
            call.append(fragment)
            events.append(ToolInputEvent(id=call.id, fragment=fragment))
        slot.pending.clear()
        return events

    def finish(self) -> tuple[list[StreamEvent], list[ToolCall]]:
        """Close every call; announce calls whose id never arrived."""
        events: list[StreamEvent] = []
        calls: list[ToolCall] = []
        for index in sorted(self._slots):
            slot = self._slots[index]
            if slot.call is None:
                if not slot.name:
                    self._log.warning("Dropping tool call chunk %d without a name", index)
                    continue
                events.extend(self._open(slot))
            assert slot.call is not None
            slot.call.complete = True
            calls.append(slot.call)
        return events, calls


_CHUNK = "chunk"
_END = "end"
_ERROR = "error"


class UpstreamResponses:
    """Open responses of a blocking HTTP client, closable from another thread.

    Registered as an httpx ``response`` event hook, which runs once headers
    arrive and before the body is streamed.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._lock = threading.Lock()
        self._open: weakref.WeakSet[httpx.Response] = weakref.WeakSet()
        self._log = logger or _module_logger

    def track(self, response: httpx.Response) -> None:
        with self._lock:
            self._open.add(response)

    def close_all(self) -> None:
        with self._lock:
            responses = list(self._open)
            self._open.clear()
        for response in responses:
            try:
                response.close()
            except Exception:
                self._log.debug("Closing upstream response failed", exc_info=True)


class LLMStreamAdapter:
    """Streams model turns with retry, timeout and cancellation handling.

    Args:
        model: Chat model supporting ``bind_tools``, ``astream`` and ``stream``.
        provider: Provider name, keys the shared circuit breaker.
        mode: ``async`` or ``thread`` upstream consumption.
        queue_size: Maximum chunks buffered between worker thread and loop.
        turn_timeout: Seconds one model turn may take in total.
        max_retries: Attempts per turn, counting the first.
        retry_delays: Backoff before each retry.
        breaker: Circuit breaker override.
        interrupt: Closes the in-flight upstream call when a thread mode
            turn is abandoned.
        join_timeout: Seconds to wait for the worker thread after that.
        logger: Logger for this adapter.
    """

    def __init__(
        self,
        model: BaseChatModel,
        *,
        provider: str = "default",
        mode: StreamMode = "async",
        queue_size: int = 64,
        turn_timeout: float = 120.0,
        max_retries: int = 3,
        retry_delays: Sequence[float] = (1.0, 2.0, 4.0),
        breaker: CircuitBreaker | None = None,
        interrupt: Callable[[], None] | None = None,
        join_timeout: float = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if mode not in ("async", "thread"):
            raise ValueError(f"Unknown stream mode: {mode}")
        self.model = model
        self.provider = provider
        self.mode = mode
        self.queue_size = queue_size
        self.turn_timeout = turn_timeout
        self.max_retries = max(1, max_retries)
        self.retry_delays = list(retry_delays) or [0.0]
        self.breaker = breaker or get_circuit_breaker(provider)
        self.interrupt = interrupt
        self.join_timeout = join_timeout
        self._log = logger or _module_logger

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        model_name: str,
        *,
        logger: logging.Logger | None = None,
    ) -> LLMStreamAdapter:
        from ai_jup.llm.factory import get_llm, resolve_model

        _, provider = resolve_model(model_name, settings.llm_provider)
        llm_kwargs: dict[str, Any] = {}
        interrupt = None
        if settings.llm_stream_mode == "thread":
            responses = UpstreamResponses(logger=logger)
            llm_kwargs["http_client"] = httpx.Client(
                event_hooks={"response": [responses.track]}
            )
            interrupt = responses.close_all
        return cls(
            get_llm(model_name, settings=settings, **llm_kwargs),
            provider=provider,
            mode=settings.llm_stream_mode,
            queue_size=settings.llm_stream_queue_size,
            turn_timeout=settings.model_turn_timeout_seconds,
            max_retries=settings.llm_max_retries,
            retry_delays=settings.llm_retry_delays,
            interrupt=interrupt,
            logger=logger,
        )

    async def stream_turn(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[dict[str, Any]],
        *,
        claim_id: Callable[[str], str],
    ) -> AsyncIterator[StreamEvent | TurnResult]:
        """Run one model turn.

        Yields the turn's StreamEvents as they arrive, then exactly one
        TurnResult as the final item.

        Raises:
            UpstreamTransportFailure: The model API failed, timed out, or its
                circuit is open.
        """
        bound: Any = self.model.bind_tools(list(tools)) if tools else self.model
        loop = asyncio.get_running_loop()

        for attempt in range(self.max_retries):
            if not self.breaker.can_attempt():
                raise UpstreamTransportFailure(
                    f"Model provider {self.provider} is temporarily unavailable",
                    provider=self.provider,
                )

            assembler = ToolCallAssembler(claim_id, self._log)
            text_parts: list[str] = []
            received = False
            chunks = self._open_stream(bound, list(messages))
            deadline = loop.time() + self.turn_timeout
            try:
                while True:
                    try:
                        async with asyncio.timeout_at(deadline):
                            chunk = await anext(chunks)
                    except StopAsyncIteration:
                        break
                    received = True
                    for event in self._convert(chunk, assembler):
                        if isinstance(event, TextEvent):
                            text_parts.append(event.delta)
                        yield event
            except AiJupError:
                self.breaker.record_failure()
                raise
            except TimeoutError as e:
                self.breaker.record_failure()
                raise UpstreamTransportFailure(
                    f"Model turn timed out after {self.turn_timeout:.0f}s",
                    provider=self.provider,
                    timeout=True,
                ) from e
            except Exception as e:
                self.breaker.record_failure()
                if received or attempt == self.max_retries - 1:
                    self._log.error("Model stream failed for %s: %s", self.provider, e)
                    raise UpstreamTransportFailure(
                        f"Model API error: {type(e).__name__}", provider=self.provider
                    ) from e
                delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                self._log.warning(
                    "Model call failed (attempt %d/%d): %s. Retrying in %.1fs",
                    attempt + 1,
                    self.max_retries,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            finally:
                await _aclose(chunks)

            self.breaker.record_success()
            closing_events, calls = assembler.finish()
            for event in closing_events:
                yield event
            yield TurnResult(text="".join(text_parts), tool_calls=calls)
            return

    def _convert(self, chunk: Any, assembler: ToolCallAssembler) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        tool_chunks = getattr(chunk, "tool_call_chunks", None) or []
        content = getattr(chunk, "content", "")
        # String content next to tool chunks is partial JSON on some models
        if content and not (tool_chunks and isinstance(content, str)):
            text = extract_text(content)
            if text:
                events.append(TextEvent(delta=text))
        for tc_chunk in tool_chunks:
            events.extend(assembler.feed(dict(tc_chunk)))
        return events

    def _open_stream(self, bound: Any, messages: list[BaseMessage]) -> AsyncIterator[Any]:
        if self.mode == "thread":
            return self._thread_stream(bound, messages)
        return bound.astream(messages)

    async def _thread_stream(self, bound: Any, messages: list[BaseMessage]) -> AsyncIterator[Any]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        slots = threading.Semaphore(self.queue_size)
        stop = threading.Event()

        def post(kind: str, payload: Any) -> None:
            with contextlib.suppress(RuntimeError):  # loop already closed
                loop.call_soon_threadsafe(queue.put_nowait, (kind, payload))

        upstream: list[Iterator[Any]] = []

        def worker() -> None:
            iterator: Iterator[Any] | None = None
            try:
                iterator = iter(bound.stream(messages))
                upstream.append(iterator)
                for chunk in iterator:
                    while not slots.acquire(timeout=0.1):
                        if stop.is_set():
                            return
                    if stop.is_set():
                        return
                    post(_CHUNK, chunk)
                post(_END, None)
            except Exception as e:
                if not stop.is_set():
                    post(_ERROR, e)
            finally:
                close = getattr(iterator, "close", None)
                if close is not None:
                    try:
                        close()
                    except Exception:
                        self._log.debug("Closing upstream iterator failed", exc_info=True)

        thread = threading.Thread(target=worker, name="llm-stream", daemon=True)
        thread.start()
        finished = False
        try:
            while True:
                kind, payload = await queue.get()
                if kind == _CHUNK:
                    slots.release()
                    yield payload
                elif kind == _END:
                    finished = True
                    return
                else:
                    finished = True
                    raise payload
        finally:
            stop.set()
            if not finished:
                self._interrupt_upstream(upstream)
            await asyncio.to_thread(thread.join, self.join_timeout)
            if thread.is_alive():
                self._log.warning(
                    "LLM stream worker still running %.1fs after the turn ended",
                    self.join_timeout,
                )

    def _interrupt_upstream(self, upstream: list[Iterator[Any]]) -> None:
        """Unblock a worker stuck waiting on the upstream call."""
        if self.interrupt is not None:
            try:
                self.interrupt()
            except Exception:
                self._log.debug("Interrupting upstream call failed", exc_info=True)
        for iterator in upstream:
            close = getattr(iterator, "close", None)
            if close is None:
                continue
            try:
                close()
            except ValueError:
                # A generator cannot be closed while the worker is inside it
                self._log.debug("Upstream iterator busy in worker thread")
            except Exception:
                self._log.debug("Closing upstream iterator failed", exc_info=True)


async def _aclose(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
