"""Rendering of a prompt response stream as Markdown."""

from __future__ import annotations

import json
from typing import Any, Protocol

from ai_jup.streaming.events import (
    DoneEvent,
    ErrorEvent,
    StopReason,
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
)

MISSING_SESSION_NOTICE = "\n**Tool Error:** Tools require an active kernel.\n"


class StreamRenderer(Protocol):
    """Receives decoded events and produces the visible output."""

    def handle(self, event: StreamEvent, *, open_calls: bool) -> None: ...

    def fail(self, message: str) -> None: ...

    def finalize(self) -> str: ...


def render_tool_result(event: ToolResultEvent) -> str:
    if not event.success:
        return f"\n**Tool Error:** {event.error or 'tool call failed'}\n"
    result: Any = event.result
    if result is None:
        return "\n*Tool returned no result.*\n"
    if isinstance(result, str):
        return f"\n```\n{result}\n```\n"
    try:
        body = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        body = repr(result)
    return f"\n```json\n{body}\n```\n"


class MarkdownRenderer:
    """Accumulates the Markdown shown below a prompt cell."""

    def __init__(self, *, has_session: bool = True) -> None:
        self.has_session = has_session
        self.parts: list[str] = []
        self.finalized = False
        self._final_text: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def handle(self, event: StreamEvent, *, open_calls: bool = False) -> None:
        if self.finalized:
            return
        match event:
            case TextEvent(delta=delta):
                self.parts.append(delta)
            case ToolCallEvent(name=name):
                self.parts.append(f"\n\n🔧 *Calling tool: `{name}`...*\n")
            case ToolResultEvent():
                self.parts.append(render_tool_result(event))
            case ErrorEvent(message=message):
                self.parts.append(f"\n\n**Error:** {message}\n")
            case DoneEvent(reason=StopReason.STEP_BOUND, steps=steps):
                self.parts.append(
                    f"\n\n*Stopped after {steps} tool step(s): step limit reached.*\n"
                )
            case DoneEvent():
                if open_calls and not self.has_session:
                    self.parts.append(MISSING_SESSION_NOTICE)

    def fail(self, message: str) -> None:
        """Replace the output with a connection failure message."""
        if self.finalized:
            return
        self.parts = [f"**Error:** Failed to connect to AI backend.\n\n{message}"]

    def finalize(self) -> str:
        """Finish rendering; later calls return the same text."""
        if self._final_text is None:
            self.finalized = True
            self._final_text = self.text
        return self._final_text
