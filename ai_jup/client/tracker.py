"""Client-side reconstruction of tool call state from stream events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ai_jup.streaming.events import (
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    ToolCallEvent,
    ToolInputEvent,
    ToolResultEvent,
)

logger = logging.getLogger(__name__)


@dataclass
class TrackedCall:
    id: str
    name: str
    fragments: list[str] = field(default_factory=list)
    result: ToolResultEvent | None = None

    @property
    def input(self) -> str:
        return "".join(self.fragments)


class ToolCallTracker:
    """Tracks open tool calls by id.

    More than one call may be open at once (a model turn can request
    several tools). ``tool_input`` fragments go to the call named by their
    ``id``, or to the most recently opened call when the frame has no id.
    A ``tool_result`` closes only its own call; a result for an id that was
    never opened is ignored.
    """

    def __init__(self) -> None:
        self._open: dict[str, TrackedCall] = {}
        self.closed: list[TrackedCall] = []

    @property
    def open_calls(self) -> list[TrackedCall]:
        return list(self._open.values())

    @property
    def has_open_calls(self) -> bool:
        return bool(self._open)

    def apply(self, event: StreamEvent) -> TrackedCall | None:
        """Update state for one event; returns the call it touched, if any."""
        match event:
            case ToolCallEvent(id=call_id, name=name):
                if call_id in self._open:
                    logger.debug("Duplicate tool_call for open id %s ignored", call_id)
                    return self._open[call_id]
                call = TrackedCall(id=call_id, name=name)
                self._open[call_id] = call
                return call
            case ToolInputEvent(id=call_id, fragment=fragment):
                call = self._open.get(call_id) if call_id else self._latest()
                if call is None:
                    logger.debug("tool_input for unknown call %r ignored", call_id)
                    return None
                call.fragments.append(fragment)
                return call
            case ToolResultEvent(id=call_id):
                call = self._open.pop(call_id, None)
                if call is None:
                    logger.debug("tool_result for unknown call %r ignored", call_id)
                    return None
                call.result = event
                self.closed.append(call)
                return call
            case DoneEvent() | ErrorEvent():
                return None
        return None

    def _latest(self) -> TrackedCall | None:
        if not self._open:
            return None
        return next(reversed(self._open.values()))
