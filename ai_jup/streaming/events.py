"""Stream event types for the prompt pipeline.

``StreamEvent`` is a closed union of frozen dataclasses. The conversation
loop yields them, the SSE encoder serializes them with ``to_wire`` and the
client decodes them with ``from_wire``. Both conversion sites handle every
variant explicitly.

Wire shapes (one JSON object per frame)::

    {"text": "..."}
    {"tool_call": {"id": "...", "name": "..."}}
    {"tool_input": "<fragment>", "id": "..."}
    {"tool_result": {"id": "...", "success": true, "result": ...}}
    {"error": "...", "type": "UpstreamTransportFailure"}
    {"done": true}
    {"done": true, "steps": 2}
    {"done": true, "reason": "step_bound", "steps": 3}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class StopReason(StrEnum):
    """Why a conversation finished normally."""

    COMPLETED = "completed"
    STEP_BOUND = "step_bound"


@dataclass(frozen=True)
class TextEvent:
    delta: str

    def __post_init__(self) -> None:
        if not self.delta:
            raise ValueError("TextEvent delta must not be empty")


@dataclass(frozen=True)
class ToolCallEvent:
    id: str
    name: str


@dataclass(frozen=True)
class ToolInputEvent:
    id: str
    fragment: str


@dataclass(frozen=True)
class ToolResultEvent:
    """Result of one tool call; ``result`` on success, ``error`` otherwise."""

    id: str
    success: bool
    result: Any = None
    error: str | None = None
    error_type: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    error_type: str | None = None


@dataclass(frozen=True)
class DoneEvent:
    """Normal termination; ``STEP_BOUND`` is distinct from model completion."""

    reason: StopReason = StopReason.COMPLETED
    steps: int | None = None


StreamEvent = TextEvent | ToolCallEvent | ToolInputEvent | ToolResultEvent | ErrorEvent | DoneEvent


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


def to_wire(event: StreamEvent) -> dict[str, Any]:
    """Serialize an event to its wire object."""
    match event:
        case TextEvent(delta=delta):
            return {"text": delta}
        case ToolCallEvent(id=call_id, name=name):
            return {"tool_call": {"id": call_id, "name": name}}
        case ToolInputEvent(id=call_id, fragment=fragment):
            return {"tool_input": fragment, "id": call_id}
        case ToolResultEvent(id=call_id, success=True, result=result):
            return {"tool_result": {"id": call_id, "success": True, "result": result}}
        case ToolResultEvent(id=call_id, error=error, error_type=error_type):
            body: dict[str, Any] = {"id": call_id, "success": False, "error": error}
            if error_type:
                body["error_type"] = error_type
            return {"tool_result": body}
        case ErrorEvent(message=message, error_type=error_type):
            wire: dict[str, Any] = {"error": message}
            if error_type:
                wire["type"] = error_type
            return wire
        case DoneEvent(reason=StopReason.COMPLETED, steps=None):
            return {"done": True}
        case DoneEvent(reason=StopReason.COMPLETED, steps=steps):
            return {"done": True, "steps": steps}
        case DoneEvent(reason=reason, steps=steps):
            return {"done": True, "reason": str(reason), "steps": steps}
    raise TypeError(f"Not a stream event: {event!r}")


def _tool_result_from_wire(body: Any) -> ToolResultEvent | None:
    if not isinstance(body, dict) or not isinstance(body.get("id"), str):
        return None
    # Older servers sent only {"id", "result"}; treat that as success
    success = body.get("success", "error" not in body)
    if success is True:
        return ToolResultEvent(id=body["id"], success=True, result=body.get("result"))
    error = body.get("error")
    error_type = body.get("error_type")
    return ToolResultEvent(
        id=body["id"],
        success=False,
        error=str(error) if error is not None else None,
        error_type=error_type if isinstance(error_type, str) else None,
    )


def from_wire(data: Any) -> StreamEvent | None:
    """Decode a wire object; unknown or malformed shapes return None.

    Known keys are checked in a fixed order and any other top-level key is
    ignored, so newer servers can add fields without breaking clients.
    """
    if not isinstance(data, dict):
        return None

    if isinstance(data.get("text"), str) and data["text"]:
        return TextEvent(delta=data["text"])

    if isinstance(data.get("error"), (str, dict)):
        error_type = data.get("type")
        error = data["error"]
        if isinstance(error, dict):
            # OpenAI-style {"error": {"message": ..., "type": ...}}
            error_type = error.get("type", error_type)
            error = error.get("message", "")
        return ErrorEvent(
            message=str(error),
            error_type=error_type if isinstance(error_type, str) else None,
        )

    if data.get("done") is True:
        steps = data.get("steps")
        if data.get("reason") == StopReason.STEP_BOUND:
            reason = StopReason.STEP_BOUND
        else:
            reason = StopReason.COMPLETED
        return DoneEvent(
            reason=reason,
            steps=steps if isinstance(steps, int) and not isinstance(steps, bool) else None,
        )

    tool_call = data.get("tool_call")
    if tool_call is not None:
        if (
            isinstance(tool_call, dict)
            and isinstance(tool_call.get("id"), str)
            and isinstance(tool_call.get("name"), str)
        ):
            return ToolCallEvent(id=tool_call["id"], name=tool_call["name"])
        return None

    if isinstance(data.get("tool_input"), str):
        call_id = data.get("id")
        return ToolInputEvent(
            id=call_id if isinstance(call_id, str) else "",
            fragment=data["tool_input"],
        )

    if "tool_result" in data:
        return _tool_result_from_wire(data["tool_result"])

    return None
