"""Stream events and their SSE wire encoding."""

from ai_jup.streaming.decoder import parse_event_data
from ai_jup.streaming.events import (
    DoneEvent,
    ErrorEvent,
    StopReason,
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    ToolInputEvent,
    ToolResultEvent,
    from_wire,
    is_terminal,
    to_wire,
)
from ai_jup.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_event, encode_stream

__all__ = [
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "DoneEvent",
    "ErrorEvent",
    "StopReason",
    "StreamEvent",
    "TextEvent",
    "ToolCallEvent",
    "ToolInputEvent",
    "ToolResultEvent",
    "encode_event",
    "encode_stream",
    "from_wire",
    "is_terminal",
    "parse_event_data",
    "to_wire",
]
