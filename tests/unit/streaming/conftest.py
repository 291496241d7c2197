"""Shared fixtures for streaming module tests."""

import pytest

from ai_jup.streaming.events import (
    DoneEvent,
    TextEvent,
    ToolCallEvent,
    ToolInputEvent,
    ToolResultEvent,
)


@pytest.fixture()
def tool_round_trip_events():
    """A typical event sequence for one tool round trip and a final answer."""
    return [
        TextEvent(delta="Let me check. "),
        ToolCallEvent(id="call_1", name="add"),
        ToolInputEvent(id="call_1", fragment='{"a": 2, '),
        ToolInputEvent(id="call_1", fragment='"b": 3}'),
        ToolResultEvent(id="call_1", success=True, result=5),
        TextEvent(delta="The sum is 5."),
        DoneEvent(),
    ]


async def async_iter(items):
    """Convert a list to an async iterator."""
    for item in items:
        yield item
