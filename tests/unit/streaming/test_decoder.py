"""Unit tests for SSE frame payload decoding."""

import pytest

from ai_jup.streaming.decoder import parse_event_data
from ai_jup.streaming.events import DoneEvent, TextEvent, ToolCallEvent


def test_parses_text_frame():
    assert parse_event_data('{"text": "Hello"}') == TextEvent(delta="Hello")


def test_parses_tool_call_frame():
    assert parse_event_data('{"tool_call": {"id": "c1", "name": "add"}}') == ToolCallEvent(
        id="c1", name="add"
    )


def test_parses_done_frame():
    assert parse_event_data('{"done": true}') == DoneEvent()


@pytest.mark.parametrize("data", ["", "[DONE]"])
def test_sentinels_are_skipped(data):
    assert parse_event_data(data) is None


@pytest.mark.parametrize("data", ['{"text": "unterminated', "not json", "{'text': 1}"])
def test_malformed_json_is_skipped(data):
    assert parse_event_data(data) is None


def test_unknown_shape_is_skipped():
    assert parse_event_data('{"heartbeat": 1}') is None
