"""Decoding of SSE frame payloads into stream events.

Line framing (partial reads, CRLF endings, multi-line fields) is handled by
``httpx_sse``; this module only turns one frame's ``data`` into an event.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from ai_jup.streaming.events import from_wire

if TYPE_CHECKING:
    from ai_jup.streaming.events import StreamEvent

logger = logging.getLogger(__name__)


def parse_event_data(data: str) -> StreamEvent | None:
    """Parse a frame's data field into an event.

    Empty payloads, the ``[DONE]`` sentinel, malformed JSON and unknown
    shapes return None; a bad frame never aborts the stream.
    """
    if not data or data == "[DONE]":
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed SSE frame: %.80s", data)
        return None
    return from_wire(payload)
