"""Per-request conversation state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from langchain_core.messages import BaseMessage


class LoopState(StrEnum):
    """Conversation loop states."""

    IDLE = "idle"
    CALLING_MODEL = "calling_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({LoopState.DONE, LoopState.FAILED})


@dataclass
class ConversationState:
    """Mutable state owned by exactly one ConversationLoop.

    Attributes:
        conversation_id: Identifier used in logs.
        messages: Model history (system, user, assistant and tool turns).
        steps: Steps consumed so far.
        in_flight: Tool call ids announced but not yet answered.
        seen_ids: Every tool call id used in this conversation.
    """

    conversation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    messages: list[BaseMessage] = field(default_factory=list)
    steps: int = 0
    in_flight: set[str] = field(default_factory=set)
    seen_ids: set[str] = field(default_factory=set)

    def claim_id(self, proposed: str) -> str:
        """Reserve a tool call id, minting a fresh one if needed.

        The model's id is kept unless it is empty or was already used in
        this conversation. Ids are never reused.
        """
        call_id = proposed
        while not call_id or call_id in self.seen_ids:
            call_id = f"call_{uuid.uuid4().hex[:16]}"
        self.seen_ids.add(call_id)
        return call_id
