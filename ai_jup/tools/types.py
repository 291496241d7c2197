"""Tool call and tool result types shared by the loop and the dispatcher."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolCall:
    """A model-issued tool call, assembled from streamed input fragments.

    Attributes:
        id: Identifier unique within the conversation.
        name: Tool (function) name requested by the model.
        fragments: Raw JSON input fragments in arrival order.
        complete: Set once the model's tool-use block has ended.
    """

    id: str
    name: str
    fragments: list[str] = field(default_factory=list)
    complete: bool = False

    def append(self, fragment: str) -> None:
        if self.complete:
            raise RuntimeError(f"Tool call {self.id} is already complete")
        self.fragments.append(fragment)

    @property
    def raw_input(self) -> str:
        return "".join(self.fragments)

    def decode_input(self) -> Any:
        """Parse the accumulated input as one JSON document.

        An empty buffer means "no arguments" and decodes to ``{}``.

        Raises:
            json.JSONDecodeError: The buffer is not valid JSON.
        """
        raw = self.raw_input.strip()
        if not raw:
            return {}
        return json.loads(raw)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call.

    Exactly one of ``payload`` (on success) or ``error`` (on failure) is
    meaningful. ``error_type`` names the failure class from the error
    taxonomy (UnknownTool, InvalidArguments, ExecutionFailure).
    """

    call_id: str
    success: bool
    payload: Any = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def ok(cls, call_id: str, payload: Any) -> ToolResult:
        return cls(call_id=call_id, success=True, payload=payload)

    @classmethod
    def failed(cls, call_id: str, error: str, error_type: str) -> ToolResult:
        return cls(call_id=call_id, success=False, error=error, error_type=error_type)

    def as_model_content(self) -> str:
        """Render the result as the JSON text fed back to the model."""
        if self.success:
            body: dict[str, Any] = {"status": "success", "result": self.payload}
        else:
            body = {"status": "error", "error_type": self.error_type, "error": self.error}
        return json.dumps(body, default=str)
