"""Execution backend contract.

The backend runs one validated call inside an execution session:
``execute(session_id, tool_name, arguments) -> ExecutionOutcome``.
``arguments`` is always a structured value produced by the argument
sanitizer, never source text. The authoritative return value travels in
``ExecutionOutcome.result``; anything the call printed is reported
separately in ``output`` and is never parsed for results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ai_jup.conversation.models import FunctionInfo


@dataclass(frozen=True)
class ExecutionOutcome:
    """Structured result of one backend call."""

    result: Any = None
    output: str = ""


class ExecutionBackend(Protocol):
    """Capability to run a named callable in an isolated session.

    Implementations raise ``UnknownTool`` when the name does not resolve to
    a callable in the session, ``InvalidArguments`` when the arguments do
    not bind to its signature, ``ExecutionFailure`` when the call raises,
    and ``ExecutionBackendUnavailable`` when the session or service is gone.
    """

    name: str

    async def create_session(self) -> str: ...

    async def close_session(self, session_id: str) -> None: ...

    async def ping(self, session_id: str) -> None: ...

    async def settle(self, session_id: str) -> None:
        """Return once nothing runs in the session, interrupting if supported.

        Raises ``ExecutionBackendUnavailable`` when idleness cannot be confirmed.
        """
        ...

    async def describe(self, session_id: str) -> dict[str, FunctionInfo]: ...

    async def execute(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ExecutionOutcome: ...

    async def aclose(self) -> None: ...
