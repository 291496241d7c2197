"""Tool dispatcher: resolves, sanitizes, executes and normalizes tool calls.

Calls against the same execution session are strictly serialized through
a per-session FIFO lock, because the session's notion of "current output"
is shared mutable state. Calls against different sessions run
concurrently. Every wait (for the lock and for the backend) is bounded.

A dispatch whose caller goes away (client disconnect, conversation
cancelled) keeps running to completion in the background so the session
lock is released in order; its result is simply discarded.

A call that times out may still be running on the backend. The lock is
held until the backend reports the session idle again; if it cannot, the
session stays quarantined and later calls fail without starting until it
settles.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from ai_jup.exceptions import (
    ExecutionBackendUnavailable,
    ExecutionFailure,
    InvalidArguments,
    ToolError,
    UnknownTool,
)
from ai_jup.execution.sessions import SessionLocks
from ai_jup.tools.sanitizer import DEFAULT_MAX_DEPTH, is_identifier, sanitize_arguments
from ai_jup.tools.types import ToolCall, ToolResult

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ai_jup.conversation.models import FunctionInfo
    from ai_jup.execution.backend import ExecutionBackend, ExecutionOutcome

_module_logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Runs model-requested tool calls against an execution backend.

    One dispatcher is shared by all conversations of a process so that the
    per-session locks are shared too.
    """

    def __init__(
        self,
        backend: ExecutionBackend,
        *,
        locks: SessionLocks | None = None,
        timeout: float = 60.0,
        settle_timeout: float = 10.0,
        max_depth: int = DEFAULT_MAX_DEPTH,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backend = backend
        self.locks = locks or SessionLocks()
        self.timeout = timeout
        self.settle_timeout = settle_timeout
        self.max_depth = max_depth
        self._log = logger or _module_logger
        self._background: set[asyncio.Task[ExecutionOutcome]] = set()
        self._unsettled: set[str] = set()

    async def dispatch(
        self,
        session_id: str,
        call: ToolCall,
        tools: Mapping[str, FunctionInfo],
    ) -> ToolResult:
        """Execute one tool call and normalize the outcome.

        Tool-level failures (unknown tool, rejected arguments, a raising or
        timed-out call) are returned as failed ToolResults, never raised.

        Args:
            session_id: Execution session the call runs in.
            call: Completed tool call with its raw JSON input.
            tools: Callables available to this conversation, by name.

        Returns:
            ToolResult for ``call.id``.
        """
        try:
            arguments = self.prepare(call, tools)
            outcome = await self._submit(session_id, call.name, arguments)
        except ToolError as e:
            self._log.info(
                "Tool call %s (%s) failed: %s", call.id, call.name, e.error_type
            )
            return ToolResult.failed(call.id, e.message, e.error_type)
        except ExecutionBackendUnavailable as e:
            self._log.warning("Execution backend unavailable for tool %s: %s", call.name, e)
            return ToolResult.failed(call.id, e.message, ExecutionFailure.error_type)

        self._log.debug("Tool call %s (%s) succeeded", call.id, call.name)
        return ToolResult.ok(call.id, outcome.result)

    def prepare(self, call: ToolCall, tools: Mapping[str, FunctionInfo]) -> dict[str, Any]:
        """Resolve the tool and sanitize its arguments without executing.

        Raises:
            UnknownTool: The name is not an available callable.
            InvalidArguments: The input is not JSON or fails sanitization.
        """
        if not is_identifier(call.name) or call.name not in tools:
            raise UnknownTool(call.name)
        try:
            payload = call.decode_input()
        except json.JSONDecodeError as e:
            raise InvalidArguments(call.name, f"arguments are not valid JSON ({e.msg})") from e
        return sanitize_arguments(
            call.name,
            payload,
            known_parameters=tools[call.name].parameter_names,
            max_depth=self.max_depth,
        )

    async def _submit(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ExecutionOutcome:
        task = asyncio.create_task(self._run_serialized(session_id, tool_name, arguments))
        self._background.add(task)
        task.add_done_callback(self._forget)
        # Shielded: cancelling the caller must not cancel a call holding the lock
        return await asyncio.shield(task)

    def _forget(self, task: asyncio.Task[ExecutionOutcome]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so abandoned failures are not reported as unhandled
            self._log.debug("Tool task finished with %s", type(task.exception()).__name__)

    async def _run_serialized(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ExecutionOutcome:
        lock = self.locks.lock_for(session_id)
        try:
            async with asyncio.timeout(self.timeout):
                await lock.acquire()
        except TimeoutError as e:
            raise ExecutionFailure(
                f"Session busy: {tool_name} waited more than {self.timeout}s to start",
                tool=tool_name,
                timeout=True,
            ) from e

        try:
            if session_id in self._unsettled:
                await self._settle(session_id, tool_name)
            try:
                async with asyncio.timeout(self.timeout):
                    return await self.backend.execute(session_id, tool_name, arguments)
            except TimeoutError as e:
                await self._settle_after_timeout(session_id, tool_name)
                raise ExecutionFailure(
                    f"Tool {tool_name} timed out after {self.timeout}s",
                    tool=tool_name,
                    timeout=True,
                ) from e
            except ExecutionFailure as e:
                if e.timeout:
                    await self._settle_after_timeout(session_id, tool_name)
                raise
        finally:
            lock.release()

    async def _settle(self, session_id: str, tool_name: str) -> None:
        """Wait, still holding the lock, until the session runs nothing."""
        try:
            async with asyncio.timeout(self.settle_timeout):
                await self.backend.settle(session_id)
        except (TimeoutError, ExecutionBackendUnavailable) as e:
            self._unsettled.add(session_id)
            self._log.warning(
                "Session %s still running an earlier call after %.1fs",
                session_id,
                self.settle_timeout,
            )
            raise ExecutionFailure(
                f"Session busy: an earlier call is still running, {tool_name} was not started",
                tool=tool_name,
                timeout=True,
            ) from e
        self._unsettled.discard(session_id)

    async def _settle_after_timeout(self, session_id: str, tool_name: str) -> None:
        # The timed-out call may still be running remotely; the caller sees the timeout
        self._unsettled.add(session_id)
        try:
            await self._settle(session_id, tool_name)
        except ExecutionFailure:
            self._log.debug("Session %s left unsettled after %s timed out", session_id, tool_name)

    async def drain(self) -> None:
        """Wait for abandoned calls to finish (used at shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
