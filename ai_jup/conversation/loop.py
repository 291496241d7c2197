"""Conversation loop: alternates model turns and tool execution.

States: ``IDLE -> CALLING_MODEL -> (EXECUTING_TOOLS -> CALLING_MODEL)* ->
DONE | FAILED``. Each run yields an ordered StreamEvent sequence that ends
with exactly one ``DoneEvent`` or ``ErrorEvent``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from ai_jup.conversation.state import TERMINAL_STATES, ConversationState, LoopState
from ai_jup.exceptions import AiJupError, ConfigurationError
from ai_jup.llm.adapter import TurnResult
from ai_jup.prompt.system import build_system_prompt
from ai_jup.streaming.events import (
    DoneEvent,
    ErrorEvent,
    StopReason,
    StreamEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from ai_jup.tools.schema import build_tool_schemas

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ai_jup.conversation.models import PromptRequest
    from ai_jup.llm.adapter import LLMStreamAdapter
    from ai_jup.tools.dispatcher import ToolDispatcher
    from ai_jup.tools.types import ToolCall, ToolResult

_module_logger = logging.getLogger(__name__)

StepUnit = Literal["round_trips", "tool_calls"]


def _tool_call_args(call: ToolCall) -> dict[str, Any]:
    """Arguments as recorded in history; undecodable input records as {}."""
    try:
        decoded = call.decode_input()
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def result_event(result: ToolResult) -> ToolResultEvent:
    return ToolResultEvent(
        id=result.call_id,
        success=result.success,
        result=result.payload,
        error=result.error,
        error_type=result.error_type,
    )


class ConversationLoop:
    """Drives one prompt request to completion.

    A loop instance serves a single request and is not reusable. All
    collaborators are passed in; nothing is looked up globally.

    Args:
        request: The validated prompt request.
        adapter: Model stream adapter for this request's model.
        dispatcher: Shared tool dispatcher.
        step_unit: ``round_trips`` counts one step per model/tool exchange,
            ``tool_calls`` counts one step per executed tool call.
        logger: Logger for this conversation.
    """

    def __init__(
        self,
        request: PromptRequest,
        adapter: LLMStreamAdapter,
        dispatcher: ToolDispatcher,
        *,
        step_unit: StepUnit = "round_trips",
        logger: logging.Logger | None = None,
    ) -> None:
        self.request = request
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.step_unit = step_unit
        self.state = ConversationState()
        self.status = LoopState.IDLE
        self._log = logger or _module_logger
        self._tools = request.context.functions
        self._tool_schemas = build_tool_schemas(self._tools)

    def _transition(self, target: LoopState) -> None:
        self._log.debug(
            "Conversation %s: %s -> %s", self.state.conversation_id, self.status, target
        )
        self.status = target

    def _executable(self, calls: list[ToolCall]) -> list[ToolCall]:
        remaining = self.request.max_steps - self.state.steps
        if remaining <= 0:
            return []
        if self.step_unit == "tool_calls":
            return calls[:remaining]
        return calls

    def _step_bound_reached(self) -> DoneEvent:
        self._transition(LoopState.DONE)
        self._log.info(
            "Conversation %s stopped at step bound (%d)",
            self.state.conversation_id,
            self.state.steps,
        )
        return DoneEvent(reason=StopReason.STEP_BOUND, steps=self.state.steps)

    async def run(self) -> AsyncIterator[StreamEvent]:
        """Run the conversation, yielding events in emission order."""
        if self.status is not LoopState.IDLE:
            raise RuntimeError("ConversationLoop instances are single-use")

        self.state.messages = [
            SystemMessage(content=build_system_prompt(self.request.context)),
            HumanMessage(content=self.request.prompt),
        ]
        self._log.info(
            "Conversation %s started (model=%s, max_steps=%d, tools=%d)",
            self.state.conversation_id,
            self.request.model,
            self.request.max_steps,
            len(self._tool_schemas),
        )

        try:
            while True:
                self._transition(LoopState.CALLING_MODEL)
                turn = TurnResult()
                turn_stream = self.adapter.stream_turn(
                    self.state.messages, self._tool_schemas, claim_id=self.state.claim_id
                )
                async with contextlib.aclosing(turn_stream):
                    async for item in turn_stream:
                        if isinstance(item, TurnResult):
                            turn = item
                            continue
                        if isinstance(item, ToolCallEvent):
                            self.state.in_flight.add(item.id)
                        yield item

                if not turn.tool_calls:
                    self.state.messages.append(AIMessage(content=turn.text))
                    self._transition(LoopState.DONE)
                    yield DoneEvent()
                    return

                calls = self._executable(turn.tool_calls)
                if not calls:
                    yield self._step_bound_reached()
                    return

                if self.request.session_id is None:
                    raise ConfigurationError(
                        "Tools require an active execution session; none was given"
                    )

                self._transition(LoopState.EXECUTING_TOOLS)
                results: list[ToolResult] = []
                async with contextlib.aclosing(self._execute(calls)) as executions:
                    async for event, result in executions:
                        results.append(result)
                        yield event

                self.state.messages.append(
                    AIMessage(
                        content=turn.text,
                        tool_calls=[
                            {"id": call.id, "name": call.name, "args": _tool_call_args(call)}
                            for call in calls
                        ],
                    )
                )
                self.state.messages.extend(
                    ToolMessage(content=result.as_model_content(), tool_call_id=result.call_id)
                    for result in results
                )
                self.state.steps += len(calls) if self.step_unit == "tool_calls" else 1

                if self.state.steps >= self.request.max_steps or len(calls) < len(turn.tool_calls):
                    yield self._step_bound_reached()
                    return
        except AiJupError as e:
            self._transition(LoopState.FAILED)
            self._log.warning(
                "Conversation %s failed: %s (%s)",
                self.state.conversation_id,
                e.message,
                e.error_type,
            )
            yield ErrorEvent(message=e.message, error_type=e.error_type)
        finally:
            if self.status not in TERMINAL_STATES:
                self._transition(LoopState.FAILED)
                self._log.info(
                    "Conversation %s ended without completing", self.state.conversation_id
                )
            self.state.in_flight.clear()

    async def _execute(
        self, calls: list[ToolCall]
    ) -> AsyncIterator[tuple[ToolResultEvent, ToolResult]]:
        """Dispatch one turn's calls; results are yielded in call order."""
        session_id = self.request.session_id
        assert session_id is not None
        tasks = [
            asyncio.ensure_future(self.dispatcher.dispatch(session_id, call, self._tools))
            for call in calls
        ]
        try:
            for task in tasks:
                result = await task
                self.state.in_flight.discard(result.call_id)
                yield result_event(result), result
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
