"""In-process execution backend.

Each session owns a namespace of callables and a dedicated single worker
thread. Calls against one session run on that thread in submission order,
so a call abandoned by its caller (timeout, disconnect) still finishes
before the next one starts. Calls on different sessions run in parallel.

Used for development and tests, and as the reference implementation of
the execution contract.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from pydantic_core import to_jsonable_python

from ai_jup.conversation.models import FunctionInfo, ParameterInfo
from ai_jup.exceptions import (
    ExecutionBackendUnavailable,
    ExecutionFailure,
    InvalidArguments,
    UnknownTool,
)
from ai_jup.execution.backend import ExecutionOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_JSON_TYPE_NAMES = {
    bool: "boolean",
    int: "integer",
    float: "number",
    str: "string",
    list: "array",
    dict: "object",
}


class _LocalSession:
    def __init__(self, session_id: str) -> None:
        self.id = session_id
        self.namespace: dict[str, Any] = {}
        self.executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"ai-jup-{session_id[:8]}",
        )


def _describe_callable(name: str, func: Callable[..., Any]) -> FunctionInfo:
    """Build a FunctionInfo from a callable's signature."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return FunctionInfo(name=name, docstring=inspect.getdoc(func) or "")

    parameters: dict[str, ParameterInfo] = {}
    for param in sig.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD, param.POSITIONAL_ONLY):
            continue
        annotation = param.annotation
        type_name = None
        if annotation is not param.empty:
            type_name = _JSON_TYPE_NAMES.get(annotation) or getattr(
                annotation, "__name__", str(annotation)
            )
        required = param.default is param.empty
        parameters[param.name] = ParameterInfo(
            type=type_name,
            required=required,
            default=None if required else to_jsonable_python(param.default, fallback=repr),
        )

    # **kwargs means any keyword is accepted
    accepts_any = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())
    return FunctionInfo(
        name=name,
        signature=f"{name}{sig}",
        docstring=inspect.getdoc(func) or "",
        parameters=None if accepts_any else parameters,
    )


class LocalExecutionBackend:
    """Runs registered Python callables in per-session worker threads.

    Usage::

        backend = LocalExecutionBackend()
        sid = await backend.create_session()
        backend.register(sid, "add", lambda a, b: a + b)
        outcome = await backend.execute(sid, "add", {"a": 1, "b": 2})
    """

    name = "local"

    def __init__(self) -> None:
        self._sessions: dict[str, _LocalSession] = {}

    def _get(self, session_id: str) -> _LocalSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
        return session

    async def create_session(self) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = _LocalSession(session_id)
        logger.info("Created local execution session %s", session_id)
        return session_id

    async def close_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.executor.shutdown(wait=False, cancel_futures=True)

    def register(self, session_id: str, name: str, func: Callable[..., Any]) -> None:
        """Bind ``func`` under ``name`` in the session namespace."""
        self._get(session_id).namespace[name] = func

    async def ping(self, session_id: str) -> None:
        self._get(session_id)

    async def settle(self, session_id: str) -> None:
        # The session worker is single-threaded: a no-op queued behind a
        # running call completes only once that call has returned
        session = self._get(session_id)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(session.executor, _idle)

    async def describe(self, session_id: str) -> dict[str, FunctionInfo]:
        session = self._get(session_id)
        return {
            name: _describe_callable(name, value)
            for name, value in session.namespace.items()
            if callable(value) and not name.startswith("_")
        }

    async def execute(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ExecutionOutcome:
        session = self._get(session_id)
        func = session.namespace.get(tool_name)
        if func is None or not callable(func):
            raise UnknownTool(tool_name)

        try:
            inspect.signature(func).bind(**arguments)
        except TypeError as e:
            raise InvalidArguments(tool_name, str(e)) from e
        except ValueError:
            pass  # builtins without an introspectable signature

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(session.executor, _invoke, func, arguments)
        try:
            result = await future
        except Exception as e:
            raise ExecutionFailure(
                f"{type(e).__name__}: {e}",
                tool=tool_name,
                remote_type=type(e).__name__,
            ) from e
        return ExecutionOutcome(result=to_jsonable_python(result, fallback=repr))

    async def aclose(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)


def _invoke(func: Callable[..., Any], arguments: dict[str, Any]) -> Any:
    return func(**arguments)


def _idle() -> None:
    pass
