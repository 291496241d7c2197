"""HTTP execution backend.

Talks to a remote execution service (for example a Jupyter server
extension that owns the kernels) using structured JSON messages:

- ``POST   {base}/sessions``                      -> ``{"session_id": ...}``
- ``GET    {base}/sessions/{id}``                 -> 200 when the session is alive,
  with ``{"busy": true}`` while a call is running
- ``POST   {base}/sessions/{id}/interrupt``       interrupts the running call
  (405 or 501 when unsupported)
- ``DELETE {base}/sessions/{id}``
- ``GET    {base}/sessions/{id}/functions``       -> ``{"functions": {name: info}}``
- ``POST   {base}/sessions/{id}/execute``         with ``{"tool", "arguments"}``

The execute response carries the return value in ``result`` and printed
output in ``output``; failures come back as ``{"status": "error",
"error_type": ..., "message": ...}``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote, urlparse

import httpx
from pydantic import ValidationError

from ai_jup.conversation.models import FunctionInfo
from ai_jup.exceptions import (
    ExecutionBackendUnavailable,
    ExecutionFailure,
    InvalidArguments,
    UnknownTool,
)
from ai_jup.execution.backend import ExecutionOutcome

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


class HTTPExecutionBackend:
    """Execution backend that delegates to a remote service over HTTP.

    Usage::

        backend = HTTPExecutionBackend("http://localhost:8888/ai-jup/exec", token="...")
        outcome = await backend.execute(kernel_id, "load_data", {"path": "x.csv"})
    """

    name = "http"

    _ALLOWED_SCHEMES = {"http", "https"}

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
        poll_interval: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme not in self._ALLOWED_SCHEMES:
            msg = f"Invalid URL scheme '{parsed.scheme}'. Only {self._ALLOWED_SCHEMES} allowed."
            raise ValueError(msg)
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        headers = {"Authorization": f"token {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    @staticmethod
    def _session_path(session_id: str) -> str:
        return f"/sessions/{quote(session_id, safe='')}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as e:
            raise ExecutionBackendUnavailable(f"Execution service unreachable: {e}") from e

    async def create_session(self) -> str:
        resp = await self._request("POST", "/sessions")
        if resp.status_code >= 400:
            raise ExecutionBackendUnavailable(
                f"Execution service refused to create a session (HTTP {resp.status_code})"
            )
        return str(resp.json()["session_id"])

    async def close_session(self, session_id: str) -> None:
        resp = await self._request("DELETE", self._session_path(session_id))
        if resp.status_code >= 400 and resp.status_code != 404:
            logger.warning("Closing session %s returned HTTP %d", session_id, resp.status_code)

    async def ping(self, session_id: str) -> None:
        try:
            resp = await self._request("GET", self._session_path(session_id))
        except httpx.TimeoutException as e:
            raise ExecutionBackendUnavailable("Execution service timed out") from e
        if resp.status_code == 404:
            raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
        if resp.status_code >= 400:
            raise ExecutionBackendUnavailable(
                f"Execution service returned HTTP {resp.status_code}"
            )

    async def settle(self, session_id: str) -> None:
        """Interrupt the session and poll until it reports no running call."""
        path = self._session_path(session_id)
        try:
            resp = await self._request("POST", f"{path}/interrupt")
            if resp.status_code == 404:
                raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
            if resp.status_code >= 400 and resp.status_code not in (405, 501):
                logger.warning(
                    "Interrupting session %s returned HTTP %d", session_id, resp.status_code
                )
            while True:
                resp = await self._request("GET", path)
                if resp.status_code == 404:
                    raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
                if resp.status_code >= 400:
                    raise ExecutionBackendUnavailable(
                        f"Execution service returned HTTP {resp.status_code}"
                    )
                if not _reports_busy(resp):
                    return
                await asyncio.sleep(self.poll_interval)
        except httpx.TimeoutException as e:
            raise ExecutionBackendUnavailable("Execution service timed out") from e

    async def describe(self, session_id: str) -> dict[str, FunctionInfo]:
        resp = await self._request("GET", f"{self._session_path(session_id)}/functions")
        if resp.status_code == 404:
            raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
        resp.raise_for_status()
        functions: dict[str, FunctionInfo] = {}
        for name, raw in (resp.json().get("functions") or {}).items():
            try:
                functions[name] = FunctionInfo.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed function description for %s", name)
        return functions

    async def execute(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ExecutionOutcome:
        try:
            resp = await self._request(
                "POST",
                f"{self._session_path(session_id)}/execute",
                json={"tool": tool_name, "arguments": arguments},
            )
        except httpx.TimeoutException as e:
            raise ExecutionFailure(
                f"Execution service timed out running {tool_name}", tool=tool_name, timeout=True
            ) from e

        if resp.status_code == 404:
            raise ExecutionBackendUnavailable(f"No such execution session: {session_id}")
        try:
            body = resp.json()
        except ValueError as e:
            raise ExecutionFailure(
                f"Execution service returned a non-JSON response (HTTP {resp.status_code})",
                tool=tool_name,
            ) from e
        if not isinstance(body, dict):
            raise ExecutionFailure(
                "Execution service returned a malformed response", tool=tool_name
            )

        if body.get("status") == "ok":
            return ExecutionOutcome(result=body.get("result"), output=str(body.get("output") or ""))

        error_type = body.get("error_type")
        message = str(body.get("message") or f"HTTP {resp.status_code}")
        if error_type == "UnknownTool":
            raise UnknownTool(tool_name)
        if error_type == "InvalidArguments":
            raise InvalidArguments(tool_name, message)
        raise ExecutionFailure(message, tool=tool_name, remote_type=body.get("exception"))

    async def aclose(self) -> None:
        await self._client.aclose()


def _reports_busy(resp: httpx.Response) -> bool:
    try:
        body = resp.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("busy") is True
