"""Application services shared by the route handlers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from ai_jup.execution.backend import ExecutionBackend
from ai_jup.execution.sessions import SessionRegistry
from ai_jup.llm.adapter import LLMStreamAdapter
from ai_jup.settings import Settings
from ai_jup.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], LLMStreamAdapter]


@dataclass
class AppServices:
    """Process-wide collaborators, built once per application."""

    settings: Settings
    backend: ExecutionBackend
    sessions: SessionRegistry
    dispatcher: ToolDispatcher
    adapter_factory: AdapterFactory


def build_backend(settings: Settings) -> ExecutionBackend:
    """Create the configured execution backend."""
    if settings.execution_backend == "http":
        from ai_jup.execution.http import HTTPExecutionBackend

        return HTTPExecutionBackend(
            settings.execution_backend_url,
            token=settings.execution_backend_token.get_secret_value(),
            timeout=settings.tool_timeout_seconds,
        )

    from ai_jup.execution.local import LocalExecutionBackend

    return LocalExecutionBackend()


def build_services(
    settings: Settings,
    *,
    backend: ExecutionBackend | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> AppServices:
    backend = backend or build_backend(settings)
    dispatcher = ToolDispatcher(
        backend,
        timeout=settings.tool_timeout_seconds,
        settle_timeout=settings.tool_settle_timeout_seconds,
        max_depth=settings.max_tool_argument_depth,
        logger=logging.getLogger("ai_jup.tools"),
    )

    def default_adapter_factory(model: str) -> LLMStreamAdapter:
        return LLMStreamAdapter.from_settings(
            settings, model, logger=logging.getLogger("ai_jup.llm")
        )

    logger.info("Execution backend: %s", backend.name)
    return AppServices(
        settings=settings,
        backend=backend,
        sessions=SessionRegistry(),
        dispatcher=dispatcher,
        adapter_factory=adapter_factory or default_adapter_factory,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


Services = Annotated[AppServices, Depends(get_services)]
