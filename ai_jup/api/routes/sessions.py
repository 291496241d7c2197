"""Execution session endpoints.

A session must be created (or, for an external backend, claimed) by a
principal before prompts from that principal may use it for tools.
"""

import logging

from fastapi import APIRouter, Response, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ai_jup.api.auth import RequirePrincipal
from ai_jup.api.deps import AppServices, Services
from ai_jup.conversation.models import FunctionInfo
from ai_jup.exceptions import Unauthorized

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


class SessionCreate(BaseModel):
    """Optional body of ``POST /sessions``; names an existing session to claim."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(
        default=None,
        min_length=1,
        validation_alias=AliasChoices("session_id", "kernel_id"),
    )


class SessionResponse(BaseModel):
    session_id: str
    backend: str
    created: bool


class SessionList(BaseModel):
    sessions: list[str]


def _require_owner(services: AppServices, session_id: str, principal: str) -> None:
    if services.sessions.owner_of(session_id) != principal:
        raise Unauthorized("Execution session does not belong to the caller")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SessionResponse)
async def create_session(
    principal: RequirePrincipal,
    services: Services,
    body: SessionCreate | None = None,
) -> SessionResponse:
    """Create a new execution session, or claim an existing one by id."""
    if body is not None and body.session_id:
        session_id = body.session_id
        await services.backend.ping(session_id)
        if not services.sessions.claim(session_id, principal):
            raise Unauthorized("Execution session is owned by another caller")
        logger.info("Session %s claimed by %s", session_id, principal)
        return SessionResponse(
            session_id=session_id, backend=services.backend.name, created=False
        )

    session_id = await services.backend.create_session()
    services.sessions.claim(session_id, principal, created=True)
    logger.info("Session %s created for %s", session_id, principal)
    return SessionResponse(session_id=session_id, backend=services.backend.name, created=True)


@router.get("", response_model=SessionList)
async def list_sessions(principal: RequirePrincipal, services: Services) -> SessionList:
    return SessionList(sessions=services.sessions.sessions_of(principal))


@router.get("/{session_id}/functions", response_model=dict[str, FunctionInfo])
async def list_functions(
    session_id: str,
    principal: RequirePrincipal,
    services: Services,
) -> dict[str, FunctionInfo]:
    """Callables available as tools in the session, with signatures."""
    _require_owner(services, session_id, principal)
    return await services.backend.describe(session_id)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    principal: RequirePrincipal,
    services: Services,
) -> Response:
    """Release a session; sessions this server created are also closed."""
    _require_owner(services, session_id, principal)
    if services.sessions.was_created(session_id):
        await services.backend.close_session(session_id)
    services.sessions.release(session_id)
    services.dispatcher.locks.discard(session_id)
    logger.info("Session %s released by %s", session_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
