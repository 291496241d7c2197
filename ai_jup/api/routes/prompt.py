"""Prompt endpoint: validates a prompt request and streams the answer as SSE.

Validation, authorization and the execution-session check all complete
before the response starts, so those failures are reported as plain JSON
error bodies. Once streaming has begun every failure is an in-band
``error`` frame.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ai_jup.api.auth import RequirePrincipal
from ai_jup.api.deps import Services
from ai_jup.api.rate_limit import limiter, prompt_rate_limit
from ai_jup.conversation.loop import ConversationLoop
from ai_jup.conversation.validator import validate_prompt_request
from ai_jup.exceptions import InvalidRequest
from ai_jup.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_stream

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Prompt"])


@router.post(
    "/prompt",
    response_class=StreamingResponse,
    responses={200: {"content": {SSE_MEDIA_TYPE: {}}}},
)
@limiter.limit(prompt_rate_limit)
async def prompt(request: Request, principal: RequirePrincipal, services: Services):
    """Answer a notebook prompt, streaming text and tool events.

    The body is read as raw JSON and validated by the request validator
    rather than by FastAPI, so every failure names the offending field in
    the same ``{"error", "type", "field"}`` shape.
    """
    settings = services.settings
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequest("Request body must be valid JSON", field="body") from e

    accepted = validate_prompt_request(
        payload,
        principal=principal,
        sessions=services.sessions,
        settings=settings,
    )
    if accepted.session_id is not None:
        await services.backend.ping(accepted.session_id)

    adapter = services.adapter_factory(accepted.model)
    loop = ConversationLoop(
        accepted,
        adapter,
        services.dispatcher,
        step_unit=settings.step_unit,
        logger=logging.getLogger("ai_jup.conversation"),
    )
    logger.info(
        "Streaming prompt for %s (session=%s, %d chars)",
        principal,
        accepted.session_id or "-",
        len(accepted.prompt),
    )
    return StreamingResponse(
        encode_stream(
            loop.run(),
            is_disconnected=request.is_disconnected,
            poll_interval=settings.disconnect_poll_seconds,
            timeout=settings.stream_timeout_seconds,
            logger=logging.getLogger("ai_jup.streaming"),
        ),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
